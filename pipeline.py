"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. Daily aggregation       →  earnings / fees / expenses series
    2. Trend Analyzer          →  per-metric trends, multi-metric narrative, momentum
    3. Adaptive Categorizer    →  batch retraining + predictions for uncategorized expenses
    4. Output serialization    →  flat DataFrames for CSV output

This is the single entry point for running the engine over a user's
history. Everything else is internal machinery.

Usage:
    from pipeline import IntelligencePipeline

    pipeline = IntelligencePipeline(model_path="model.json")
    report = pipeline.run(income_df, expenses_df)
    pipeline.close()
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from config.config_loader import get_trend_analysis_config
from core.categorizer import AdaptiveCategorizer
from core.date_series import fill_missing_days
from core.models import MLPrediction, MultiMetricTrend, TrainingExample, TrendResult
from core.trend_analyzer import analyze_multi_metric, calculate_momentum

logger = logging.getLogger(__name__)


INCOME_COLUMNS = ["date", "net_amount", "fees"]
EXPENSE_COLUMNS = ["date", "amount", "description"]

TREND_COLUMNS = [
    "metric", "direction", "strength", "slope", "weekly_change", "monthly_change",
    "forecast_7_day", "forecast_30_day", "volatility", "change_points", "summary",
]
PREDICTION_COLUMNS = [
    "expense_index", "date", "description", "amount", "predicted_category", "confidence",
    "method", "is_deductible", "deduction_percentage", "reasoning",
]


@dataclass
class IntelligenceReport:
    """Everything one pipeline run produces."""

    multi_metric: MultiMetricTrend
    earnings_momentum: float
    expense_momentum: float
    trained_examples: int
    predictions: List[tuple[int, MLPrediction]] = field(default_factory=list)
    trends: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=TREND_COLUMNS))
    categorized: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=PREDICTION_COLUMNS))


class IntelligencePipeline:
    """
    End-to-end trend + categorization run over income and expense records.

    Orchestrates aggregation → analysis → categorization → output without
    exposing internal objects to callers.
    """

    def __init__(self, model_path: str | None = None, categorizer: Optional[AdaptiveCategorizer] = None):
        """
        Args:
            model_path: Override the configured categorizer model path.
            categorizer: Pre-built categorizer (takes precedence over model_path).
        """
        self.categorizer = categorizer or AdaptiveCategorizer(model_path=model_path)

        logger.info(
            f"Pipeline initialized. Categorizer: {self.categorizer.training_size:,} examples, "
            f"trained={self.categorizer.is_model_trained}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, income: pd.DataFrame, expenses: pd.DataFrame) -> IntelligenceReport:
        """
        Run the full pipeline.

        Args:
            income: DataFrame with columns date, net_amount, fees.
            expenses: DataFrame with columns date, amount, description and
                optionally category and vendor. Rows with an empty category
                are treated as uncategorized.

        Returns:
            IntelligenceReport with structured results and flat DataFrames.

        Raises:
            ValueError: if a required column is missing.
        """
        _require_columns(income, INCOME_COLUMNS, "income")
        _require_columns(expenses, EXPENSE_COLUMNS, "expenses")
        # expense_index refers to row position; caller labels may repeat
        expenses = expenses.reset_index(drop=True)
        logger.info(f"Pipeline starting. Input: {len(income):,} income rows, {len(expenses):,} expense rows.")

        # --- Stage 1: Daily aggregation ---
        earnings = _daily(income, "net_amount")
        fees = _daily(income, "fees")
        expense_totals = _daily(expenses, "amount")
        logger.info(
            f"Stage 1 complete. Daily series: earnings={len(earnings)}, "
            f"fees={len(fees)}, expenses={len(expense_totals)} days."
        )

        # --- Stage 2: Trend analysis ---
        multi_metric = analyze_multi_metric(earnings, expense_totals, fees)
        windows = get_trend_analysis_config()["momentum"]
        earnings_momentum = calculate_momentum(
            fill_missing_days(earnings).to_numpy(), windows["short_window"], windows["long_window"]
        )
        expense_momentum = calculate_momentum(
            fill_missing_days(expense_totals).to_numpy(), windows["short_window"], windows["long_window"]
        )
        logger.info(f"Stage 2 complete. {multi_metric.narrative_summary}")

        # --- Stage 3: Categorization ---
        trained = self._retrain_if_needed(expenses)
        predictions = self._predict_uncategorized(expenses)
        logger.info(
            f"Stage 3 complete. Trained on {trained:,} new examples, "
            f"{len(predictions):,} predictions."
        )

        # --- Stage 4: Serialize ---
        report = IntelligenceReport(
            multi_metric=multi_metric,
            earnings_momentum=earnings_momentum,
            expense_momentum=expense_momentum,
            trained_examples=trained,
            predictions=predictions,
            trends=self._serialize_trends(multi_metric),
            categorized=self._serialize_predictions(expenses, predictions),
        )
        logger.info(f"Pipeline complete. Trend rows: {len(report.trends)}, prediction rows: {len(report.categorized)}.")
        return report

    def close(self) -> None:
        """Flushes pending model writes."""
        self.categorizer.close()

    # -------------------------------------------------------------------------
    # INTERNAL: CATEGORIZATION
    # -------------------------------------------------------------------------

    def _retrain_if_needed(self, expenses: pd.DataFrame) -> int:
        """
        Batch-trains on every categorized expense when the history holds
        more labeled records than the model has seen.
        """
        labeled = expenses[_has_category(expenses)]
        if len(labeled) <= self.categorizer.training_size:
            return 0

        examples = [_to_training_example(row) for row in labeled.to_dict("records")]
        self.categorizer.train_batch(examples)
        return len(examples)

    def _predict_uncategorized(self, expenses: pd.DataFrame) -> List[tuple[int, MLPrediction]]:
        if not self.categorizer.is_model_trained:
            logger.info("Categorizer not trained yet. Skipping predictions.")
            return []

        predictions: List[tuple[int, MLPrediction]] = []
        for idx, row in expenses[~_has_category(expenses)].iterrows():
            prediction = self.categorizer.predict(
                description=str(row["description"]),
                merchant_name=_merchant(row),
                amount=float(row["amount"]),
            )
            if prediction is not None:
                predictions.append((idx, prediction))
        return predictions

    # -------------------------------------------------------------------------
    # INTERNAL: OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    def _serialize_trends(self, multi_metric: MultiMetricTrend) -> pd.DataFrame:
        """One row per metric that had enough history to analyze."""
        metrics: list[tuple[str, Optional[TrendResult]]] = [
            ("earnings", multi_metric.earnings_trend),
            ("expenses", multi_metric.expense_trend),
            ("profit", multi_metric.profit_trend),
            ("fees", multi_metric.fee_rate_trend),
        ]

        rows = []
        for name, trend in metrics:
            if trend is None:
                continue
            rows.append({
                "metric": name,
                "direction": trend.direction.value,
                "strength": trend.strength,
                "slope": trend.slope,
                "weekly_change": trend.weekly_change,
                "monthly_change": trend.monthly_change,
                "forecast_7_day": trend.forecast_7_day,
                "forecast_30_day": trend.forecast_30_day,
                "volatility": trend.volatility,
                "change_points": " | ".join(cp.description for cp in trend.change_points),
                "summary": trend.summary,
            })

        return pd.DataFrame(rows, columns=TREND_COLUMNS)

    def _serialize_predictions(self, expenses: pd.DataFrame, predictions: List[tuple[int, MLPrediction]]) -> pd.DataFrame:
        rows = []
        for idx, p in predictions:
            row = expenses.loc[idx]
            rows.append({
                "expense_index": idx,
                "date": pd.Timestamp(row["date"]).strftime("%Y-%m-%d"),
                "description": row["description"],
                "amount": float(row["amount"]),
                "predicted_category": p.category,
                "confidence": p.confidence,
                "method": p.method.value,
                "is_deductible": p.is_deductible,
                "deduction_percentage": p.deduction_percentage,
                "reasoning": p.reasoning,
            })

        df = pd.DataFrame(rows, columns=PREDICTION_COLUMNS)
        if df.empty:
            return df

        # Most confident first
        return df.sort_values("confidence", ascending=False).reset_index(drop=True)


# =============================================================================
# HELPERS
# =============================================================================

def _require_columns(df: pd.DataFrame, columns: list[str], name: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{name} is missing required columns: {missing}")


def _daily(df: pd.DataFrame, column: str) -> pd.Series:
    """Per-day sums of one column, indexed by calendar day."""
    if df.empty:
        return pd.Series(dtype=float, index=pd.DatetimeIndex([]))
    values = pd.to_numeric(df[column], errors="coerce").fillna(0.0)
    return values.groupby(pd.to_datetime(df["date"]).dt.normalize()).sum().sort_index()


def _has_category(expenses: pd.DataFrame) -> pd.Series:
    if "category" not in expenses.columns:
        return pd.Series(False, index=expenses.index)
    category = expenses["category"]
    return category.notna() & (category.astype(str).str.strip() != "")


def _merchant(row) -> Optional[str]:
    vendor = row.get("vendor")
    if vendor is None or pd.isna(vendor) or str(vendor).strip() == "":
        return None
    return str(vendor)


def _to_training_example(row: dict) -> TrainingExample:
    return TrainingExample(
        description=str(row["description"]),
        amount=float(row["amount"]),
        category=str(row["category"]).strip(),
        merchant_name=_merchant(row),
        timestamp=pd.Timestamp(row["date"]).to_pydatetime(),
    )
