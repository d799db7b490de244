"""
test_engine.py
---------------
End-to-end test suite for the gig intelligence engine.

Run from the project root:
    python -m pytest tests/ -v

Tests are organized by layer:
    - Config & Deductibility
    - Full Pipeline (integration)

Component-level tests live in test_date_series.py, test_trend_analyzer.py
and test_categorizer.py.
"""

import sys
import os
import pytest
import pandas as pd
import numpy as np
from datetime import datetime, timedelta

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import (
    load_config,
    get_categorizer_config,
    get_deductibility_rules,
    get_trend_analysis_config,
    reset_config,
)
from core.categorizer import AdaptiveCategorizer
from core.deductibility import DeductibilityLookup, UNKNOWN_CATEGORY_NOTE
from core.model_store import ModelStore
from pipeline import IntelligencePipeline, PREDICTION_COLUMNS, TREND_COLUMNS


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def pipeline(tmp_path):
    categorizer = AdaptiveCategorizer(store=ModelStore(tmp_path / "model.json", background=False))
    instance = IntelligencePipeline(categorizer=categorizer)
    yield instance
    instance.close()


START = datetime(2024, 1, 1)


def _make_income(n_days: int = 60, base: float = 100.0, slope: float = 7.0) -> pd.DataFrame:
    """Helper: one payout per day on a linear ramp, platform fee at 20%."""
    rows = []
    for i in range(n_days):
        net = base + slope * i
        rows.append({
            "date": START + timedelta(days=i, hours=18),
            "net_amount": net,
            "fees": round(net * 0.2, 2),
        })
    return pd.DataFrame(rows)


def _make_expenses(include_uncategorized: bool = True) -> pd.DataFrame:
    """Helper: 24 labeled expenses over three categories, plus 6 to categorize."""
    np.random.seed(42)
    templates = [
        ("Shell gas station", "Shell", 40.0, "Gas & Fuel"),
        ("Chipotle lunch burrito", "Chipotle", 12.0, "Meals (Business)"),
        ("Verizon wireless bill", "Verizon", 80.0, "Phone & Internet"),
    ]

    rows = []
    for i in range(24):
        description, vendor, amount, category = templates[i % 3]
        rows.append({
            "date": START + timedelta(days=i),
            "amount": round(amount + np.random.uniform(-2.5, 2.5), 2),
            "description": description,
            "vendor": vendor,
            "category": category,
        })

    if include_uncategorized:
        pending = [
            ("Shell gas", 41.0), ("Chipotle lunch", 12.5), ("Verizon wireless", 79.0),
            ("gas station fill", 39.0), ("lunch burrito", 11.0), ("wireless bill", 81.0),
        ]
        for j, (description, amount) in enumerate(pending):
            rows.append({
                "date": START + timedelta(days=24 + j),
                "amount": amount,
                "description": description,
                "vendor": None,
                "category": None,
            })

    return pd.DataFrame(rows)


# =============================================================================
# CONFIG & DEDUCTIBILITY TESTS
# =============================================================================

class TestConfig:
    def test_config_loads_successfully(self):
        config = load_config()
        assert "trend_analysis" in config
        assert "categorizer" in config
        assert "deductibility_rules" in config

    def test_trend_thresholds(self):
        cfg = get_trend_analysis_config()
        assert cfg["min_data_points"] == 14
        assert cfg["min_segment_length"] == 7
        assert cfg["change_point_critical_t"] == pytest.approx(2.576)

    def test_ensemble_weights_sum_to_one(self):
        weights = get_categorizer_config()["ensemble_weights"]
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_missing_section_raises(self):
        with pytest.raises(KeyError):
            load_config()["nonexistent_section"]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))


class TestDeductibility:
    def test_rules_load(self):
        lookup = DeductibilityLookup()
        assert len(lookup) == len(get_deductibility_rules())

    def test_known_category(self):
        is_deductible, percentage, note = DeductibilityLookup().suggest("Phone & Internet")
        assert is_deductible
        assert percentage == pytest.approx(0.5)
        assert note

    def test_non_deductible_category(self):
        is_deductible, percentage, _ = DeductibilityLookup().suggest("Other")
        assert not is_deductible
        assert percentage == 0.0

    def test_unknown_category(self):
        lookup = DeductibilityLookup()
        assert lookup.lookup("Lottery Tickets") is None
        assert lookup.suggest("Lottery Tickets") == (False, 0.0, UNKNOWN_CATEGORY_NOTE)


# =============================================================================
# PIPELINE INTEGRATION TESTS
# =============================================================================

class TestPipeline:
    def test_full_run(self, pipeline):
        report = pipeline.run(_make_income(), _make_expenses())

        assert list(report.trends.columns) == TREND_COLUMNS
        assert set(report.trends["metric"]) == {"earnings", "expenses", "profit", "fees"}
        earnings_row = report.trends[report.trends["metric"] == "earnings"].iloc[0]
        assert earnings_row["direction"] == "Strong Uptrend"

        assert report.trained_examples == 24
        assert list(report.categorized.columns) == PREDICTION_COLUMNS
        assert len(report.categorized) == 6
        assert set(report.categorized["predicted_category"]) == {
            "Gas & Fuel", "Meals (Business)", "Phone & Internet",
        }
        assert report.categorized["confidence"].is_monotonic_decreasing
        assert "Your earnings are trending upward" in report.multi_metric.narrative_summary

    def test_predictions_match_rows(self, pipeline):
        expenses = _make_expenses()
        report = pipeline.run(_make_income(), expenses)

        by_index = {idx: p.category for idx, p in report.predictions}
        assert by_index[24] == "Gas & Fuel"       # "Shell gas"
        assert by_index[28] == "Meals (Business)" # "lunch burrito"
        assert by_index[29] == "Phone & Internet" # "wireless bill"

    def test_second_run_does_not_retrain(self, pipeline):
        pipeline.run(_make_income(), _make_expenses())
        report = pipeline.run(_make_income(), _make_expenses())
        assert report.trained_examples == 0
        assert pipeline.categorizer.training_size == 24

    def test_momentum_positive_for_growing_earnings(self, pipeline):
        report = pipeline.run(_make_income(), _make_expenses())
        assert report.earnings_momentum > 0.0

    def test_untrained_model_skips_predictions(self, pipeline):
        expenses = _make_expenses().tail(6).reset_index(drop=True)
        report = pipeline.run(_make_income(), expenses)
        assert report.trained_examples == 0
        assert report.categorized.empty

    def test_empty_expenses(self, pipeline):
        expenses = pd.DataFrame(columns=["date", "amount", "description", "category", "vendor"])
        report = pipeline.run(_make_income(), expenses)

        assert set(report.trends["metric"]) == {"earnings", "profit", "fees"}
        assert report.multi_metric.expense_trend is None
        assert report.categorized.empty

    def test_short_history_produces_no_trends(self, pipeline):
        report = pipeline.run(_make_income(n_days=10), _make_expenses(include_uncategorized=False).head(5))
        assert report.trends.empty

    def test_duplicate_index_labels(self, pipeline):
        """Frames stitched together with pd.concat repeat index labels."""
        full = _make_expenses()
        labeled = full.iloc[:24]
        pending = full.iloc[24:].reset_index(drop=True)
        expenses = pd.concat([labeled, pending])
        assert expenses.index.has_duplicates

        report = pipeline.run(_make_income(), expenses)
        assert len(report.categorized) == 6
        assert set(report.categorized["expense_index"]) == set(range(24, 30))
        assert set(report.categorized["description"]) == set(full["description"].iloc[24:])

    def test_missing_income_columns_raise(self, pipeline):
        with pytest.raises(ValueError, match="net_amount"):
            pipeline.run(_make_income().drop(columns=["net_amount"]), _make_expenses())

    def test_missing_expense_columns_raise(self, pipeline):
        with pytest.raises(ValueError, match="description"):
            pipeline.run(_make_income(), _make_expenses().drop(columns=["description"]))

    def test_model_persisted_after_run(self, tmp_path):
        path = tmp_path / "persisted.json"
        pipeline = IntelligencePipeline(model_path=str(path))
        pipeline.run(_make_income(), _make_expenses())
        pipeline.close()

        reloaded = AdaptiveCategorizer(model_path=str(path))
        assert reloaded.training_size == 24
        reloaded.close()


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
