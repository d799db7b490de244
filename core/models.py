"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Observation: A dated numeric value. Input to the trend analyzer.

- TrendResult / ChangePoint / SeasonalDecomposition / MultiMetricTrend:
  Outputs of the trend analyzer. Built fresh per call, never mutated.

- TrainingExample / MLPrediction: Input and output of the adaptive categorizer.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import NamedTuple, Optional


class Observation(NamedTuple):
    """A dated numeric amount. Same-day duplicates are summed downstream."""

    date: date | datetime
    value: float


# =============================================================================
# TREND ANALYSIS
# =============================================================================

class TrendDirection(str, Enum):
    """
    Directional classification from slope magnitude and R².

    Strong: |slope| > 5/day with R² > 0.3. Moderate: |slope| > 2/day with
    R² > 0.15. Everything else is flat.
    """

    STRONG_UP = "Strong Uptrend"
    MODERATE_UP = "Moderate Uptrend"
    FLAT = "Flat"
    MODERATE_DOWN = "Moderate Downtrend"
    STRONG_DOWN = "Strong Downtrend"

    @property
    def is_up(self) -> bool:
        return self in (TrendDirection.STRONG_UP, TrendDirection.MODERATE_UP)

    @property
    def is_down(self) -> bool:
        return self in (TrendDirection.STRONG_DOWN, TrendDirection.MODERATE_DOWN)


@dataclass(frozen=True)
class ChangePoint:
    """A statistically significant shift in the average daily level."""

    date: date
    before_avg: float                # Mean of every value before the shift
    after_avg: float                 # Mean of every value from the shift on
    percent_change: float            # (after - before) / before * 100
    description: str                 # e.g. "Earnings jumped 35% around Jan 15, 2025"
    t_statistic: float = 0.0
    p_value: float = float("nan")    # Informational; acceptance uses the critical t


@dataclass(frozen=True)
class TrendResult:
    """
    Complete trend analysis of a single daily series.

    Combines OLS regression on the deseasonalized series, day-of-week
    factors, change points and a seasonal forecast.
    """

    direction: TrendDirection
    strength: float                  # R², clamped to [0, 1]
    slope: float                     # Units per day
    weekly_change: float             # slope * 7
    monthly_change: float            # slope * 30
    seasonal_factors: dict[int, float]   # Weekday 1 (Sun) .. 7 (Sat) -> multiplier
    change_points: list[ChangePoint]
    forecast_7_day: float
    forecast_30_day: float
    volatility: float                # Coefficient of variation of residuals
    summary: str


@dataclass(frozen=True)
class SeasonalDecomposition:
    """Additive decomposition Y = trend + seasonal + residual."""

    trend: list[float]
    seasonal: list[float]
    residual: list[float]
    seasonal_strength: float         # 0.0 – 1.0


class MetricCorrelation(NamedTuple):
    metric_a: str
    metric_b: str
    r: float


@dataclass(frozen=True)
class MultiMetricTrend:
    """Earnings, expenses, profit and fee trends with cross-metric correlations."""

    earnings_trend: Optional[TrendResult]
    expense_trend: Optional[TrendResult]
    profit_trend: Optional[TrendResult]
    fee_rate_trend: Optional[TrendResult]
    correlations: list[MetricCorrelation] = field(default_factory=list)
    narrative_summary: str = ""


# =============================================================================
# CATEGORIZATION
# =============================================================================

@dataclass(frozen=True)
class TrainingExample:
    """A user-confirmed categorization used to train the categorizer."""

    description: str
    amount: float
    category: str
    merchant_name: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class PredictionMethod(str, Enum):
    BAYESIAN = "Bayesian Classification"
    TFIDF = "TF-IDF Similarity"
    EMBEDDING_CENTROID = "Neural Embedding Centroid"
    ENSEMBLE = "ML Ensemble"


@dataclass(frozen=True)
class MLPrediction:
    """Ensemble prediction from the learned model."""

    category: str
    confidence: float                # 0.0 – 0.95
    method: PredictionMethod
    reasoning: str

    # Deductibility metadata from the category rule table
    is_deductible: bool = False
    deduction_percentage: float = 0.0
    deduction_note: str = ""
