"""
trend_analyzer.py
------------------
Time-series trend analysis over a user's daily financial history.

Stateless: every function is pure and safe to call in parallel on
different inputs. The only side effect is the one-time cached config read.

Statistical building blocks:
    - Ordinary Least Squares regression (closed form) on the deseasonalized series
    - Day-of-week multiplicative seasonal factors
    - Classical additive decomposition (Y = Trend + Seasonal + Residual)
    - Binary segmentation with Welch's t-statistic for change-point detection
    - Pearson correlation across metrics
    - Exponential moving averages for momentum

Insufficient data (fewer than `min_data_points` days after gap-filling)
returns None. Nothing is extrapolated from too little history.
"""

import logging
from itertools import combinations
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import stats

from config.config_loader import get_trend_analysis_config
from core.date_series import (
    ObservationInput,
    WEEKDAY_NAMES,
    align_series,
    daily_profit,
    fill_missing_days,
    weekdays_of,
)
from core.models import (
    ChangePoint,
    MetricCorrelation,
    MultiMetricTrend,
    SeasonalDecomposition,
    TrendDirection,
    TrendResult,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PRIMARY ANALYSIS
# =============================================================================

def analyze_trend(observations: ObservationInput, label: str = "values") -> TrendResult | None:
    """
    Full trend analysis of a daily series.

    Chains gap-filling, seasonal factors, OLS on the deseasonalized series,
    change-point detection on the raw series, forecasting and summary text.

    Args:
        observations: (date, value) pairs. Need not be sorted or contiguous;
            missing days are filled with 0 and same-day values are summed.
        label: Metric name used in generated text (e.g. "earnings").

    Returns:
        TrendResult, or None if fewer than `min_data_points` days remain
        after gap-filling.
    """
    cfg = get_trend_analysis_config()
    eps = cfg["epsilon"]
    ddof = cfg["variance_ddof"]

    filled = fill_missing_days(observations)
    if len(filled) < cfg["min_data_points"]:
        logger.debug(f"Trend '{label}': {len(filled)} days, need {cfg['min_data_points']}. Skipping.")
        return None

    values = filled.to_numpy(dtype=float)
    dates = filled.index
    weekdays = weekdays_of(dates)

    # --- Seasonality ---
    seasonal_factors = _seasonal_factors(weekdays, values, eps)
    deseasonalized = _deseasonalize(weekdays, values, seasonal_factors, eps)

    # --- Regression ---
    n = len(deseasonalized)
    x = np.arange(n, dtype=float)
    slope, intercept = _linear_regression(x, deseasonalized, eps)
    r_squared = _r_squared(x, deseasonalized, slope, intercept, eps)

    # --- Change points (raw series) ---
    change_points = _build_change_points(values, dates, label, cfg)

    # --- Forecast ---
    forecast_7, forecast_30 = _forecast(
        last_date=dates[-1],
        last_x=float(n - 1),
        slope=slope,
        intercept=intercept,
        seasonal_factors=seasonal_factors,
        horizon=cfg["forecast_horizon_days"],
        short_horizon=cfg["short_forecast_days"],
    )

    # --- Volatility: coefficient of variation of the regression residuals ---
    residuals = deseasonalized - (intercept + slope * x)
    volatility = _coefficient_of_variation(residuals, ddof, eps)

    direction = classify_direction(slope, r_squared)
    summary = _build_summary(
        label=label,
        direction=direction,
        slope=slope,
        r_squared=r_squared,
        seasonal_factors=seasonal_factors,
        change_points=change_points,
        volatility=volatility,
    )

    logger.debug(
        f"Trend '{label}': n={n}, slope={slope:.4f}, R²={r_squared:.3f}, "
        f"direction={direction.value}, change_points={len(change_points)}."
    )

    return TrendResult(
        direction=direction,
        strength=r_squared,
        slope=slope,
        weekly_change=slope * 7,
        monthly_change=slope * 30,
        seasonal_factors=seasonal_factors,
        change_points=change_points,
        forecast_7_day=forecast_7,
        forecast_30_day=forecast_30,
        volatility=volatility,
        summary=summary,
    )


def classify_direction(slope: float, r_squared: float) -> TrendDirection:
    """Maps slope magnitude and R² to a TrendDirection using configured thresholds."""
    thresholds = get_trend_analysis_config()["direction_thresholds"]
    strong, moderate = thresholds["strong"], thresholds["moderate"]
    abs_slope = abs(slope)

    if abs_slope > strong["min_abs_slope"] and r_squared > strong["min_r_squared"]:
        return TrendDirection.STRONG_UP if slope > 0 else TrendDirection.STRONG_DOWN
    if abs_slope > moderate["min_abs_slope"] and r_squared > moderate["min_r_squared"]:
        return TrendDirection.MODERATE_UP if slope > 0 else TrendDirection.MODERATE_DOWN
    return TrendDirection.FLAT


# =============================================================================
# SEASONAL DECOMPOSITION
# =============================================================================

def decompose_seasonal(values: Sequence[float], period: int = 7) -> SeasonalDecomposition:
    """
    Classical additive decomposition: Y = T + S + R.

    1. Trend: centered moving average of width `period`; undefined edges are
       back/forward-filled from the nearest defined value.
    2. Seasonal: mean detrended value at each position mod `period`,
       shifted so the pattern sums to zero.
    3. Residual: Y - T - S.
    4. Seasonal strength: 1 - var(residual) / var(detrended), clamped to [0, 1].
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    cfg = get_trend_analysis_config()
    eps = cfg["epsilon"]
    ddof = cfg["variance_ddof"]

    y = np.asarray(values, dtype=float)
    n = len(y)
    if n == 0:
        return SeasonalDecomposition(trend=[], seasonal=[], residual=[], seasonal_strength=0.0)

    trend = _extrapolate_edges(centered_moving_average(y, period))
    detrended = y - trend

    pattern = np.array([
        detrended[position::period].mean() if detrended[position::period].size else 0.0
        for position in range(period)
    ])
    pattern -= pattern.mean()

    seasonal = pattern[np.arange(n) % period]
    residual = y - trend - seasonal

    var_detrended = _variance(detrended, ddof)
    if var_detrended > eps:
        strength = float(np.clip(1.0 - _variance(residual, ddof) / var_detrended, 0.0, 1.0))
    else:
        strength = 0.0

    return SeasonalDecomposition(
        trend=trend.tolist(),
        seasonal=seasonal.tolist(),
        residual=residual.tolist(),
        seasonal_strength=strength,
    )


def centered_moving_average(values: Sequence[float], window: int) -> np.ndarray:
    """
    Centered moving average over `window // 2` points on each side.

    Positions within half a window of either end are NaN. Series shorter
    than the window (or windows below 2) are returned unchanged.
    """
    y = np.asarray(values, dtype=float)
    if len(y) < window or window < 2:
        return y.copy()

    half = window // 2
    return pd.Series(y).rolling(2 * half + 1, center=True).mean().to_numpy()


def exponential_moving_average(values: Sequence[float], alpha: float) -> np.ndarray:
    """EMA_t = alpha * x_t + (1 - alpha) * EMA_{t-1}, seeded with the first value."""
    if not 0.0 < alpha <= 1.0:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    y = np.asarray(values, dtype=float)
    if y.size == 0:
        return y
    return pd.Series(y).ewm(alpha=alpha, adjust=False).mean().to_numpy()


# =============================================================================
# CHANGE-POINT DETECTION
# =============================================================================

def detect_change_points(values: Sequence[float], min_segment_length: int = 7) -> list[int]:
    """
    Binary segmentation with Welch's t-statistic.

    A segment of at least 2 * min_segment_length points is split at the
    index maximizing |t| among splits leaving min_segment_length points on
    each side. The split is kept only if |t| exceeds the critical value
    (2.576, two-tailed p < 0.01), and both halves are then processed
    independently. Uses an explicit worklist, so depth is not bounded by
    the interpreter's recursion limit.

    Candidate splits run from start + m through end - m inclusive, so the
    right half may hold exactly m points.

    Returns:
        Sorted list of accepted split indices.
    """
    if min_segment_length < 1:
        raise ValueError(f"min_segment_length must be >= 1, got {min_segment_length}")

    cfg = get_trend_analysis_config()
    critical_t = cfg["change_point_critical_t"]
    ddof = cfg["variance_ddof"]
    eps = cfg["epsilon"]

    y = np.asarray(values, dtype=float)
    points: list[int] = []
    worklist = [(0, len(y))]

    while worklist:
        start, end = worklist.pop()
        if end - start < 2 * min_segment_length:
            continue

        best_t = 0.0
        best_split = -1
        for split in range(start + min_segment_length, end - min_segment_length + 1):
            t = welch_t_statistic(y[start:split], y[split:end], ddof=ddof, eps=eps)
            if abs(t) > abs(best_t):
                best_t = t
                best_split = split

        if best_split < 0 or abs(best_t) <= critical_t:
            continue

        points.append(best_split)
        worklist.append((start, best_split))
        worklist.append((best_split, end))

    return sorted(points)


def welch_t_statistic(a: Sequence[float], b: Sequence[float], ddof: int = 0, eps: float = 1e-10) -> float:
    """
    t = (mean1 - mean2) / sqrt(var1/n1 + var2/n2).

    Returns 0 when either side has fewer than 2 points or the pooled
    standard error is ~0.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    n1, n2 = len(a), len(b)
    if n1 < 2 or n2 < 2:
        return 0.0

    denominator = np.sqrt(_variance(a, ddof) / n1 + _variance(b, ddof) / n2)
    if denominator <= eps:
        return 0.0

    return float((a.mean() - b.mean()) / denominator)


def _welch_p_value(a: np.ndarray, b: np.ndarray, t: float, ddof: int, eps: float) -> float:
    """Two-sided p-value using Welch–Satterthwaite degrees of freedom."""
    n1, n2 = len(a), len(b)
    if n1 < 2 or n2 < 2:
        return float("nan")

    s1 = _variance(a, ddof) / n1
    s2 = _variance(b, ddof) / n2
    df_denominator = s1 ** 2 / (n1 - 1) + s2 ** 2 / (n2 - 1)
    if df_denominator <= eps ** 2:
        return float("nan")

    df = (s1 + s2) ** 2 / df_denominator
    return float(2.0 * stats.t.sf(abs(t), df))


def _build_change_points(values: np.ndarray, dates: pd.DatetimeIndex, label: str, cfg: dict) -> list[ChangePoint]:
    """Turns change-point indices into ChangePoints against whole-series before/after means."""
    ddof = cfg["variance_ddof"]
    eps = cfg["epsilon"]
    change_points: list[ChangePoint] = []

    for idx in detect_change_points(values, min_segment_length=cfg["min_segment_length"]):
        if idx <= 0 or idx >= len(values):
            continue

        before, after = values[:idx], values[idx:]
        before_avg = float(before.mean())
        after_avg = float(after.mean())
        # Percent change is undefined against a non-positive baseline
        if before_avg <= 0:
            continue

        pct_change = (after_avg - before_avg) / before_avg * 100.0
        day = dates[idx].date()
        verb = "jumped" if pct_change > 0 else "dropped"
        description = f"{label.title()} {verb} {abs(pct_change):.0f}% around {day:%b} {day.day}, {day.year}"

        t = welch_t_statistic(before, after, ddof=ddof, eps=eps)
        change_points.append(ChangePoint(
            date=day,
            before_avg=before_avg,
            after_avg=after_avg,
            percent_change=pct_change,
            description=description,
            t_statistic=t,
            p_value=_welch_p_value(before, after, t, ddof, eps),
        ))

    return change_points


# =============================================================================
# MOMENTUM
# =============================================================================

def calculate_momentum(values: Sequence[float], short_window: int = 7, long_window: int = 30) -> float:
    """
    (shortEMA - longEMA) / longEMA on the last point.

    +0.15 means the short-term level sits 15% above the long-term level.
    Returns 0 with fewer than `long_window` points or a ~0 long EMA.
    """
    if short_window < 1 or long_window < 1:
        raise ValueError(f"windows must be >= 1, got short={short_window}, long={long_window}")

    eps = get_trend_analysis_config()["epsilon"]
    y = np.asarray(values, dtype=float)
    if len(y) < long_window or len(y) == 0:
        return 0.0

    short_last = exponential_moving_average(y, 2.0 / (short_window + 1))[-1]
    long_last = exponential_moving_average(y, 2.0 / (long_window + 1))[-1]
    if abs(long_last) <= eps:
        return 0.0

    return float((short_last - long_last) / long_last)


# =============================================================================
# MULTI-METRIC ANALYSIS
# =============================================================================

def analyze_multi_metric(
    earnings: ObservationInput,
    expenses: ObservationInput,
    fees: ObservationInput,
) -> MultiMetricTrend:
    """
    Trends for earnings, expenses, fees and derived daily profit, plus
    pairwise Pearson correlations over the dates common to all three raw
    (gap-filled) series.
    """
    earnings_daily = fill_missing_days(earnings)
    expenses_daily = fill_missing_days(expenses)
    fees_daily = fill_missing_days(fees)

    earnings_trend = analyze_trend(earnings_daily, label="earnings")
    expense_trend = analyze_trend(expenses_daily, label="expenses")
    fee_rate_trend = analyze_trend(fees_daily, label="fee rate")
    profit_trend = analyze_trend(daily_profit(earnings, expenses), label="profit")

    aligned = align_series({
        "Earnings": earnings_daily,
        "Expenses": expenses_daily,
        "Fees": fees_daily,
    })

    correlations: list[MetricCorrelation] = []
    for metric_a, metric_b in combinations(aligned.columns, 2):
        r = pearson_correlation(aligned[metric_a].to_numpy(), aligned[metric_b].to_numpy())
        if not np.isnan(r):
            correlations.append(MetricCorrelation(metric_a, metric_b, r))

    narrative = _build_multi_metric_narrative(
        earnings_trend, expense_trend, profit_trend, fee_rate_trend, correlations
    )

    return MultiMetricTrend(
        earnings_trend=earnings_trend,
        expense_trend=expense_trend,
        profit_trend=profit_trend,
        fee_rate_trend=fee_rate_trend,
        correlations=correlations,
        narrative_summary=narrative,
    )


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    r = Σ(x̃ỹ) / sqrt(Σx̃² · Σỹ²) over the common prefix of x and y.

    NaN when fewer than 3 points or either series is constant.
    """
    cfg = get_trend_analysis_config()
    n = min(len(x), len(y))
    if n < cfg["correlation"]["min_points"]:
        return float("nan")

    xc = np.asarray(x, dtype=float)[:n]
    yc = np.asarray(y, dtype=float)[:n]
    xc = xc - xc.mean()
    yc = yc - yc.mean()

    denominator = np.sqrt(np.dot(xc, xc) * np.dot(yc, yc))
    if denominator <= cfg["epsilon"]:
        return float("nan")

    return float(np.clip(np.dot(xc, yc) / denominator, -1.0, 1.0))


# =============================================================================
# INTERNAL: REGRESSION & SEASONAL HELPERS
# =============================================================================

def _linear_regression(x: np.ndarray, y: np.ndarray, eps: float) -> tuple[float, float]:
    """
    Closed-form OLS:
        slope = (n·Σxy - Σx·Σy) / (n·Σx² - (Σx)²)
        intercept = (Σy - slope·Σx) / n
    """
    n = float(min(len(x), len(y)))
    if n < 2:
        return 0.0, float(y[0]) if len(y) else 0.0

    sum_x = float(x.sum())
    sum_y = float(y.sum())
    sum_xy = float(np.dot(x, y))
    sum_x2 = float(np.dot(x, x))

    denominator = n * sum_x2 - sum_x * sum_x
    if abs(denominator) <= eps:
        return 0.0, sum_y / n

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def _r_squared(x: np.ndarray, y: np.ndarray, slope: float, intercept: float, eps: float) -> float:
    """1 - SS_res / SS_tot, clamped to [0, 1]. 0 when SS_tot is ~0."""
    if len(y) < 3:
        return 0.0

    ss_res = float(np.sum((y - (intercept + slope * x)) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot <= eps:
        return 0.0

    return float(np.clip(1.0 - ss_res / ss_tot, 0.0, 1.0))


def _seasonal_factors(weekdays: np.ndarray, values: np.ndarray, eps: float) -> dict[int, float]:
    """Average value per weekday / overall average. Uniform 1.0 if the overall mean is not positive."""
    overall_mean = float(values.mean())
    if overall_mean <= eps:
        return {day: 1.0 for day in range(1, 8)}

    factors: dict[int, float] = {}
    for day in range(1, 8):
        bucket = values[weekdays == day]
        factors[day] = float(bucket.mean() / overall_mean) if bucket.size else 1.0
    return factors


def _deseasonalize(weekdays: np.ndarray, values: np.ndarray, factors: dict[int, float], eps: float) -> np.ndarray:
    """Divides each value by its weekday factor; near-zero factors leave the value as-is."""
    day_factors = np.array([factors.get(int(day), 1.0) for day in weekdays])
    safe = day_factors > eps
    return np.where(safe, values / np.where(safe, day_factors, 1.0), values)


def _forecast(
    last_date: pd.Timestamp,
    last_x: float,
    slope: float,
    intercept: float,
    seasonal_factors: dict[int, float],
    horizon: int,
    short_horizon: int,
) -> tuple[float, float]:
    """Projects the regression line forward, reapplies weekday factors, floors each day at 0."""
    future_dates = pd.date_range(last_date + pd.Timedelta(days=1), periods=horizon, freq="D")
    offsets = np.arange(1, horizon + 1, dtype=float)
    factors = np.array([seasonal_factors.get(int(day), 1.0) for day in weekdays_of(future_dates)])

    predicted = np.maximum(0.0, (intercept + slope * (last_x + offsets)) * factors)
    return float(predicted[:short_horizon].sum()), float(predicted.sum())


def _extrapolate_edges(trend: np.ndarray) -> np.ndarray:
    """Back/forward-fills NaN edges from the nearest defined value; all-NaN becomes zeros."""
    if np.all(np.isnan(trend)):
        return np.zeros(len(trend))
    return pd.Series(trend).bfill().ffill().to_numpy()


def _variance(values: np.ndarray, ddof: int) -> float:
    """Variance with the configured ddof. 0 for fewer than 2 points."""
    if len(values) < 2 or len(values) <= ddof:
        return 0.0
    return float(np.var(values, ddof=ddof))


def _coefficient_of_variation(values: np.ndarray, ddof: int, eps: float) -> float:
    """std / |mean|. 0 for fewer than 2 points or a ~0 mean."""
    if len(values) < 2:
        return 0.0
    mean = float(np.mean(values))
    if abs(mean) <= eps:
        return 0.0
    return float(np.sqrt(_variance(values, ddof)) / abs(mean))


# =============================================================================
# INTERNAL: TEXT GENERATION
# =============================================================================

def _format_currency(amount: float) -> str:
    return f"${amount:,.2f}"


def _build_summary(
    label: str,
    direction: TrendDirection,
    slope: float,
    r_squared: float,
    seasonal_factors: dict[int, float],
    change_points: list[ChangePoint],
    volatility: float,
) -> str:
    """Deterministic one-paragraph summary of a TrendResult."""
    cfg = get_trend_analysis_config()["summary"]
    parts: list[str] = []

    per_day = _format_currency(abs(slope))
    per_week = _format_currency(abs(slope * 7))
    if direction == TrendDirection.STRONG_UP:
        parts.append(f"{direction.value}: {label} growing ~{per_day}/day ({per_week}/week)")
    elif direction == TrendDirection.MODERATE_UP:
        parts.append(f"{direction.value}: {label} gradually increasing ~{per_day}/day")
    elif direction == TrendDirection.MODERATE_DOWN:
        parts.append(f"{direction.value}: {label} gradually decreasing ~{per_day}/day")
    elif direction == TrendDirection.STRONG_DOWN:
        parts.append(f"{direction.value}: {label} declining ~{per_day}/day ({per_week}/week)")
    else:
        parts.append(f"{label.title()} are relatively stable with no significant trend")

    # Highest factors first; weekday number breaks ties
    ranked = sorted(seasonal_factors.items(), key=lambda item: (-item[1], item[0]))
    strong_days = [
        WEEKDAY_NAMES[day]
        for day, factor in ranked[:cfg["max_strong_days"]]
        if factor > cfg["strong_day_factor"]
    ]
    if strong_days:
        parts.append(f"Strongest days: {', '.join(strong_days)}")

    if len(change_points) == 1:
        parts.append(f"One significant shift detected: {change_points[0].description}")
    elif len(change_points) > 1:
        parts.append(f"{len(change_points)} significant shifts detected")

    if volatility > cfg["high_volatility"]:
        parts.append(f"High day-to-day volatility: {label} are unpredictable")
    elif volatility > cfg["moderate_volatility"]:
        parts.append("Moderate volatility in daily amounts")

    if direction == TrendDirection.FLAT and r_squared < cfg["no_pattern_r_squared"]:
        parts.append(f"No clear directional pattern in the data (R²={r_squared:.2f})")

    return ". ".join(parts) + "."


def _build_multi_metric_narrative(
    earnings: TrendResult | None,
    expenses: TrendResult | None,
    profit: TrendResult | None,
    fees: TrendResult | None,
    correlations: list[MetricCorrelation],
) -> str:
    """Combines individual directions and strong correlations into a narrative."""
    notable_r = get_trend_analysis_config()["correlation"]["notable_abs_r"]
    sentences: list[str] = []

    # --- Earnings ---
    if earnings is not None:
        weekly = _format_currency(abs(earnings.weekly_change))
        if earnings.direction.is_up:
            sentences.append(f"Your earnings are trending upward ({weekly}/week)")
        elif earnings.direction.is_down:
            sentences.append(f"Your earnings have been declining ({weekly}/week)")
        else:
            sentences.append("Your earnings have been relatively stable")

    # --- Expenses relative to earnings ---
    if expenses is not None and earnings is not None:
        earnings_up = earnings.direction.is_up
        if earnings_up and expenses.direction == TrendDirection.FLAT:
            sentences.append("while expenses are flat, so profit margin is improving")
        elif earnings_up and expenses.direction.is_up:
            if abs(expenses.slope) > abs(earnings.slope):
                sentences.append("but expenses are growing faster, so watch your profit margin")
            else:
                sentences.append("and expenses are rising too, but slower, so margins are still improving")
        elif not earnings_up and expenses.direction.is_up:
            sentences.append("while expenses are rising, so profit is being squeezed")
    elif expenses is not None:
        if expenses.direction.is_up:
            sentences.append(f"Expenses are trending up ({_format_currency(abs(expenses.weekly_change))}/week)")
        elif expenses.direction.is_down:
            sentences.append("Expenses are declining, which is good for your bottom line")
        else:
            sentences.append("Expenses are holding steady")

    # --- Profit ---
    if profit is not None:
        profit_sentences = {
            TrendDirection.STRONG_UP: "Net profit is on a strong upward trajectory",
            TrendDirection.MODERATE_UP: "Net profit is gradually improving",
            TrendDirection.STRONG_DOWN: "Net profit is dropping significantly and needs attention",
            TrendDirection.MODERATE_DOWN: "Net profit is slowly declining",
        }
        if profit.direction in profit_sentences:
            sentences.append(profit_sentences[profit.direction])

    # --- Fees ---
    if fees is not None:
        if fees.direction.is_up:
            sentences.append("Platform fees appear to be increasing")
        elif fees.direction.is_down:
            sentences.append("Platform fees are trending down")

    # --- Correlations ---
    for corr in correlations:
        if abs(corr.r) > notable_r:
            relationship = "move together" if corr.r > 0 else "move in opposite directions"
            sentences.append(f"{corr.metric_a} and {corr.metric_b} {relationship} (r={corr.r:.2f})")

    if not sentences:
        return "Insufficient data to identify meaningful trends across metrics."

    return ". ".join(sentences) + "."
