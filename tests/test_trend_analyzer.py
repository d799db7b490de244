"""
test_trend_analyzer.py
-----------------------
Test suite for the trend analyzer.

Run from the project root:
    python -m pytest tests/test_trend_analyzer.py -v

Tests are organized by layer:
    - Primary analysis (regression, direction, forecast, summary)
    - Seasonal decomposition & smoothing helpers
    - Change-point detection
    - Momentum
    - Correlation & multi-metric analysis
"""

import sys
import os
import math
import pytest
import pandas as pd
import numpy as np
from datetime import date, timedelta

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from core.models import TrendDirection
from core.trend_analyzer import (
    analyze_multi_metric,
    analyze_trend,
    calculate_momentum,
    centered_moving_average,
    classify_direction,
    decompose_seasonal,
    detect_change_points,
    exponential_moving_average,
    pearson_correlation,
    welch_t_statistic,
    _build_summary,
    _coefficient_of_variation,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


START = date(2024, 1, 1)


def _series(values, start: date = START) -> list[tuple[date, float]]:
    """Helper: one (date, value) pair per consecutive day."""
    return [(start + timedelta(days=i), float(v)) for i, v in enumerate(values)]


def _step_values(n_before: int = 14, n_after: int = 14, low: float = 100.0, high: float = 200.0) -> list[float]:
    """Helper: level shift with a small repeating wobble so segment variance is non-zero."""
    return [
        (low if i < n_before else high) + ((i % 3) - 1) * 5.0
        for i in range(n_before + n_after)
    ]


# =============================================================================
# PRIMARY ANALYSIS
# =============================================================================

class TestAnalyzeTrend:
    def test_constant_series_is_flat(self):
        result = analyze_trend(_series([100.0] * 14))
        assert result is not None
        assert result.slope == pytest.approx(0.0, abs=1e-9)
        assert result.strength == pytest.approx(0.0, abs=1e-9)
        assert result.direction == TrendDirection.FLAT
        assert result.volatility == pytest.approx(0.0, abs=1e-9)
        assert result.change_points == []

    def test_clean_ramp_is_strong_uptrend(self):
        result = analyze_trend(_series([100 + 7 * i for i in range(30)]))
        assert result is not None
        assert result.slope == pytest.approx(7.0, abs=1.0)
        assert result.strength > 0.9
        assert result.direction == TrendDirection.STRONG_UP
        assert result.weekly_change == pytest.approx(result.slope * 7)
        assert result.monthly_change == pytest.approx(result.slope * 30)

    def test_declining_ramp_is_strong_downtrend(self):
        result = analyze_trend(_series([400 - 8 * i for i in range(30)]))
        assert result.direction == TrendDirection.STRONG_DOWN
        assert result.slope < -5

    def test_fewer_than_minimum_days_returns_none(self):
        assert analyze_trend(_series([100.0] * 13)) is None
        assert analyze_trend([]) is None

    def test_gaps_are_filled_before_length_check(self):
        # Two observations 20 days apart become a 21-day series
        obs = [(START, 100.0), (START + timedelta(days=20), 100.0)]
        assert analyze_trend(obs) is not None

    def test_forecast_of_constant_series(self):
        result = analyze_trend(_series([100.0] * 14))
        assert result.forecast_7_day == pytest.approx(700.0)
        assert result.forecast_30_day == pytest.approx(3000.0)

    def test_forecast_never_negative(self):
        result = analyze_trend(_series([max(300 - 10 * i, 0) for i in range(30)]))
        assert result.forecast_7_day >= 0.0
        assert result.forecast_30_day >= 0.0

    def test_weekday_factors_detected(self):
        # Saturdays earn double
        values = [200.0 if (START + timedelta(days=i)).weekday() == 5 else 100.0 for i in range(28)]
        result = analyze_trend(_series(values), label="earnings")

        assert set(result.seasonal_factors) == set(range(1, 8))
        assert result.seasonal_factors[7] == pytest.approx(1.75)
        assert result.seasonal_factors[2] == pytest.approx(0.875)
        assert result.direction == TrendDirection.FLAT
        assert "Strongest days: Sat" in result.summary

    def test_summary_for_flat_series(self):
        result = analyze_trend(_series([100.0] * 14), label="earnings")
        assert "Earnings are relatively stable" in result.summary
        assert "No clear directional pattern" in result.summary

    def test_summary_for_uptrend_mentions_rate(self):
        result = analyze_trend(_series([100 + 7 * i for i in range(30)]), label="earnings")
        assert result.summary.startswith("Strong Uptrend: earnings growing")
        assert "/week" in result.summary

    def test_strength_bounded_and_direction_consistent(self):
        """Property: R² in [0, 1] and the direction follows the thresholds."""
        for seed in range(10):
            rng = np.random.default_rng(seed)
            n = int(rng.integers(14, 90))
            values = 100 + rng.normal(0, 20, n) + rng.uniform(-6, 6) * np.arange(n)
            result = analyze_trend(_series(values))

            assert 0.0 <= result.strength <= 1.0
            assert result.direction == classify_direction(result.slope, result.strength)

    def test_noisy_series_residual_volatility_is_zero(self):
        # OLS residuals average to ~0, so their coefficient of variation collapses to 0
        rng = np.random.default_rng(21)
        result = analyze_trend(_series(100 + rng.normal(0, 60, 28)), label="earnings")

        assert result.volatility == 0.0
        assert "volatility" not in result.summary.lower()

    def test_coefficient_of_variation(self):
        values = np.array([2.0, 4.0, 6.0])
        assert _coefficient_of_variation(values, 0, 1e-10) == pytest.approx(np.std(values) / 4.0)
        assert _coefficient_of_variation(values, 1, 1e-10) == pytest.approx(0.5)
        assert _coefficient_of_variation(np.array([-1.0, 0.0, 1.0]), 0, 1e-10) == 0.0
        assert _coefficient_of_variation(np.array([5.0]), 0, 1e-10) == 0.0


class TestSummary:
    @staticmethod
    def _summary(volatility: float = 0.0, factors: dict[int, float] | None = None) -> str:
        return _build_summary(
            label="earnings",
            direction=TrendDirection.FLAT,
            slope=0.0,
            r_squared=0.5,
            seasonal_factors=factors or {day: 1.0 for day in range(1, 8)},
            change_points=[],
            volatility=volatility,
        )

    def test_high_volatility_wording(self):
        assert "High day-to-day volatility: earnings are unpredictable" in self._summary(volatility=1.5)

    def test_moderate_volatility_wording(self):
        summary = self._summary(volatility=0.7)
        assert "Moderate volatility in daily amounts" in summary
        assert "High day-to-day" not in summary

    def test_volatility_thresholds_are_strict(self):
        assert "volatility" not in self._summary(volatility=0.5).lower()
        assert "High day-to-day" not in self._summary(volatility=1.0)

    def test_at_most_two_strongest_days_highest_first(self):
        factors = {1: 1.3, 2: 0.8, 3: 1.2, 4: 0.9, 5: 1.5, 6: 0.7, 7: 1.15}
        assert "Strongest days: Thu, Sun." in self._summary(factors=factors)

    def test_strongest_day_ties_broken_by_weekday(self):
        factors = {1: 1.2, 2: 0.9, 3: 0.9, 4: 0.9, 5: 0.9, 6: 0.9, 7: 1.2}
        assert "Strongest days: Sun, Sat." in self._summary(factors=factors)

    def test_no_strong_days_below_threshold(self):
        factors = {day: 1.05 if day == 6 else 0.99 for day in range(1, 8)}
        assert "Strongest days" not in self._summary(factors=factors)


class TestClassifyDirection:
    def test_thresholds(self):
        assert classify_direction(6.0, 0.5) == TrendDirection.STRONG_UP
        assert classify_direction(-6.0, 0.5) == TrendDirection.STRONG_DOWN
        assert classify_direction(3.0, 0.2) == TrendDirection.MODERATE_UP
        assert classify_direction(-3.0, 0.2) == TrendDirection.MODERATE_DOWN

    def test_steep_but_noisy_is_flat(self):
        assert classify_direction(10.0, 0.1) == TrendDirection.FLAT

    def test_strong_slope_weak_fit_falls_back_to_moderate(self):
        assert classify_direction(6.0, 0.2) == TrendDirection.MODERATE_UP


# =============================================================================
# DECOMPOSITION & SMOOTHING
# =============================================================================

class TestDecomposition:
    def test_pure_weekly_pattern(self):
        pattern = [10, 20, 30, 40, 50, 60, 70]
        result = decompose_seasonal(pattern * 4, period=7)

        assert result.trend == pytest.approx([40.0] * 28)
        assert result.seasonal[:7] == pytest.approx([-30, -20, -10, 0, 10, 20, 30])
        assert result.residual == pytest.approx([0.0] * 28, abs=1e-9)
        assert result.seasonal_strength == pytest.approx(1.0)

    def test_components_sum_to_input(self):
        rng = np.random.default_rng(3)
        values = 100 + rng.normal(0, 10, 35)
        result = decompose_seasonal(values)

        rebuilt = np.array(result.trend) + np.array(result.seasonal) + np.array(result.residual)
        assert rebuilt == pytest.approx(values)
        assert 0.0 <= result.seasonal_strength <= 1.0

    def test_seasonal_component_sums_to_zero_over_period(self):
        rng = np.random.default_rng(5)
        result = decompose_seasonal(rng.uniform(0, 100, 28))
        assert sum(result.seasonal[:7]) == pytest.approx(0.0, abs=1e-9)

    def test_invalid_period_raises(self):
        with pytest.raises(ValueError):
            decompose_seasonal([1.0, 2.0, 3.0], period=0)


class TestSmoothing:
    def test_centered_moving_average_edges_are_nan(self):
        result = centered_moving_average(list(range(1, 11)), 3)
        assert math.isnan(result[0]) and math.isnan(result[-1])
        assert result[1:-1] == pytest.approx(list(range(2, 10)))

    def test_short_series_returned_unchanged(self):
        assert list(centered_moving_average([1.0, 2.0], 7)) == [1.0, 2.0]

    def test_exponential_moving_average_recurrence(self):
        result = exponential_moving_average([10.0, 20.0, 20.0], alpha=0.5)
        assert list(result) == pytest.approx([10.0, 15.0, 17.5])

    def test_invalid_alpha_raises(self):
        with pytest.raises(ValueError):
            exponential_moving_average([1.0, 2.0], alpha=1.5)


# =============================================================================
# CHANGE-POINT DETECTION
# =============================================================================

class TestChangePoints:
    def test_level_shift_detected_near_boundary(self):
        points = detect_change_points(_step_values())
        assert points == [14]

    def test_change_point_reported_in_trend(self):
        result = analyze_trend(_series(_step_values()), label="earnings")
        assert len(result.change_points) == 1

        cp = result.change_points[0]
        assert cp.date == date(2024, 1, 15)
        assert cp.percent_change == pytest.approx(100.0, abs=5.0)
        assert cp.after_avg > cp.before_avg
        assert cp.description == "Earnings jumped 101% around Jan 15, 2024"
        assert abs(cp.t_statistic) > 2.576
        assert cp.p_value < 0.01

    def test_drop_described_as_dropped(self):
        result = analyze_trend(_series(_step_values(low=200.0, high=100.0)), label="earnings")
        assert "dropped" in result.change_points[0].description

    def test_no_change_in_stationary_noise(self):
        rng = np.random.default_rng(11)
        assert detect_change_points(100 + rng.normal(0, 1, 14)) in ([], [7])
        assert detect_change_points([100.0] * 40) == []

    def test_too_short_series_has_no_change_points(self):
        assert detect_change_points(_step_values(6, 7)) == []

    def test_indices_respect_minimum_segment_length(self):
        """Property: every index keeps >= m points from the ends and from each other."""
        m = 7
        for seed in range(8):
            rng = np.random.default_rng(seed)
            levels = rng.choice([50.0, 150.0, 300.0], size=6)
            values = np.concatenate([lvl + rng.normal(0, 3, 15) for lvl in levels])
            points = detect_change_points(values, min_segment_length=m)

            assert points == sorted(points)
            for idx in points:
                assert m <= idx <= len(values) - m
            for a, b in zip(points, points[1:]):
                assert b - a >= m

    def test_multiple_shifts_found(self):
        values = _step_values(15, 15, 100.0, 300.0) + [50.0 + ((i % 3) - 1) * 5.0 for i in range(15)]
        points = detect_change_points(values)
        assert len(points) == 2
        assert points[0] == pytest.approx(15, abs=1)
        assert points[1] == pytest.approx(30, abs=1)

    def test_invalid_segment_length_raises(self):
        with pytest.raises(ValueError):
            detect_change_points([1.0] * 20, min_segment_length=0)

    def test_welch_degenerate_inputs_return_zero(self):
        assert welch_t_statistic([1.0], [2.0, 3.0]) == 0.0
        assert welch_t_statistic([1.0, 1.0], [1.0, 1.0]) == 0.0


# =============================================================================
# MOMENTUM
# =============================================================================

class TestMomentum:
    def test_short_history_returns_zero(self):
        assert calculate_momentum([100.0] * 29) == 0.0

    def test_constant_series_has_no_momentum(self):
        assert calculate_momentum([100.0] * 60) == pytest.approx(0.0)

    def test_accelerating_series_positive(self):
        values = [100.0] * 40 + [200.0] * 10
        assert calculate_momentum(values) > 0.1

    def test_decelerating_series_negative(self):
        values = [200.0] * 40 + [100.0] * 10
        assert calculate_momentum(values) < 0.0

    def test_zero_series_returns_zero(self):
        assert calculate_momentum([0.0] * 40) == 0.0

    def test_invalid_windows_raise(self):
        with pytest.raises(ValueError):
            calculate_momentum([1.0] * 40, short_window=0)


# =============================================================================
# CORRELATION & MULTI-METRIC
# =============================================================================

class TestPearson:
    def test_perfect_correlations(self):
        assert pearson_correlation([1, 2, 3, 4], [1, 2, 3, 4]) == pytest.approx(1.0)
        assert pearson_correlation([1, 2, 3, 4], [4, 3, 2, 1]) == pytest.approx(-1.0)

    def test_short_or_constant_is_nan(self):
        assert math.isnan(pearson_correlation([1, 2], [1, 2]))
        assert math.isnan(pearson_correlation([5, 5, 5, 5], [1, 2, 3, 4]))

    def test_symmetric_and_bounded(self):
        for seed in range(10):
            rng = np.random.default_rng(seed)
            x = rng.normal(size=20)
            y = rng.normal(size=20) + x * rng.uniform(-2, 2)
            r = pearson_correlation(x, y)
            assert -1.0 <= r <= 1.0
            assert r == pytest.approx(pearson_correlation(y, x))
            assert r == pytest.approx(np.corrcoef(x, y)[0, 1])


class TestMultiMetric:
    def test_growing_earnings_flat_expenses(self):
        earnings = _series([100 + 7 * i for i in range(60)])
        expenses = _series([20.0] * 60)
        fees = _series([5.0] * 60)
        result = analyze_multi_metric(earnings, expenses, fees)

        assert result.earnings_trend.direction == TrendDirection.STRONG_UP
        assert result.expense_trend.direction == TrendDirection.FLAT
        assert result.profit_trend.direction == TrendDirection.STRONG_UP
        # Constant series have no defined correlation
        assert result.correlations == []
        assert "Your earnings are trending upward" in result.narrative_summary
        assert "profit margin is improving" in result.narrative_summary
        assert "Net profit is on a strong upward trajectory" in result.narrative_summary

    def test_strong_correlations_reported(self):
        earnings_values = [100 + 7 * i for i in range(30)]
        result = analyze_multi_metric(
            _series(earnings_values),
            _series([0.1 * v for v in earnings_values]),
            _series([0.2 * v for v in earnings_values]),
        )

        assert len(result.correlations) == 3
        assert {(c.metric_a, c.metric_b) for c in result.correlations} == {
            ("Earnings", "Expenses"), ("Earnings", "Fees"), ("Expenses", "Fees"),
        }
        assert all(c.r == pytest.approx(1.0) for c in result.correlations)
        assert "Earnings and Expenses move together" in result.narrative_summary

    def test_correlation_uses_common_dates_only(self):
        rng = np.random.default_rng(1)
        earnings = _series(100 + rng.normal(0, 10, 40))
        # Expenses start 10 days later; correlation window is the overlap
        expenses = _series(20 + rng.normal(0, 5, 30), start=START + timedelta(days=10))
        fees = _series(5 + rng.normal(0, 1, 40))
        result = analyze_multi_metric(earnings, expenses, fees)

        e = np.array([v for _, v in earnings])[10:40]
        x = np.array([v for _, v in expenses])
        expected = pearson_correlation(e, x)
        actual = {(c.metric_a, c.metric_b): c.r for c in result.correlations}
        assert actual[("Earnings", "Expenses")] == pytest.approx(expected)

    def test_insufficient_data_everywhere(self):
        short = _series([10.0] * 5)
        result = analyze_multi_metric(short, short, short)
        assert result.earnings_trend is None
        assert result.profit_trend is None
        assert result.narrative_summary == "Insufficient data to identify meaningful trends across metrics."


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
