"""
date_series.py
---------------
Date and daily-series utilities shared by the trend analyzer and the pipeline.

Calendar logic is isolated here (start-of-day, add-days, weekday-of) so trend
results never depend on a locale-specific calendar. Weekdays are numbered
1 = Sunday through 7 = Saturday.

Series are pandas Series indexed by a daily DatetimeIndex.
"""

from typing import Iterable, Union

import numpy as np
import pandas as pd

from core.models import Observation


ObservationInput = Union[pd.Series, Iterable[Observation], Iterable[tuple]]

WEEKDAY_NAMES = {1: "Sun", 2: "Mon", 3: "Tue", 4: "Wed", 5: "Thu", 6: "Fri", 7: "Sat"}


# -----------------------------------------------------------------------------
# CALENDAR PRIMITIVES
# -----------------------------------------------------------------------------

def start_of_day(value) -> pd.Timestamp:
    """Truncates a date, datetime or timestamp-like value to midnight."""
    return pd.Timestamp(value).normalize()


def add_days(value, days: int) -> pd.Timestamp:
    return start_of_day(value) + pd.Timedelta(days=days)


def weekday_of(value) -> int:
    """Weekday number for a single date: 1 = Sunday .. 7 = Saturday."""
    # pandas: Monday=0 .. Sunday=6
    return (pd.Timestamp(value).dayofweek + 1) % 7 + 1


def weekdays_of(index: pd.DatetimeIndex) -> np.ndarray:
    """Vectorized weekday_of for a DatetimeIndex."""
    return ((np.asarray(index.dayofweek) + 1) % 7 + 1).astype(int)


# -----------------------------------------------------------------------------
# SERIES CONSTRUCTION
# -----------------------------------------------------------------------------

def _empty_series() -> pd.Series:
    return pd.Series(dtype=float, index=pd.DatetimeIndex([]))


def _to_frame(observations: ObservationInput) -> pd.DataFrame:
    if isinstance(observations, pd.Series):
        return pd.DataFrame({"date": observations.index, "value": observations.to_numpy()})
    rows = [(obs_date, obs_value) for obs_date, obs_value in observations]
    return pd.DataFrame(rows, columns=["date", "value"])


def aggregate_daily(observations: ObservationInput) -> pd.Series:
    """
    Sums raw timestamped values into per-day totals.

    Args:
        observations: Observations, (date, value) pairs, or a Series indexed
            by date. Order does not matter.

    Returns:
        Series indexed by calendar day (sorted ascending). Only days that
        appear in the input are present.
    """
    frame = _to_frame(observations)
    if frame.empty:
        return _empty_series()

    frame["date"] = pd.to_datetime(frame["date"]).dt.normalize()
    frame["value"] = frame["value"].astype(float)

    return frame.groupby("date")["value"].sum().sort_index()


def fill_missing_days(observations: ObservationInput) -> pd.Series:
    """
    Builds a contiguous daily series from first to last observed day.

    Missing days are inserted with value 0. The result length is always
    (last_day - first_day).days + 1.
    """
    daily = aggregate_daily(observations)
    if daily.empty:
        return daily

    full_range = pd.date_range(daily.index.min(), daily.index.max(), freq="D")
    return daily.reindex(full_range, fill_value=0.0)


def daily_profit(earnings: ObservationInput, expenses: ObservationInput) -> pd.Series:
    """
    Per-day earnings minus expenses over the union of dates.

    A day missing from one side counts that side as zero.
    """
    earnings_daily = aggregate_daily(earnings)
    expenses_daily = aggregate_daily(expenses)
    if earnings_daily.empty and expenses_daily.empty:
        return _empty_series()

    aligned = pd.concat(
        [earnings_daily.rename("earnings"), expenses_daily.rename("expenses")], axis=1
    ).fillna(0.0)
    return (aligned["earnings"] - aligned["expenses"]).sort_index()


def align_series(series: dict[str, pd.Series]) -> pd.DataFrame:
    """
    Aligns named daily series on the dates present in ALL of them.

    Returns:
        DataFrame with one column per name, indexed by the sorted common
        dates. Empty if the intersection is empty.
    """
    if not series:
        return pd.DataFrame()

    return pd.concat(
        {name: aggregate_daily(values) for name, values in series.items()},
        axis=1,
        join="inner",
    ).sort_index()
