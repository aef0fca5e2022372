"""
Trend statistics over daily summaries.

Direction is the least-squares slope of ``temp_avg`` against the day index
(0, 1, 2, …), in degrees per day:

    slope >  0.1   rising
    slope < -0.1   falling
    otherwise      stable   (also: fewer than two days)
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from skycast.app.history.models import DailyHistorySummary, TrendExtreme, TrendSummary

TREND_THRESHOLD = 0.1


def round_2(value: float) -> float:
    """Round to 2 decimals, halves away from zero."""
    return math.copysign(math.floor(abs(value) * 100 + 0.5), value) / 100


def format_period(start_ts: int, end_ts: int) -> str:
    return f"{(end_ts - start_ts) // 86_400}d"


def compute_trend_direction(days: Sequence[DailyHistorySummary]) -> str:
    n = len(days)
    if n < 2:
        return "stable"

    x = np.arange(n, dtype=float)
    y = np.array([d.temp_avg for d in days], dtype=float)

    denominator = n * np.sum(x * x) - np.sum(x) ** 2
    if abs(denominator) < np.finfo(float).eps:
        return "stable"

    slope = (n * np.sum(x * y) - np.sum(x) * np.sum(y)) / denominator
    if slope > TREND_THRESHOLD:
        return "rising"
    if slope < -TREND_THRESHOLD:
        return "falling"
    return "stable"


def compute_trend_summary(days: Sequence[DailyHistorySummary]) -> TrendSummary:
    if not days:
        return TrendSummary()

    max_day = max(days, key=lambda d: d.temp_max)
    min_day = min(days, key=lambda d: d.temp_min)

    return TrendSummary(
        avg_temp=round_2(float(np.mean([d.temp_avg for d in days]))),
        temp_trend=compute_trend_direction(days),
        max_temp=TrendExtreme(value=max_day.temp_max, date=max_day.date),
        min_temp=TrendExtreme(value=min_day.temp_min, date=min_day.date),
        total_precipitation=round_2(sum(d.precipitation_total for d in days)),
        avg_humidity=round_2(float(np.mean([d.humidity_avg for d in days]))),
    )
