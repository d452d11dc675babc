"""
Baseline usage analysis.

Establishes what a typical five-hour window looks like from recent
history, so the current window can be judged against it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from .stats import (
    compute_mean,
    compute_median,
    compute_percentile,
    compute_population_stddev,
    remove_outliers_iqr,
    round_half_up,
)
from .windows import group_events, utc_now
from usage_window_guard.storage.models import UsageEvent, ensure_utc

logger = logging.getLogger(__name__)

BASELINE_HORIZON = timedelta(days=30)
# Windows at or below this total are treated as aborted or incomplete
NOISE_FLOOR_TOKENS = 1000
MIN_WINDOWS = 3


class Confidence(Enum):
    """Reliability label attached to derived statistics."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UsageLevel(Enum):
    """Where current usage sits relative to the baseline."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UsageBaseline:
    """Statistical summary of historical windows."""
    average_usage: int
    median_usage: int
    standard_deviation: int
    percentile_75: int
    percentile_90: int
    high_usage_threshold: int
    critical_usage_threshold: int
    total_sessions: int
    analysis_method: str
    confidence: Confidence

    def __post_init__(self):
        """Validate metrics are reasonable."""
        if self.average_usage < 0:
            raise ValueError("average_usage cannot be negative")
        if self.standard_deviation < 0:
            raise ValueError("standard_deviation cannot be negative")
        if self.total_sessions < 0:
            raise ValueError("total_sessions cannot be negative")


DEFAULT_BASELINE = UsageBaseline(
    average_usage=30_000,
    median_usage=25_000,
    standard_deviation=15_000,
    percentile_75=40_000,
    percentile_90=55_000,
    high_usage_threshold=45_000,
    critical_usage_threshold=60_000,
    total_sessions=0,
    analysis_method="default_fallback",
    confidence=Confidence.LOW,
)


def window_totals(
    events: Iterable[UsageEvent],
    exclude_window_id: Optional[str] = None,
) -> List[int]:
    """Rate-limit token totals of each qualifying window.

    Windows at or below the noise floor and the excluded window are
    dropped.
    """
    totals = []
    for start, records in group_events(events):
        total = sum(event.total_tokens for event in records)
        if total <= NOISE_FLOOR_TOKENS:
            continue
        if exclude_window_id is not None and start.isoformat() == exclude_window_id:
            continue
        totals.append(total)
    return totals


def compute_baseline(
    events: Iterable[UsageEvent],
    now: Optional[datetime] = None,
    exclude_window_id: Optional[str] = None,
) -> UsageBaseline:
    """Compute a baseline from the last 30 days of usage.

    Events are regrouped into five-hour windows and the per-window totals
    are cleaned with the IQR rule before any statistic is taken, so one
    marathon session cannot drag the typical value upward. The active
    window should be excluded by id so that the baseline does not chase
    the usage it is compared against.

    Args:
        events: Historical usage events (any order)
        now: Evaluation instant (defaults to the current UTC time)
        exclude_window_id: Id of a window to leave out, usually the active one

    Returns:
        UsageBaseline; DEFAULT_BASELINE when fewer than three windows
        qualify before or after outlier removal
    """
    now = ensure_utc(now) if now is not None else utc_now()
    horizon_start = now - BASELINE_HORIZON
    recent = [event for event in events if event.timestamp >= horizon_start]

    totals = window_totals(recent, exclude_window_id)
    if len(totals) < MIN_WINDOWS:
        logger.debug("Only %d qualifying windows; using default baseline", len(totals))
        return DEFAULT_BASELINE

    cleaned = remove_outliers_iqr(totals)
    if len(cleaned) < MIN_WINDOWS:
        logger.debug("Only %d windows left after outlier removal; using default baseline", len(cleaned))
        return DEFAULT_BASELINE

    mean = compute_mean(cleaned)
    stddev = compute_population_stddev(cleaned, mean)
    confidence = _assess_confidence(len(cleaned), mean, stddev)

    baseline = UsageBaseline(
        average_usage=round_half_up(mean),
        median_usage=round_half_up(compute_median(cleaned)),
        standard_deviation=round_half_up(stddev),
        percentile_75=round_half_up(compute_percentile(cleaned, 75)),
        percentile_90=round_half_up(compute_percentile(cleaned, 90)),
        high_usage_threshold=round_half_up(mean + stddev),
        critical_usage_threshold=round_half_up(mean + 2 * stddev),
        total_sessions=len(cleaned),
        analysis_method="statistical_baseline",
        confidence=confidence,
    )
    logger.debug(
        "Baseline from %d windows (%d dropped as outliers): avg=%d sd=%d confidence=%s",
        len(cleaned), len(totals) - len(cleaned), baseline.average_usage,
        baseline.standard_deviation, confidence.value,
    )
    return baseline


def _assess_confidence(sample_count: int, mean: float, stddev: float) -> Confidence:
    if sample_count >= 20 and stddev < mean * 0.5:
        return Confidence.HIGH
    if sample_count < 10 or stddev > mean:
        return Confidence.LOW
    return Confidence.MEDIUM


def get_usage_level(current_usage: int, baseline: UsageBaseline) -> UsageLevel:
    """Classify current usage against the baseline thresholds."""
    if current_usage >= baseline.critical_usage_threshold:
        return UsageLevel.CRITICAL
    if current_usage >= baseline.high_usage_threshold:
        return UsageLevel.HIGH
    if current_usage >= baseline.average_usage * 0.5:
        return UsageLevel.NORMAL
    return UsageLevel.LOW


def calculate_usage_percentage(current_usage: int, limit: int) -> int:
    """Usage as a whole percentage of ``limit``; may exceed 100.

    Returns 0 for a non-positive limit.
    """
    if limit <= 0:
        return 0
    return round_half_up(current_usage / limit * 100)
