"""
Current usage status estimation.

Composes windowing, baseline, limit detection and burn rate into one
snapshot for display. Pure: everything is recomputed from the events
passed in, and a stale result can simply be discarded.

Evaluation Order:
1. Current window - what counts against the limit right now
2. Baseline - typical window usage, excluding the active window
3. Effective limit - override, detected ceiling or statistical fallback
4. Burn rate - recent velocity and threshold forecasts
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from .baseline import (
    UsageBaseline,
    UsageLevel,
    calculate_usage_percentage,
    compute_baseline,
    get_usage_level,
)
from .burn_rate import EMPTY_ANALYSIS, BurnRateAnalysis, analyze_burn_rate
from .rate_limit import EffectiveLimit, RateLimitDetection, detect_rate_limit, select_effective_limit
from .windows import SessionWindow, current_window, utc_now
from usage_window_guard.storage.models import UsageError, UsageEvent, ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimationSnapshot:
    """Everything the presentation layer needs for one refresh."""
    window: Optional[SessionWindow]
    baseline: UsageBaseline
    detection: RateLimitDetection
    effective_limit: EffectiveLimit
    current_usage: int
    usage_percentage: int
    usage_level: UsageLevel
    is_high_usage: bool
    is_critical_usage: bool
    reset_time: Optional[datetime]
    time_until_reset: timedelta
    burn_rate: BurnRateAnalysis
    estimated_tokens_per_minute: int
    estimated_depletion_time: Optional[datetime]
    current_model: str
    evaluated_at: datetime
    error: Optional[UsageError] = None

    @property
    def has_data(self) -> bool:
        return self.window is not None


def _window_average_rate(window: SessionWindow) -> float:
    """Tokens per minute averaged over the full window duration."""
    minutes = (window.end_time - window.start_time).total_seconds() / 60
    return window.total_tokens / minutes if minutes > 0 else 0.0


def _depletion_time(
    burn_rate: BurnRateAnalysis,
    window: SessionWindow,
    critical_threshold: int,
    now: datetime,
) -> Optional[datetime]:
    if burn_rate.predictions.estimated_depletion_time is not None:
        return burn_rate.predictions.estimated_depletion_time

    rate = _window_average_rate(window)
    if rate > 0 and window.total_tokens < critical_threshold:
        minutes = (critical_threshold - window.total_tokens) / rate
        depletion = now + timedelta(minutes=minutes)
        if depletion <= window.end_time:
            return depletion
    return None


def compute_current_status(
    events: Sequence[UsageEvent],
    now: Optional[datetime] = None,
    custom_limit: Optional[int] = None,
    error: Optional[UsageError] = None,
) -> EstimationSnapshot:
    """Build the current usage snapshot from the full event history.

    Args:
        events: Every known usage event (not mutated)
        now: Evaluation instant (defaults to the current UTC time)
        custom_limit: User override for the limit; used when positive
        error: Ingestion error descriptor to pass through unchanged

    Returns:
        EstimationSnapshot; with no events the window is None and usage
        is zero, which is not itself an error
    """
    now = ensure_utc(now) if now is not None else utc_now()

    window = current_window(events, now)
    exclude_id = window.window_id if window is not None and window.is_active else None
    baseline = compute_baseline(events, now, exclude_window_id=exclude_id)
    detection = detect_rate_limit(events, now)
    effective = select_effective_limit(baseline, detection, custom_limit)

    current_usage = window.total_tokens if window is not None else 0

    if window is not None:
        burn_rate = analyze_burn_rate(
            window.records,
            now,
            current_usage,
            baseline.high_usage_threshold,
            baseline.average_usage,
        )
        estimated_rate = max(round(_window_average_rate(window)), burn_rate.tokens_per_minute)
        depletion = _depletion_time(burn_rate, window, baseline.critical_usage_threshold, now)
    else:
        burn_rate = EMPTY_ANALYSIS
        estimated_rate = 0
        depletion = None

    snapshot = EstimationSnapshot(
        window=window,
        baseline=baseline,
        detection=detection,
        effective_limit=effective,
        current_usage=current_usage,
        usage_percentage=calculate_usage_percentage(current_usage, effective.limit),
        usage_level=get_usage_level(current_usage, baseline),
        is_high_usage=current_usage >= baseline.high_usage_threshold,
        is_critical_usage=current_usage >= baseline.critical_usage_threshold,
        reset_time=window.end_time if window is not None else None,
        time_until_reset=window.time_until_reset if window is not None else timedelta(0),
        burn_rate=burn_rate,
        estimated_tokens_per_minute=estimated_rate,
        estimated_depletion_time=depletion,
        current_model=window.most_used_model if window is not None else "unknown",
        evaluated_at=now,
        error=error,
    )
    logger.debug(
        "Status: %d tokens, %d%% of %d (%s)",
        current_usage, snapshot.usage_percentage, effective.limit, effective.source,
    )
    return snapshot
