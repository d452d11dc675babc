"""
Rate limit inference and effective limit selection.

The real limit is not published, so it is inferred from history: a
window that ended with a long idle gap, or that ran for most of its five
hours, was plausibly cut short by the limit. Totals of such windows are
clustered and the most common cluster gives the estimate.

Selection order for the limit used in percentages:
1. User override - an explicit positive limit always wins
2. Historical detection - when confident enough, with a safety margin
3. Statistical fallback - derived from the baseline percentiles
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from .baseline import Confidence, UsageBaseline
from .stats import round_half_up
from .windows import group_events, utc_now
from usage_window_guard.storage.models import UsageEvent, ensure_utc

logger = logging.getLogger(__name__)

# Tunable heuristics
MIN_LIMIT_TOKENS = 10_000
PLAUSIBLE_LIMIT_RANGE = (15_000, 200_000)
LONG_GAP = timedelta(hours=1)
FULL_WINDOW_DURATION = timedelta(hours=3)
CLUSTER_TOLERANCE = 5_000
DETECTION_HAIRCUT = 0.85

STATISTICAL_FLOOR = 25_000
MIN_DETECTION_SAMPLES = 3


@dataclass(frozen=True)
class RateLimitDetection:
    """Ceiling inferred from historical windows."""
    detected_limit: Optional[int]
    confidence: Confidence
    sample_count: int
    detection_method: str
    candidate_limits: Tuple[int, ...] = ()


NO_DETECTION = RateLimitDetection(
    detected_limit=None,
    confidence=Confidence.LOW,
    sample_count=0,
    detection_method="no_data",
)


@dataclass(frozen=True)
class SessionAnalysis:
    """One historical window with the signals used to flag limit hits."""
    start_time: datetime
    last_activity_time: datetime
    total_tokens: int
    gap_after: timedelta

    @property
    def duration(self) -> timedelta:
        return self.last_activity_time - self.start_time

    @property
    def is_likely_limit_hit(self) -> bool:
        low, high = PLAUSIBLE_LIMIT_RANGE
        return (
            self.total_tokens >= MIN_LIMIT_TOKENS
            and low <= self.total_tokens <= high
            and (self.gap_after > LONG_GAP or self.duration >= FULL_WINDOW_DURATION)
        )


@dataclass
class _Cluster:
    center: float
    values: List[int] = field(default_factory=list)


def analyze_sessions(events: Iterable[UsageEvent], now: Optional[datetime] = None) -> List[SessionAnalysis]:
    """Group the full history into windows and measure each one.

    The gap after a window runs to the start of the next window, or to
    ``now`` for the most recent one.
    """
    now = ensure_utc(now) if now is not None else utc_now()
    groups = group_events(events)
    sessions = []
    for index, (start, records) in enumerate(groups):
        last_activity = records[-1].timestamp
        if index + 1 < len(groups):
            gap_after = groups[index + 1][0] - last_activity
        else:
            gap_after = now - last_activity
        sessions.append(SessionAnalysis(
            start_time=start,
            last_activity_time=last_activity,
            total_tokens=sum(event.total_tokens for event in records),
            gap_after=gap_after,
        ))
    return sessions


def cluster_candidates(values: Iterable[int], tolerance: int = CLUSTER_TOLERANCE) -> List[List[int]]:
    """Greedy one-pass clustering of ascending values.

    Each value joins the first cluster whose running mean is within
    ``tolerance``; otherwise it starts a new cluster.
    """
    clusters: List[_Cluster] = []
    for value in sorted(values):
        for cluster in clusters:
            if abs(value - cluster.center) <= tolerance:
                cluster.values.append(value)
                cluster.center = sum(cluster.values) / len(cluster.values)
                break
        else:
            clusters.append(_Cluster(center=value, values=[value]))
    return [cluster.values for cluster in clusters]


def detect_rate_limit(events: Iterable[UsageEvent], now: Optional[datetime] = None) -> RateLimitDetection:
    """Infer a plausible token ceiling from the whole usage history.

    Args:
        events: Every known usage event (any order)
        now: Evaluation instant, used as the gap end for the last window

    Returns:
        RateLimitDetection; NO_DETECTION when no window looks limit-bound
    """
    sessions = analyze_sessions(events, now)
    candidates = sorted(s.total_tokens for s in sessions if s.is_likely_limit_hit)
    if not candidates:
        logger.debug("No limit-hit candidates among %d windows", len(sessions))
        return NO_DETECTION

    clusters = cluster_candidates(candidates)
    # max() keeps the first cluster on ties
    largest = max(clusters, key=len)
    detected_limit = round_half_up(min(largest) * DETECTION_HAIRCUT)

    if len(candidates) >= 5 and len(largest) >= 3:
        confidence = Confidence.HIGH
    elif len(candidates) >= 3 and len(largest) >= 2:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    detection = RateLimitDetection(
        detected_limit=detected_limit,
        confidence=confidence,
        sample_count=len(candidates),
        detection_method="session_gap_analysis",
        candidate_limits=tuple(candidates),
    )
    logger.debug("%s", format_detection_result(detection))
    return detection


def format_detection_result(detection: RateLimitDetection) -> str:
    if detection.detected_limit is None:
        return "No rate limit detected"
    limit_k = round(detection.detected_limit / 1000)
    return (
        f"Detected: ~{limit_k}K tokens ({detection.confidence.value} confidence, "
        f"{detection.sample_count} samples)"
    )


@dataclass(frozen=True)
class EffectiveLimit:
    """The limit used for percentages, and where it came from."""
    limit: int
    source: str  # "custom", "detected" or "statistical"
    description: str
    safety_margin: Optional[float] = None


def detection_safety_margin(detection: RateLimitDetection) -> float:
    """Margin applied to a detected limit; tighter with more evidence."""
    if detection.sample_count >= 5:
        return 0.95 if detection.confidence == Confidence.HIGH else 0.92
    if detection.sample_count == 4:
        return 0.92 if detection.confidence == Confidence.HIGH else 0.88
    return 0.92 if detection.confidence == Confidence.HIGH else 0.85


def statistical_limit(baseline: UsageBaseline) -> int:
    """Fallback limit derived from baseline percentiles and thresholds."""
    options = [
        baseline.percentile_90,
        baseline.critical_usage_threshold * 0.8,
        baseline.percentile_75 * 1.2,
        STATISTICAL_FLOOR,
    ]
    return round_half_up(max(options))


def select_effective_limit(
    baseline: UsageBaseline,
    detection: RateLimitDetection,
    custom_limit: Optional[int] = None,
) -> EffectiveLimit:
    """Pick the limit to measure current usage against.

    Args:
        baseline: Statistical baseline for the fallback
        detection: Result of detect_rate_limit
        custom_limit: User override; ignored unless positive

    Returns:
        EffectiveLimit with its source and a human-readable description
    """
    if custom_limit is not None and custom_limit > 0:
        return EffectiveLimit(
            limit=int(custom_limit),
            source="custom",
            description=f"User-configured: {int(custom_limit):,} tokens",
        )

    if (detection.detected_limit is not None
            and detection.confidence != Confidence.LOW
            and detection.sample_count >= MIN_DETECTION_SAMPLES):
        margin = detection_safety_margin(detection)
        limit = round_half_up(detection.detected_limit * margin)
        return EffectiveLimit(
            limit=limit,
            source="detected",
            description=(
                f"Historical detection: ~{round(limit / 1000)}K tokens "
                f"({detection.confidence.value} confidence, {detection.sample_count} samples, "
                f"{round(margin * 100)}% margin)"
            ),
            safety_margin=margin,
        )

    limit = statistical_limit(baseline)
    return EffectiveLimit(
        limit=limit,
        source="statistical",
        description=f"Statistical fallback: ~{round(limit / 1000)}K tokens (90th percentile or adjusted critical threshold)",
    )
