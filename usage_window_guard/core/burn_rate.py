"""
Burn rate, trend and depletion forecasting for the current window.

Looks only at the last two hours of activity. The rate favours recent
requests through exponential weighting, the trend comes from a least
squares fit over ten-minute buckets, and predictions are capped at five
hours (one full window).
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .baseline import Confidence
from .pricing import calculate_cost
from .stats import linear_regression, round_half_up
from usage_window_guard.storage.models import UsageEvent, ensure_utc

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW = timedelta(hours=2)
ACTIVITY_WINDOWS = (timedelta(minutes=15), timedelta(minutes=30), timedelta(minutes=60))
PREDICTION_HORIZON = timedelta(hours=5)

# Tunable: weight of the i-th oldest event is RECENCY_WEIGHT_BASE ** i
RECENCY_WEIGHT_BASE = 1.5
# Tunable: bucket width for the trend regression
TREND_BUCKET = timedelta(minutes=10)
MIN_TREND_BUCKETS = 3
TREND_ADJUSTMENT = 0.2
ESTIMATED_LIMIT_FLOOR = 35_000


class Trend(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class RecentActivity:
    """Rate-limit tokens consumed in overlapping trailing windows."""
    last_15_min: int = 0
    last_30_min: int = 0
    last_60_min: int = 0


@dataclass(frozen=True)
class BurnRatePredictions:
    time_to_high_threshold: Optional[datetime] = None
    time_to_baseline: Optional[datetime] = None
    estimated_depletion_time: Optional[datetime] = None
    confidence: Confidence = Confidence.LOW


@dataclass(frozen=True)
class ModelUsageBreakdown:
    """Per-model share of recent usage."""
    model: str
    tokens: int
    requests: int
    avg_tokens_per_request: int
    percentage: int
    estimated_cost: float


@dataclass(frozen=True)
class BurnRateAnalysis:
    tokens_per_minute: int = 0
    tokens_per_hour: int = 0
    average_request_size: int = 0
    recent_activity: RecentActivity = RecentActivity()
    trend: Trend = Trend.STABLE
    predictions: BurnRatePredictions = BurnRatePredictions()
    model_breakdown: Tuple[ModelUsageBreakdown, ...] = ()


EMPTY_ANALYSIS = BurnRateAnalysis()


def analyze_burn_rate(
    records: Iterable[UsageEvent],
    now: datetime,
    current_usage: int,
    high_threshold: int,
    baseline_usage: int,
) -> BurnRateAnalysis:
    """Analyse recent consumption velocity and forecast threshold crossings.

    Args:
        records: Events of the current window (any order)
        now: Evaluation instant
        current_usage: Rate-limit tokens used so far in the window
        high_threshold: Baseline high-usage threshold
        baseline_usage: Baseline average usage

    Returns:
        BurnRateAnalysis; EMPTY_ANALYSIS when nothing happened in the
        last two hours
    """
    now = ensure_utc(now)
    analysis_start = now - ANALYSIS_WINDOW
    recent = sorted(
        (record for record in records if record.timestamp >= analysis_start),
        key=lambda r: r.timestamp,
    )
    if not recent:
        return EMPTY_ANALYSIS

    tokens_per_minute, average_request_size = _weighted_burn_rate(recent)
    trend = analyze_trend(recent, now)
    predictions = generate_predictions(
        tokens_per_minute, current_usage, high_threshold, baseline_usage, now, trend,
    )

    analysis = BurnRateAnalysis(
        tokens_per_minute=tokens_per_minute,
        tokens_per_hour=tokens_per_minute * 60,
        average_request_size=average_request_size,
        recent_activity=recent_activity(recent, now),
        trend=trend,
        predictions=predictions,
        model_breakdown=tuple(model_breakdown(recent)),
    )
    logger.debug(
        "Burn rate %d tok/min over %d events, trend=%s",
        tokens_per_minute, len(recent), trend.value,
    )
    return analysis


def recent_activity(records: Sequence[UsageEvent], now: datetime) -> RecentActivity:
    sums = [
        sum(r.total_tokens for r in records if r.timestamp >= now - window)
        for window in ACTIVITY_WINDOWS
    ]
    return RecentActivity(last_15_min=sums[0], last_30_min=sums[1], last_60_min=sums[2])


def _weighted_burn_rate(records: Sequence[UsageEvent]) -> Tuple[int, int]:
    """Return (tokens_per_minute, average_request_size) for sorted records."""
    count = len(records)
    total_tokens = sum(r.total_tokens for r in records)
    average_request_size = round_half_up(total_tokens / count)

    span_minutes = (records[-1].timestamp - records[0].timestamp).total_seconds() / 60
    if span_minutes <= 0:
        return 0, average_request_size

    # Weights are scaled by the newest weight; only their ratios matter and
    # this keeps long runs of events from overflowing.
    weights = [RECENCY_WEIGHT_BASE ** (index - (count - 1)) for index in range(count)]
    weighted_sum = sum(r.total_tokens * w for r, w in zip(records, weights))
    weighted_average = weighted_sum / sum(weights)

    tokens_per_minute = weighted_average * (count / span_minutes)
    return max(0, round_half_up(tokens_per_minute)), average_request_size


def bucket_totals(records: Sequence[UsageEvent], now: datetime) -> List[int]:
    """Non-empty ten-minute bucket sums from the first record up to ``now``."""
    totals = []
    bucket_start = records[0].timestamp
    while bucket_start < now:
        bucket_end = bucket_start + TREND_BUCKET
        tokens = sum(r.total_tokens for r in records if bucket_start <= r.timestamp < bucket_end)
        if tokens > 0:
            totals.append(tokens)
        bucket_start = bucket_end
    return totals


def analyze_trend(records: Sequence[UsageEvent], now: datetime) -> Trend:
    """Classify the direction of usage with a least squares slope.

    The slope threshold is 100 tokens/bucket for steep slopes and 50
    otherwise.
    """
    if len(records) < MIN_TREND_BUCKETS:
        return Trend.STABLE

    totals = bucket_totals(records, ensure_utc(now))
    if len(totals) < MIN_TREND_BUCKETS:
        return Trend.STABLE

    slope, _ = linear_regression(list(range(len(totals))), totals)
    threshold = 100 if abs(slope) > 100 else 50

    if slope > threshold:
        return Trend.INCREASING
    if slope < -threshold:
        return Trend.DECREASING
    return Trend.STABLE


def _arrival_time(target: int, current_usage: int, rate: float, now: datetime) -> Optional[datetime]:
    if current_usage >= target:
        return None
    minutes = (target - current_usage) / rate
    if 0 < minutes < PREDICTION_HORIZON.total_seconds() / 60:
        return now + timedelta(minutes=minutes)
    return None


def generate_predictions(
    tokens_per_minute: int,
    current_usage: int,
    high_threshold: int,
    baseline_usage: int,
    now: datetime,
    trend: Trend,
) -> BurnRatePredictions:
    """Forecast when usage reaches the high threshold, baseline and limit.

    The rate is nudged 20% in the direction of the trend. Arrivals more
    than five hours out are omitted.
    """
    if tokens_per_minute <= 0:
        return BurnRatePredictions(confidence=Confidence.LOW)

    adjusted_rate = float(tokens_per_minute)
    if trend == Trend.INCREASING:
        adjusted_rate *= 1 + TREND_ADJUSTMENT
    elif trend == Trend.DECREASING:
        adjusted_rate *= 1 - TREND_ADJUSTMENT

    estimated_limit = max(high_threshold * 2, ESTIMATED_LIMIT_FLOOR)

    if tokens_per_minute > 10 and trend != Trend.STABLE:
        confidence = Confidence.HIGH
    elif tokens_per_minute < 5 or trend == Trend.STABLE:
        confidence = Confidence.LOW
    else:
        confidence = Confidence.MEDIUM

    return BurnRatePredictions(
        time_to_high_threshold=_arrival_time(high_threshold, current_usage, adjusted_rate, now),
        time_to_baseline=_arrival_time(baseline_usage, current_usage, adjusted_rate, now),
        estimated_depletion_time=_arrival_time(estimated_limit, current_usage, adjusted_rate, now),
        confidence=confidence,
    )


def model_breakdown(records: Sequence[UsageEvent]) -> List[ModelUsageBreakdown]:
    """Per-model tokens, requests, share and estimated cost, largest first."""
    stats: Dict[str, List[int]] = OrderedDict()
    for record in records:
        entry = stats.setdefault(record.model or "unknown", [0, 0, 0])
        entry[0] += record.input_tokens
        entry[1] += record.output_tokens
        entry[2] += 1

    total_tokens = sum(r.total_tokens for r in records)
    breakdown = []
    for model, (input_tokens, output_tokens, requests) in stats.items():
        tokens = input_tokens + output_tokens
        breakdown.append(ModelUsageBreakdown(
            model=model,
            tokens=tokens,
            requests=requests,
            avg_tokens_per_request=round_half_up(tokens / requests),
            percentage=round_half_up(tokens / total_tokens * 100) if total_tokens else 0,
            estimated_cost=calculate_cost(model, input_tokens, output_tokens),
        ))

    breakdown.sort(key=lambda b: b.tokens, reverse=True)
    return breakdown
