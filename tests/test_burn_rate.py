"""
Unit tests for burn rate analysis.

Tests weighted rate, trend classification, predictions and the per-model
breakdown over the last two hours of a window.
"""

from datetime import datetime, timedelta, timezone

from usage_window_guard.core.baseline import Confidence
from usage_window_guard.core.burn_rate import (
    EMPTY_ANALYSIS,
    Trend,
    analyze_burn_rate,
    analyze_trend,
    generate_predictions,
    model_breakdown,
    recent_activity,
)
from usage_window_guard.storage.models import UsageEvent

NOW = datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc)


def create_event(minutes_ago: float, tokens: int, model: str = "claude-3-5-sonnet") -> UsageEvent:
    """Create an event ``minutes_ago`` before NOW with ``tokens`` input tokens."""
    return UsageEvent(
        timestamp=NOW - timedelta(minutes=minutes_ago),
        input_tokens=tokens,
        output_tokens=0,
        model=model,
    )


class TestAnalysisWindow:
    """Test the two hour lookback."""

    def test_no_records(self):
        assert analyze_burn_rate([], NOW, 0, 45_000, 30_000) == EMPTY_ANALYSIS

    def test_stale_records_ignored(self):
        records = [create_event(150, 5_000), create_event(121, 5_000)]
        result = analyze_burn_rate(records, NOW, 10_000, 45_000, 30_000)

        assert result == EMPTY_ANALYSIS
        assert result.tokens_per_minute == 0
        assert result.trend == Trend.STABLE
        assert result.predictions.confidence == Confidence.LOW

    def test_single_record(self):
        """Zero time span gives no rate but still an average size."""
        result = analyze_burn_rate([create_event(5, 800)], NOW, 800, 45_000, 30_000)

        assert result.tokens_per_minute == 0
        assert result.average_request_size == 800
        assert result.predictions.time_to_high_threshold is None
        assert result.recent_activity.last_15_min == 800


class TestWeightedRate:
    """Test recency-weighted tokens per minute."""

    def test_two_records(self):
        # weights 1 and 1.5: (100 + 300) / 2.5 = 160; 160 * 2 / 10 min
        records = [create_event(20, 100), create_event(10, 200)]
        result = analyze_burn_rate(records, NOW, 300, 45_000, 30_000)

        assert result.tokens_per_minute == 32
        assert result.tokens_per_hour == 1_920
        assert result.average_request_size == 150

    def test_unordered_records(self):
        ordered = [create_event(20, 100), create_event(10, 200)]
        assert (analyze_burn_rate(list(reversed(ordered)), NOW, 300, 45_000, 30_000)
                == analyze_burn_rate(ordered, NOW, 300, 45_000, 30_000))

    def test_many_records_stay_finite(self):
        records = [create_event(119 - i * 0.05, 10) for i in range(2_000)]
        result = analyze_burn_rate(records, NOW, 20_000, 45_000, 30_000)

        assert result.tokens_per_minute > 0


class TestRecentActivity:

    def test_overlapping_windows(self):
        records = [create_event(90, 800), create_event(50, 400), create_event(20, 200), create_event(10, 100)]
        activity = recent_activity(records, NOW)

        assert activity.last_15_min == 100
        assert activity.last_30_min == 300
        assert activity.last_60_min == 700


class TestTrend:
    """Test slope classification over ten-minute buckets."""

    def test_increasing(self):
        records = [create_event(50 - 10 * i, tokens) for i, tokens in enumerate([100, 300, 600, 1_000, 1_500])]
        assert analyze_trend(records, NOW) == Trend.INCREASING

    def test_decreasing(self):
        records = [create_event(50 - 10 * i, tokens) for i, tokens in enumerate([1_500, 1_000, 600, 300, 100])]
        assert analyze_trend(records, NOW) == Trend.DECREASING

    def test_flat(self):
        records = [create_event(50 - 10 * i, 500) for i in range(5)]
        assert analyze_trend(records, NOW) == Trend.STABLE

    def test_gentle_slope_is_stable(self):
        """Slope of 40 per bucket stays under the threshold of 50."""
        records = [create_event(50 - 10 * i, 500 + 40 * i) for i in range(5)]
        assert analyze_trend(records, NOW) == Trend.STABLE

    def test_too_few_records(self):
        records = [create_event(30, 100), create_event(10, 5_000)]
        assert analyze_trend(records, NOW) == Trend.STABLE

    def test_too_few_buckets(self):
        """Three records in the same bucket give a single data point."""
        records = [create_event(9, 100), create_event(8, 1_000), create_event(7, 5_000)]
        assert analyze_trend(records, NOW) == Trend.STABLE


class TestPredictions:
    """Test threshold arrival forecasts."""

    def test_stable_trend(self):
        predictions = generate_predictions(100, 10_000, 20_000, 15_000, NOW, Trend.STABLE)

        assert predictions.time_to_high_threshold == NOW + timedelta(minutes=100)
        assert predictions.time_to_baseline == NOW + timedelta(minutes=50)
        # Limit estimate 40_000 is exactly 300 minutes away
        assert predictions.estimated_depletion_time is None
        assert predictions.confidence == Confidence.LOW

    def test_increasing_trend_speeds_up(self):
        predictions = generate_predictions(100, 10_000, 20_000, 15_000, NOW, Trend.INCREASING)

        assert predictions.confidence == Confidence.HIGH
        assert predictions.time_to_high_threshold < NOW + timedelta(minutes=100)
        assert predictions.estimated_depletion_time == NOW + timedelta(minutes=250)

    def test_medium_confidence(self):
        predictions = generate_predictions(7, 10_000, 20_000, 15_000, NOW, Trend.DECREASING)
        assert predictions.confidence == Confidence.MEDIUM

    def test_already_above_threshold(self):
        predictions = generate_predictions(500, 50_000, 30_000, 15_000, NOW, Trend.STABLE)

        assert predictions.time_to_high_threshold is None
        assert predictions.time_to_baseline is None
        # Limit estimate is 2 * 30_000
        assert predictions.estimated_depletion_time == NOW + timedelta(minutes=20)

    def test_zero_rate(self):
        predictions = generate_predictions(0, 10_000, 20_000, 15_000, NOW, Trend.INCREASING)

        assert predictions.time_to_high_threshold is None
        assert predictions.confidence == Confidence.LOW

    def test_predictions_never_in_past(self):
        for rate in (1, 10, 100, 1_000, 10_000):
            predictions = generate_predictions(rate, 5_000, 20_000, 15_000, NOW, Trend.DECREASING)
            for when in (predictions.time_to_high_threshold, predictions.time_to_baseline,
                         predictions.estimated_depletion_time):
                assert when is None or NOW < when < NOW + timedelta(hours=5)


class TestModelBreakdown:
    """Test per-model shares and costs."""

    def test_shares_and_costs(self):
        records = [
            UsageEvent(timestamp=NOW - timedelta(minutes=30), input_tokens=1_000_000,
                       output_tokens=100_000, model="claude-3-opus-20240229"),
            UsageEvent(timestamp=NOW - timedelta(minutes=20), input_tokens=200_000,
                       output_tokens=0, model="claude-3-5-haiku"),
        ]
        breakdown = model_breakdown(records)

        assert [b.model for b in breakdown] == ["claude-3-opus-20240229", "claude-3-5-haiku"]
        assert breakdown[0].estimated_cost == 22.50
        assert breakdown[0].percentage == 85
        assert breakdown[0].avg_tokens_per_request == 1_100_000
        assert breakdown[1].estimated_cost == 0.05
        assert breakdown[1].percentage == 15

    def test_unknown_model_uses_default_pricing(self):
        records = [UsageEvent(timestamp=NOW, input_tokens=1_000_000, output_tokens=0, model="mystery-model")]
        breakdown = model_breakdown(records)

        assert breakdown[0].estimated_cost == 3.00
        assert breakdown[0].percentage == 100

    def test_sorted_by_tokens(self):
        records = [
            create_event(30, 100, model="claude-3-haiku"),
            create_event(20, 900, model="claude-3-5-sonnet"),
            create_event(10, 100, model="claude-3-haiku"),
        ]
        breakdown = model_breakdown(records)

        assert [b.model for b in breakdown] == ["claude-3-5-sonnet", "claude-3-haiku"]
        assert breakdown[1].requests == 2
