"""
Unit tests for rate limit detection and effective limit selection.
"""

from datetime import datetime, timedelta, timezone
from typing import List

from usage_window_guard.core.baseline import DEFAULT_BASELINE, Confidence
from usage_window_guard.core.rate_limit import (
    NO_DETECTION,
    RateLimitDetection,
    analyze_sessions,
    cluster_candidates,
    detect_rate_limit,
    detection_safety_margin,
    format_detection_result,
    select_effective_limit,
    statistical_limit,
)
from usage_window_guard.storage.models import UsageEvent

DAY = datetime(2026, 10, 10, 0, 0, tzinfo=timezone.utc)


def create_event(timestamp: datetime, tokens: int) -> UsageEvent:
    """Create a test event carrying ``tokens`` rate-limit tokens."""
    return UsageEvent(timestamp=timestamp, input_tokens=tokens // 2, output_tokens=tokens - tokens // 2)


def create_sessions(totals: List[int], spacing_hours: int = 6) -> List[UsageEvent]:
    """One single-event session per total, ``spacing_hours`` apart."""
    return [create_event(DAY + timedelta(hours=spacing_hours * i), total) for i, total in enumerate(totals)]


class TestSessionAnalysis:
    """Test session grouping and gap measurement."""

    def test_gap_to_next_session_start(self):
        events = [
            create_event(DAY + timedelta(minutes=30), 20_000),
            create_event(DAY + timedelta(hours=6, minutes=45), 20_000),
        ]
        sessions = analyze_sessions(events, now=DAY + timedelta(hours=7))

        assert len(sessions) == 2
        # Next session is floored to 06:00
        assert sessions[0].gap_after == timedelta(hours=5, minutes=30)
        assert sessions[1].gap_after == timedelta(minutes=15)

    def test_last_session_gap_measured_to_now(self):
        events = [create_event(DAY, 40_000)]
        sessions = analyze_sessions(events, now=DAY + timedelta(hours=2))

        assert sessions[0].gap_after == timedelta(hours=2)
        assert sessions[0].is_likely_limit_hit


class TestClustering:
    """Test greedy candidate clustering."""

    def test_groups_by_tolerance(self):
        clusters = cluster_candidates([41_000, 20_000, 40_000, 21_000, 42_000])
        assert clusters == [[20_000, 21_000], [40_000, 41_000, 42_000]]

    def test_running_center(self):
        """Center moves to 22_500 so 27_000 is within 5000 of it."""
        clusters = cluster_candidates([20_000, 25_000, 27_000])
        assert clusters == [[20_000, 25_000, 27_000]]


class TestDetection:
    """Test limit inference from session history."""

    def test_no_events(self):
        assert detect_rate_limit([], DAY) == NO_DETECTION

    def test_no_candidates_yields_null(self):
        """A short session still in progress is not a limit hit."""
        events = [
            create_event(DAY, 20_000),
            create_event(DAY + timedelta(hours=1), 20_000),
        ]
        result = detect_rate_limit(events, now=DAY + timedelta(hours=1, minutes=30))

        assert result.detected_limit is None
        assert result.confidence == Confidence.LOW
        assert result.sample_count == 0
        assert result.candidate_limits == ()

    def test_small_sessions_are_not_candidates(self):
        events = create_sessions([9_000, 12_000, 8_000])
        assert detect_rate_limit(events, now=DAY + timedelta(days=2)).detected_limit is None

    def test_implausible_totals_are_not_candidates(self):
        events = create_sessions([250_000, 300_000])
        assert detect_rate_limit(events, now=DAY + timedelta(days=2)).detected_limit is None

    def test_single_candidate_low_confidence(self):
        """Only the 38K session qualifies; its limit is still reported."""
        events = create_sessions([12_000, 12_000, 12_000])
        start = DAY + timedelta(hours=18)
        # 18:00 to 21:30, then quiet until 23:00 (next session start)
        events += [create_event(start + timedelta(minutes=30 * i), 5_000) for i in range(7)]
        events.append(create_event(start + timedelta(minutes=30 * 7), 3_000))
        events.append(create_event(DAY + timedelta(hours=23, minutes=5), 2_000))

        result = detect_rate_limit(events, now=DAY + timedelta(hours=23, minutes=30))

        assert result.candidate_limits == (38_000,)
        assert result.sample_count == 1
        assert result.confidence == Confidence.LOW
        assert result.detected_limit == 32_300  # 38_000 * 0.85

    def test_repeated_full_sessions(self):
        """Three 40K sessions followed by a 38K session and a 90 minute gap."""
        events = []
        for i in range(3):
            base = DAY + timedelta(hours=6 * i)
            events += [create_event(base, 20_000), create_event(base + timedelta(minutes=30), 20_000)]
        start = DAY + timedelta(hours=18)
        events += [create_event(start + timedelta(minutes=30 * i), 5_000) for i in range(7)]
        events.append(create_event(start + timedelta(minutes=30 * 7), 3_000))
        events.append(create_event(DAY + timedelta(hours=23, minutes=5), 2_000))

        result = detect_rate_limit(events, now=DAY + timedelta(hours=23, minutes=30))

        assert 38_000 in result.candidate_limits
        assert result.candidate_limits == (38_000, 40_000, 40_000, 40_000)
        assert result.detected_limit == 32_300
        assert result.confidence == Confidence.MEDIUM

    def test_high_confidence(self):
        events = create_sessions([40_000, 41_000, 42_000, 40_500, 41_500])
        result = detect_rate_limit(events, now=DAY + timedelta(days=3))

        assert result.sample_count == 5
        assert result.confidence == Confidence.HIGH
        assert result.detected_limit == 34_000
        assert result.detection_method == "session_gap_analysis"

    def test_largest_cluster_wins(self):
        events = create_sessions([20_000, 60_000, 61_000, 62_000])
        result = detect_rate_limit(events, now=DAY + timedelta(days=3))

        assert result.detected_limit == 51_000  # 60_000 * 0.85

    def test_format(self):
        assert format_detection_result(NO_DETECTION) == "No rate limit detected"
        detection = RateLimitDetection(34_000, Confidence.HIGH, 5, "session_gap_analysis", ())
        assert format_detection_result(detection) == "Detected: ~34K tokens (high confidence, 5 samples)"


class TestEffectiveLimit:
    """Test effective limit precedence."""

    def make_detection(self, limit: int, confidence: Confidence, samples: int) -> RateLimitDetection:
        return RateLimitDetection(limit, confidence, samples, "session_gap_analysis", ())

    def test_custom_limit_wins(self):
        detection = self.make_detection(40_000, Confidence.HIGH, 6)
        effective = select_effective_limit(DEFAULT_BASELINE, detection, custom_limit=88_000)

        assert effective.limit == 88_000
        assert effective.source == "custom"

    def test_non_positive_custom_limit_ignored(self):
        effective = select_effective_limit(DEFAULT_BASELINE, NO_DETECTION, custom_limit=0)
        assert effective.source == "statistical"

    def test_detected_limit_with_margin(self):
        detection = self.make_detection(40_000, Confidence.HIGH, 5)
        effective = select_effective_limit(DEFAULT_BASELINE, detection)

        assert effective.source == "detected"
        assert effective.limit == 38_000
        assert effective.safety_margin == 0.95

    def test_margins(self):
        assert detection_safety_margin(self.make_detection(1, Confidence.HIGH, 5)) == 0.95
        assert detection_safety_margin(self.make_detection(1, Confidence.MEDIUM, 7)) == 0.92
        assert detection_safety_margin(self.make_detection(1, Confidence.MEDIUM, 4)) == 0.88
        assert detection_safety_margin(self.make_detection(1, Confidence.MEDIUM, 3)) == 0.85

    def test_low_confidence_detection_falls_back(self):
        detection = self.make_detection(40_000, Confidence.LOW, 4)
        effective = select_effective_limit(DEFAULT_BASELINE, detection)

        assert effective.source == "statistical"

    def test_too_few_samples_falls_back(self):
        detection = self.make_detection(40_000, Confidence.MEDIUM, 2)
        assert select_effective_limit(DEFAULT_BASELINE, detection).source == "statistical"

    def test_statistical_fallback(self):
        # max(55_000, 0.8 * 60_000, 1.2 * 40_000, 25_000)
        assert statistical_limit(DEFAULT_BASELINE) == 55_000
        effective = select_effective_limit(DEFAULT_BASELINE, NO_DETECTION)
        assert effective.limit == 55_000
        assert "Statistical fallback" in effective.description
