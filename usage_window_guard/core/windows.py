"""
Session window segmentation.

Splits a usage event stream into fixed five-hour session windows and
identifies the window that currently counts against the rate limit.

Windows open at the UTC hour containing their first event, so they are
hour-aligned rather than anchored to the exact first-event time. A new
window opens when an event arrives more than five hours after the
window start or more than five hours after the previous event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from .token_counter import calculate_token_usage, most_used_model
from usage_window_guard.storage.models import UsageEvent, ensure_utc

logger = logging.getLogger(__name__)

# Fixed by the upstream service; not configurable
SESSION_DURATION = timedelta(hours=5)


def floor_to_hour(timestamp: datetime) -> datetime:
    """Floor a timestamp to the start of its UTC hour."""
    return ensure_utc(timestamp).replace(minute=0, second=0, microsecond=0)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionWindow:
    """Aggregate over a contiguous run of events (a "block")."""
    window_id: str
    start_time: datetime
    end_time: datetime
    first_event_time: datetime
    records: Tuple[UsageEvent, ...]
    total_input_tokens: int
    total_output_tokens: int
    total_cache_creation_tokens: int
    total_cache_read_tokens: int
    total_tokens: int
    request_count: int
    is_active: bool
    time_until_reset: timedelta

    @property
    def last_event_time(self) -> datetime:
        return self.records[-1].timestamp if self.records else self.start_time

    @property
    def most_used_model(self) -> str:
        return most_used_model(self.records)


def group_events(events: Iterable[UsageEvent]) -> List[Tuple[datetime, List[UsageEvent]]]:
    """Group events into hour-aligned five-hour blocks.

    Args:
        events: Usage events in any order

    Returns:
        List of (block_start, events) in chronological order. Every input
        event appears in exactly one block.
    """
    sorted_events = sorted(events, key=lambda e: e.timestamp)
    groups: List[Tuple[datetime, List[UsageEvent]]] = []

    block_start: Optional[datetime] = None
    block_events: List[UsageEvent] = []

    for event in sorted_events:
        if block_start is None:
            block_start = floor_to_hour(event.timestamp)
            block_events = [event]
            continue

        since_start = event.timestamp - block_start
        since_last = event.timestamp - block_events[-1].timestamp
        if since_start > SESSION_DURATION or since_last > SESSION_DURATION:
            groups.append((block_start, block_events))
            block_start = floor_to_hour(event.timestamp)
            block_events = [event]
        else:
            block_events.append(event)

    if block_start is not None and block_events:
        groups.append((block_start, block_events))

    return groups


def build_window(start_time: datetime, records: Sequence[UsageEvent], now: datetime) -> SessionWindow:
    """Build a SessionWindow for ``records`` evaluated at ``now``."""
    now = ensure_utc(now)
    end_time = start_time + SESSION_DURATION
    last_event_time = records[-1].timestamp if records else start_time
    is_active = (now - last_event_time) < SESSION_DURATION and now < end_time
    usage = calculate_token_usage(records)

    return SessionWindow(
        window_id=start_time.isoformat(),
        start_time=start_time,
        end_time=end_time,
        first_event_time=records[0].timestamp if records else start_time,
        records=tuple(records),
        total_input_tokens=usage.input_tokens,
        total_output_tokens=usage.output_tokens,
        total_cache_creation_tokens=usage.cache_creation_tokens,
        total_cache_read_tokens=usage.cache_read_tokens,
        total_tokens=usage.total_tokens,
        request_count=usage.request_count,
        is_active=is_active,
        time_until_reset=max(timedelta(0), end_time - now),
    )


def partition_windows(events: Iterable[UsageEvent], now: Optional[datetime] = None) -> List[SessionWindow]:
    """Partition all events into consecutive, non-overlapping windows.

    Args:
        events: Usage events in any order
        now: Evaluation instant (defaults to the current UTC time)

    Returns:
        Windows in chronological order; empty for no events
    """
    now = ensure_utc(now) if now is not None else utc_now()
    return [build_window(start, records, now) for start, records in group_events(events)]


def current_window(events: Iterable[UsageEvent], now: Optional[datetime] = None) -> Optional[SessionWindow]:
    """Return the window that currently counts against the rate limit.

    The most recent active window wins. When no window is active the
    most recent window is returned (inactive) so callers still have
    something to show. Returns None only when there are no events.
    """
    windows = partition_windows(events, now)
    if not windows:
        return None

    for window in reversed(windows):
        if window.is_active:
            return window

    logger.debug("No active window among %d; using most recent", len(windows))
    return windows[-1]
