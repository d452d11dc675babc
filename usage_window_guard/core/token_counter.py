"""
Token counting and usage aggregation.

Sums token counts over a run of usage events.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from usage_window_guard.storage.models import UsageEvent


@dataclass(frozen=True)
class TokenUsage:
    """Aggregated token counts over a set of events.

    Cache tokens are carried for reporting but are not part of
    ``total_tokens``, which only counts what the rate limit counts.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    request_count: int = 0

    @property
    def total_tokens(self) -> int:
        """Total rate-limit tokens (input + output)."""
        return self.input_tokens + self.output_tokens


def calculate_token_usage(events: Iterable[UsageEvent]) -> TokenUsage:
    """Aggregate token counts across ``events`` in a single pass."""
    input_tokens = output_tokens = cache_creation = cache_read = requests = 0
    for event in events:
        input_tokens += event.input_tokens
        output_tokens += event.output_tokens
        cache_creation += event.cache_creation_tokens
        cache_read += event.cache_read_tokens
        requests += 1
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=cache_creation,
        cache_read_tokens=cache_read,
        request_count=requests,
    )


def most_used_model(events: Iterable[UsageEvent]) -> str:
    """Model with the most requests, ``"unknown"`` for no events.

    Ties go to the model seen first.
    """
    counts = Counter(event.model or "unknown" for event in events)
    if not counts:
        return "unknown"
    return counts.most_common(1)[0][0]
