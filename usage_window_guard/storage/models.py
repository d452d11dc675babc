"""
Data models for the usage log layer.

Defines the immutable usage event record and the structured error
descriptor that travels alongside events recovered from the logs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive datetimes are interpreted as UTC rather than local time so that
    window boundaries are the same on every machine.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one request/response exchange.

    Only input and output tokens count toward rate limits. Cache tokens are
    tracked for reporting but excluded from every limit computation.
    """
    timestamp: datetime
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    model: str = "unknown"
    session_id: Optional[str] = None
    request_id: Optional[str] = None

    def __post_init__(self):
        """Normalise the timestamp and validate token counts."""
        if not isinstance(self.timestamp, datetime):
            raise ValueError("timestamp must be a datetime")
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        for name in ("input_tokens", "output_tokens",
                     "cache_creation_tokens", "cache_read_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if not self.model:
            object.__setattr__(self, "model", "unknown")

    @property
    def total_tokens(self) -> int:
        """Rate-limit tokens (input + output)."""
        return self.input_tokens + self.output_tokens


class ErrorType(Enum):
    """Categories of ingestion failures surfaced to the presentation layer."""
    DIRECTORY_NOT_FOUND = "directory_not_found"
    FILE_ACCESS_ERROR = "file_access_error"
    DATA_FORMAT_ERROR = "data_format_error"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class UsageError:
    """Structured, non-fatal error descriptor."""
    type: ErrorType
    message: str
    details: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    """Best-effort result of reading the usage logs."""
    events: List[UsageEvent] = field(default_factory=list)
    error: Optional[UsageError] = None
    total_files: int = 0
    failed_files: int = 0

    @property
    def session_ids(self) -> List[str]:
        """Distinct external session ids, in first-seen order."""
        seen = []
        for event in self.events:
            if event.session_id and event.session_id not in seen:
                seen.append(event.session_id)
        return seen
