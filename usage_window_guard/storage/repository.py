"""
Read-only access to the assistant's usage logs.

Discovers project directories, parses legacy ``usage.jsonl`` files and
modern ``<session-uuid>.jsonl`` transcripts, and returns every usage event
recovered along with an optional error descriptor. Log files are never
written.
"""

import json
import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import (
    directory_not_found_error,
    log_usage_error,
    no_projects_error,
    parsing_failed_error,
    partial_parsing_error,
    should_report_error_rate,
    data_format_error,
    unknown_error,
)
from .models import FetchResult, UsageEvent

logger = logging.getLogger(__name__)

LEGACY_FILE_NAME = "usage.jsonl"

_SESSION_FILE_PATTERN = re.compile(r"^[a-f0-9-]{32,}$", re.IGNORECASE)


def default_projects_path() -> Path:
    """Return the default location of per-project usage logs."""
    return Path.home() / ".claude" / "projects"


def detect_file_format(file_name: str) -> str:
    """Classify a log file by name.

    Returns:
        "legacy" for usage.jsonl, "modern" for UUID-named session files,
        "unknown" otherwise
    """
    if file_name == LEGACY_FILE_NAME:
        return "legacy"
    if file_name.endswith(".jsonl"):
        if _SESSION_FILE_PATTERN.match(file_name[:-len(".jsonl")]):
            return "modern"
    return "unknown"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when it is unusable."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _token_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    # json.loads accepts Infinity, NaN and 1e400
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


def _legacy_event(data: Dict[str, Any]) -> Optional[UsageEvent]:
    timestamp = parse_timestamp(data.get("timestamp"))
    if timestamp is None:
        return None
    return UsageEvent(
        timestamp=timestamp,
        input_tokens=_token_count(data.get("input_tokens")),
        output_tokens=_token_count(data.get("output_tokens")),
        cache_creation_tokens=_token_count(data.get("cache_creation_tokens")),
        cache_read_tokens=_token_count(data.get("cache_read_tokens")),
        model=data.get("model") or "unknown",
    )


def _session_event(data: Dict[str, Any], session_id: str) -> Optional[UsageEvent]:
    if data.get("type") != "assistant":
        return None
    message = data.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("usage"), dict):
        return None
    timestamp = parse_timestamp(data.get("timestamp"))
    if timestamp is None:
        return None
    usage = message["usage"]
    return UsageEvent(
        timestamp=timestamp,
        input_tokens=_token_count(usage.get("input_tokens")),
        output_tokens=_token_count(usage.get("output_tokens")),
        cache_creation_tokens=_token_count(usage.get("cache_creation_input_tokens")),
        cache_read_tokens=_token_count(usage.get("cache_read_input_tokens")),
        model=message.get("model") or "unknown",
        session_id=session_id,
        request_id=data.get("requestId") or data.get("uuid"),
    )


def parse_usage_file(file_path: Path) -> Tuple[List[UsageEvent], bool]:
    """Parse one JSONL log file.

    Malformed lines are skipped. A file counts as failed when it cannot
    be read or when none of its non-blank lines is a JSON object.

    Args:
        file_path: Path to a .jsonl file

    Returns:
        Tuple of (events, failed)
    """
    legacy = file_path.name == LEGACY_FILE_NAME
    session_id = file_path.stem
    events: List[UsageEvent] = []
    valid_lines = 0
    total_lines = 0

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                total_lines += 1
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict):
                    continue
                valid_lines += 1
                try:
                    event = _legacy_event(data) if legacy else _session_event(data, session_id)
                except ValueError as e:
                    logger.debug("Skipping invalid entry in %s: %s", file_path, e)
                    continue
                if event is not None:
                    events.append(event)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s: %s", file_path, e)
        return [], True

    if total_lines and not valid_lines:
        logger.debug("No valid JSON lines in %s", file_path)
        return events, True
    return events, False


class UsageRepository:
    """Read-only repository over a directory of per-project usage logs."""

    def __init__(self, projects_path: Optional[Path] = None):
        """Initialize the repository.

        Args:
            projects_path: Directory holding one sub-directory per project
                (defaults to ~/.claude/projects)
        """
        self.projects_path = Path(projects_path) if projects_path else default_projects_path()

    def fetch_all(self) -> FetchResult:
        """Read every usage event from every project.

        Never raises: failures become an error descriptor on the result,
        alongside whatever events could be recovered.

        Returns:
            FetchResult with events sorted oldest first
        """
        try:
            return self._fetch_all()
        except Exception as e:
            error = unknown_error(e)
            log_usage_error(error, "fetch_all")
            return FetchResult(events=[], error=error)

    def _fetch_all(self) -> FetchResult:
        if not self.projects_path.is_dir():
            error = directory_not_found_error(str(self.projects_path))
            log_usage_error(error, "fetch_all")
            return FetchResult(events=[], error=error)

        project_dirs = sorted(p for p in self.projects_path.iterdir() if p.is_dir())
        if not project_dirs:
            return FetchResult(events=[], error=no_projects_error())

        events: List[UsageEvent] = []
        total_files = 0
        failed_files = 0
        for project_dir in project_dirs:
            for file_path in sorted(project_dir.glob("*.jsonl")):
                total_files += 1
                file_events, failed = parse_usage_file(file_path)
                events.extend(file_events)
                if failed:
                    failed_files += 1

        events.sort(key=lambda e: e.timestamp)
        error_rate = failed_files / total_files if total_files else 0.0
        logger.debug(
            "Read %d events from %d files (%d failed) under %s",
            len(events), total_files, failed_files, self.projects_path,
        )

        error = None
        if not events:
            if total_files and failed_files == total_files:
                error = parsing_failed_error(total_files)
            else:
                error = data_format_error(
                    "No usage data found",
                    f"Scanned {total_files} data files under {self.projects_path}",
                    "Start using the assistant to generate usage data",
                )
        elif should_report_error_rate(error_rate, len(events)):
            error = partial_parsing_error(error_rate)

        if error is not None:
            log_usage_error(error, "fetch_all")
        return FetchResult(
            events=events,
            error=error,
            total_files=total_files,
            failed_files=failed_files,
        )


def get_repository(projects_path: Optional[Path] = None) -> UsageRepository:
    """Get a repository over ``projects_path`` (or the default location)."""
    return UsageRepository(projects_path)


def fetch_all_usage_events(projects_path: Optional[Path] = None) -> FetchResult:
    """Fetch every usage event, best effort, with an optional error descriptor."""
    return get_repository(projects_path).fetch_all()
