"""
Error descriptor construction and reporting.

Ingestion problems are returned as data so that callers can keep
computing over whatever events were recovered.
"""

import logging
from typing import Optional

from .models import ErrorType, UsageError

logger = logging.getLogger(__name__)

# Share of failed files above which a partial result carries a warning
PARTIAL_FAILURE_RATE = 0.3

_FORMAT_SUGGESTION = (
    "The usage log format may have changed. Check for an update of this "
    "tool or report the issue"
)


def directory_not_found_error(directory_path: str) -> UsageError:
    """Descriptor for a missing usage log directory."""
    return UsageError(
        type=ErrorType.DIRECTORY_NOT_FOUND,
        message="Usage data directory not found",
        details=f"Expected directory: {directory_path}",
        suggestion="Make sure the assistant has been used at least once on this machine",
    )


def file_access_error(file_path: str, original: Optional[BaseException] = None) -> UsageError:
    """Descriptor for a log file that could not be read."""
    details = f"File: {file_path}"
    if original is not None:
        details += f" | Error: {original}"
    return UsageError(
        type=ErrorType.FILE_ACCESS_ERROR,
        message="Unable to access usage data file",
        details=details,
        suggestion="Check file permissions",
    )


def data_format_error(
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> UsageError:
    """Descriptor for log content that could not be interpreted."""
    return UsageError(
        type=ErrorType.DATA_FORMAT_ERROR,
        message=message,
        details=details,
        suggestion=suggestion or _FORMAT_SUGGESTION,
    )


def no_projects_error() -> UsageError:
    return data_format_error(
        "No usage data found",
        "The projects directory exists but contains no project folders",
        "Start using the assistant to generate usage data",
    )


def parsing_failed_error(total_files: int) -> UsageError:
    return data_format_error(
        "Unable to parse any usage data",
        f"Found {total_files} data files but could not parse any records",
    )


def partial_parsing_error(error_rate: float) -> UsageError:
    return data_format_error(
        "Partial parsing success with errors",
        f"{round(error_rate * 100)}% of data files could not be parsed",
        "Some data may be missing from the estimates",
    )


def unknown_error(original: BaseException) -> UsageError:
    """Wrap an unexpected exception, keeping its message as details."""
    return UsageError(
        type=ErrorType.UNKNOWN_ERROR,
        message="Unexpected error while processing usage data",
        details=str(original),
        suggestion="Try again. If the issue persists, report this error",
    )


def should_report_error_rate(error_rate: float, total_records: int) -> bool:
    """Whether a file failure rate deserves a user-visible descriptor.

    Args:
        error_rate: Failed files divided by total files (0-1)
        total_records: Number of events successfully parsed

    Returns:
        True when nothing parsed despite failures, or when more than 30%
        of files failed while some data was recovered
    """
    if total_records == 0 and error_rate > 0:
        return True
    return error_rate > PARTIAL_FAILURE_RATE and total_records > 0


def log_usage_error(error: UsageError, context: Optional[str] = None) -> None:
    """Log a descriptor at a level matching its severity."""
    prefix = f"[{context}] " if context else ""
    if error.type in (ErrorType.DIRECTORY_NOT_FOUND, ErrorType.DATA_FORMAT_ERROR):
        logger.warning("%s%s: %s", prefix, error.message, error.details)
    else:
        logger.error("%s%s: %s", prefix, error.message, error.details)


def format_error_for_user(error: UsageError) -> str:
    """Render a descriptor as multi-line text for display."""
    message = error.message
    if error.details:
        message += f"\n\nDetails: {error.details}"
    if error.suggestion:
        message += f"\n\nSuggestion: {error.suggestion}"
    return message
