"""
CLI interface for usage-window-guard.

Renders the current window, baseline, limit estimate and burn rate.
"""

import logging
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from usage_window_guard.config.loader import (
    MAX_CUSTOM_LIMIT,
    MIN_CUSTOM_LIMIT,
    MonitorConfig,
    is_valid_custom_limit,
    load_monitor_config,
)
from usage_window_guard.core.baseline import UsageBaseline, compute_baseline
from usage_window_guard.core.burn_rate import BurnRateAnalysis
from usage_window_guard.core.estimation import EstimationSnapshot, compute_current_status
from usage_window_guard.core.rate_limit import detect_rate_limit, format_detection_result
from usage_window_guard.core.windows import current_window
from usage_window_guard.storage.errors import format_error_for_user
from usage_window_guard.storage.models import ErrorType, UsageError
from usage_window_guard.storage.repository import fetch_all_usage_events

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Unexpected failure; ingestion errors are reported, not failed

_LEVEL_STYLES = {
    "low": "green",
    "normal": "green",
    "high": "yellow",
    "critical": "red",
}


def format_time_until_reset(remaining: timedelta) -> str:
    """Format a countdown as "2h 5m", "5m 30s" or "45s"."""
    total_seconds = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_burn_rate(burn_rate: BurnRateAnalysis) -> str:
    if burn_rate.tokens_per_minute == 0:
        return "No activity"
    rate = burn_rate.tokens_per_minute
    if rate >= 1000:
        return f"{rate / 1000:.1f}K/min"
    return f"{rate}/min"


def format_prediction_time(when: Optional[datetime], now: datetime) -> Optional[str]:
    """Format a predicted instant as the time remaining from ``now``."""
    if when is None:
        return None
    minutes = round((when - now).total_seconds() / 60)
    if minutes < 60:
        return f"{minutes}min"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}min" if minutes else f"{hours}h"


def format_limit_estimate(limit: int) -> str:
    return f"~{round(limit / 1000)}K"


def format_baseline_description(baseline: UsageBaseline) -> str:
    return f"Avg ~{baseline.average_usage / 1000:.0f}K"


def _local_time(when: datetime) -> str:
    return when.astimezone().strftime("%H:%M")


def _validate_limit(limit: Optional[int]) -> Optional[int]:
    if not is_valid_custom_limit(limit):
        raise typer.BadParameter(
            f"must be between {MIN_CUSTOM_LIMIT:,} and {MAX_CUSTOM_LIMIT:,} tokens"
        )
    return limit


def _print_fetch_error(error: Optional[UsageError]) -> None:
    """Print an ingestion error descriptor, if any."""
    if error is None:
        return
    style = "yellow" if error.type == ErrorType.DATA_FORMAT_ERROR else "red"
    console.print(f"\n[{style}]{format_error_for_user(error)}[/]")


def _load_config(config_path: Optional[str]) -> MonitorConfig:
    if config_path is None:
        return MonitorConfig.default()
    return load_monitor_config(config_path)


def _configure_logging(config: MonitorConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _fetch_snapshot(config: MonitorConfig, projects_path: Optional[Path], limit: Optional[int]) -> EstimationSnapshot:
    result = fetch_all_usage_events(projects_path or config.projects_path)
    custom_limit = limit if limit is not None else config.custom_limit
    return compute_current_status(result.events, custom_limit=custom_limit, error=result.error)


def _display_snapshot(snapshot: EstimationSnapshot) -> None:
    """Display the snapshot as a compact status table."""
    _print_fetch_error(snapshot.error)

    if not snapshot.has_data:
        console.print("\n[bold yellow]No usage data found[/]")
        return

    level = snapshot.usage_level.value
    style = _LEVEL_STYLES[level]
    now = snapshot.evaluated_at

    table = Table(title="Usage Window Status", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")

    table.add_row(
        "Current usage",
        f"[{style}]{snapshot.current_usage:,} tokens ({snapshot.usage_percentage}%)[/]",
    )
    table.add_row("Limit", f"{format_limit_estimate(snapshot.effective_limit.limit)} ({snapshot.effective_limit.source})")
    table.add_row("Usage level", f"[{style}]{level}[/]")
    if snapshot.window.is_active:
        table.add_row(
            "Resets",
            f"{_local_time(snapshot.reset_time)} (in {format_time_until_reset(snapshot.time_until_reset)})",
        )
    else:
        table.add_row("Resets", "No active window")
    table.add_row(
        "Baseline",
        f"{format_baseline_description(snapshot.baseline)} ({snapshot.baseline.confidence.value} confidence)",
    )

    burn_rate = snapshot.burn_rate
    table.add_row("Burn rate", f"{format_burn_rate(burn_rate)} ({burn_rate.trend.value})")
    recent = burn_rate.recent_activity
    table.add_row(
        "Recent activity",
        f"15m {recent.last_15_min:,} / 30m {recent.last_30_min:,} / 60m {recent.last_60_min:,}",
    )
    depletion = format_prediction_time(snapshot.estimated_depletion_time, now)
    if depletion:
        table.add_row("Estimated depletion", f"in {depletion}")
    high = format_prediction_time(burn_rate.predictions.time_to_high_threshold, now)
    if high:
        table.add_row("High usage in", high)
    table.add_row("Model", snapshot.current_model)

    console.print(table)

    if burn_rate.model_breakdown:
        models = Table(title="Models (last 2h)")
        models.add_column("Model")
        models.add_column("Tokens", justify="right")
        models.add_column("Requests", justify="right")
        models.add_column("Share", justify="right")
        models.add_column("Est. cost", justify="right")
        for item in burn_rate.model_breakdown:
            models.add_row(
                item.model,
                f"{item.tokens:,}",
                str(item.requests),
                f"{item.percentage}%",
                f"${item.estimated_cost:,.2f}",
            )
        console.print(models)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """usage-window-guard CLI."""
    if ctx.invoked_subcommand is None:
        console.print("usage-window-guard - Use --help to see available commands")


@app.command()
def status(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    projects_path: Optional[Path] = typer.Option(None, "--projects-path", "-p", help="Directory of usage logs"),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-l", help="Override the token limit", callback=_validate_limit,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show current window usage, limit estimate and burn rate."""
    try:
        config = _load_config(config_path)
        _configure_logging(config, verbose)
        snapshot = _fetch_snapshot(config, projects_path, limit)
        _display_snapshot(snapshot)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def baseline(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    projects_path: Optional[Path] = typer.Option(None, "--projects-path", "-p", help="Directory of usage logs"),
):
    """Show the statistical baseline of recent windows."""
    try:
        config = _load_config(config_path)
        result = fetch_all_usage_events(projects_path or config.projects_path)
        _print_fetch_error(result.error)
        window = current_window(result.events)
        exclude_id = window.window_id if window is not None and window.is_active else None
        stats = compute_baseline(result.events, exclude_window_id=exclude_id)

        table = Table(title="Usage Baseline (last 30 days)", show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")
        table.add_row("Average", f"{stats.average_usage:,}")
        table.add_row("Median", f"{stats.median_usage:,}")
        table.add_row("Std deviation", f"{stats.standard_deviation:,}")
        table.add_row("75th percentile", f"{stats.percentile_75:,}")
        table.add_row("90th percentile", f"{stats.percentile_90:,}")
        table.add_row("High threshold", f"{stats.high_usage_threshold:,}")
        table.add_row("Critical threshold", f"{stats.critical_usage_threshold:,}")
        table.add_row("Windows", str(stats.total_sessions))
        table.add_row("Method", stats.analysis_method)
        table.add_row("Confidence", stats.confidence.value)
        console.print(table)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def detect(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    projects_path: Optional[Path] = typer.Option(None, "--projects-path", "-p", help="Directory of usage logs"),
):
    """Infer the rate limit from historical windows."""
    try:
        config = _load_config(config_path)
        result = fetch_all_usage_events(projects_path or config.projects_path)
        _print_fetch_error(result.error)
        detection = detect_rate_limit(result.events)
        console.print(format_detection_result(detection))
        if detection.candidate_limits:
            candidates = ", ".join(f"{value:,}" for value in detection.candidate_limits)
            console.print(f"Candidates: {candidates}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def watch(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    projects_path: Optional[Path] = typer.Option(None, "--projects-path", "-p", help="Directory of usage logs"),
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Seconds between refreshes"),
    iterations: Optional[int] = typer.Option(None, "--iterations", "-n", help="Stop after N refreshes"),
):
    """Re-evaluate the status periodically until interrupted."""
    try:
        config = _load_config(config_path)
        _configure_logging(config, False)
        delay = interval or config.refresh_interval_seconds
        count = 0
        while iterations is None or count < iterations:
            if count:
                time.sleep(delay)
            snapshot = _fetch_snapshot(config, projects_path, None)
            console.print(f"\n[dim]{snapshot.evaluated_at.astimezone():%Y-%m-%d %H:%M:%S}[/]")
            _display_snapshot(snapshot)
            count += 1
        sys.exit(EXIT_CODE_PASS)
    except KeyboardInterrupt:
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
