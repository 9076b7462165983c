from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient, OversizedReport
from cli.config import CLIConfig, load_config
from cli.render import render_live, render_report, render_stats, render_window


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the live temperature dashboard.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Dashboard API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each request.",
    ),
    time_zone: Optional[str] = typer.Option(
        None,
        "--time-zone",
        help="Display time zone (defaults to DISPLAY_TIME_ZONE env or America/Chicago).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout, time_zone=time_zone)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("live")
def live_command(ctx: typer.Context) -> None:
    """Show the latest reading per sensor."""
    state = _get_state(ctx)
    render_live(state.client.get_live(), state.config.time_zone)


@app.command("window")
def window_command(ctx: typer.Context) -> None:
    """Show the tracking window."""
    state = _get_state(ctx)
    render_window(state.client.get_window(), state.config.time_zone)


@app.command("start")
def start_command(
    ctx: typer.Context,
    start: Optional[str] = typer.Option(None, "--start", help="ISO-8601 window start."),
    end: Optional[str] = typer.Option(None, "--end", help="ISO-8601 window end."),
    auto: bool = typer.Option(
        False,
        "--auto",
        help="Open-ended window starting now; stop it explicitly.",
    ),
) -> None:
    """Start collecting readings."""
    state = _get_state(ctx)
    if not auto and (start is None or end is None):
        raise typer.BadParameter("--start and --end are required unless --auto is given.")
    mode = "auto" if auto else "manual"
    payload = state.client.start_window(mode, None if auto else start, None if auto else end)
    typer.secho("Tracking started.", fg=typer.colors.GREEN)
    render_window(payload, state.config.time_zone)


@app.command("stop")
def stop_command(ctx: typer.Context) -> None:
    """Stop collecting readings."""
    state = _get_state(ctx)
    render_window(state.client.stop_window(), state.config.time_zone)


@app.command("reset")
def reset_command(ctx: typer.Context) -> None:
    """Discard the window and its captured readings."""
    state = _get_state(ctx)
    render_window(state.client.reset_window(), state.config.time_zone)


@app.command("report")
def report_command(
    ctx: typer.Context,
    interval: Optional[int] = typer.Option(None, "--interval", min=1, help="Sampling interval in seconds."),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the CSV report to this file.",
    ),
) -> None:
    """Show the sampled report, optionally saving it as CSV."""
    state = _get_state(ctx)
    if output is None:
        render_report(state.client.get_report(interval))
        return
    report_id, csv_text = state.client.download_report(interval)
    output.write_text(csv_text)
    typer.secho(f"Report {report_id} written to {output}", fg=typer.colors.GREEN)


@app.command("email")
def email_command(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Recipient address."),
    interval: Optional[int] = typer.Option(None, "--interval", min=1, help="Sampling interval in seconds."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Send large reports without asking."),
) -> None:
    """Email the sampled report."""
    state = _get_state(ctx)
    try:
        payload = state.client.email_report(email, interval, confirm_large=yes)
    except OversizedReport as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW, err=True)
        if not typer.confirm("Send anyway?"):
            raise typer.Exit(code=1)
        payload = state.client.email_report(email, interval, confirm_large=True)
    typer.secho(
        f"Report {payload.get('report_id')} sent to {email} ({payload.get('time_range_label')}).",
        fg=typer.colors.GREEN,
    )


@app.command("cleanup")
def cleanup_command(
    ctx: typer.Context,
    retention_days: int = typer.Argument(..., min=1, help="Keep readings newer than this many days."),
) -> None:
    """Delete readings older than the retention period."""
    state = _get_state(ctx)
    payload = state.client.cleanup(retention_days)
    typer.secho(
        f"Deleted {payload.get('deleted')} readings older than {payload.get('cutoff_date')}.",
        fg=typer.colors.GREEN,
    )


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    """Show reading retention statistics."""
    state = _get_state(ctx)
    render_stats(state.client.get_stats(), state.config.time_zone)
