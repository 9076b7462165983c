from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import typer

from models.timeutils import c_to_f, format_local, parse_timestamp


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def local_time(value: Optional[str], time_zone: str) -> str:
    if not value:
        return "-"
    try:
        return format_local(parse_timestamp(value), time_zone)
    except ValueError:
        return value


def render_live(payload: Dict[str, Any], time_zone: str) -> None:
    echo_heading("Live Temperatures")
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("status", payload.get("status")),
            ("last_reading", local_time(payload.get("last_reading"), time_zone)),
        ]
    )
    age = payload.get("age_seconds")
    if age is not None:
        if payload.get("offline"):
            typer.secho(f"Device appears offline. No new readings for {age}s.", fg=typer.colors.RED)
        else:
            typer.secho(f"Receiving updates. Last update {age}s ago.", fg=typer.colors.GREEN)

    sensors = payload.get("sensors") or []
    typer.echo()
    if not sensors:
        typer.echo("No data yet. Make sure the device uploader is running.")
        return
    for sensor in sensors:
        temp_c = float(sensor.get("temp_c", 0.0))
        typer.echo(
            f"  - {sensor.get('sensor_name')}: {temp_c:.2f} °C / {c_to_f(temp_c):.2f} °F"
            f" (updated {local_time(sensor.get('ts_utc'), time_zone)})"
        )


def render_window(payload: Dict[str, Any], time_zone: str) -> None:
    echo_heading("Tracking Window")
    echo_key_values(
        [
            ("state", payload.get("state")),
            ("mode", payload.get("mode") or "-"),
            ("start", local_time(payload.get("start"), time_zone)),
            ("end", local_time(payload.get("end"), time_zone)),
            ("captured_count", payload.get("captured_count")),
        ]
    )


def render_report(payload: Dict[str, Any]) -> None:
    echo_heading("Report")
    echo_key_values(
        [
            ("report_id", payload.get("report_id")),
            ("range", payload.get("time_range_label")),
            ("interval_seconds", payload.get("interval_seconds")),
            ("captured_count", payload.get("captured_count")),
        ]
    )
    typer.echo()
    echo_heading("Summary")
    typer.echo(payload.get("summary_text") or "No summary available.")


def render_stats(payload: Dict[str, Any], time_zone: str) -> None:
    echo_heading("Reading Statistics")
    echo_key_values(
        [
            ("total_count", payload.get("total_count")),
            ("oldest_reading", local_time(payload.get("oldest_reading"), time_zone)),
            ("newest_reading", local_time(payload.get("newest_reading"), time_zone)),
            ("last_7_days", payload.get("last_7_days")),
            ("last_30_days", payload.get("last_30_days")),
            ("older_than_30_days", payload.get("older_than_30_days")),
        ]
    )
