from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

NO_DATA = "no data"


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _display(value: Any) -> Any:
    return NO_DATA if value is None else value


def render_filter_result(payload: Dict[str, Any]) -> None:
    echo_heading("Query Result")
    echo_key_values(
        [
            ("total", payload.get("total")),
            ("page", payload.get("page")),
            ("page_size", payload.get("page_size") or "all"),
        ]
    )

    aggregates = payload.get("aggregates") or {}
    typer.echo()
    echo_heading("Aggregates")
    if aggregates:
        for alias, aggregate in aggregates.items():
            typer.echo(
                f"  - {alias}: {_display(aggregate.get('value'))} "
                f"({aggregate.get('aggregation')} of {aggregate.get('semantic')} "
                f"over {aggregate.get('device_count')} devices)"
            )
    else:
        typer.echo("No aggregates requested.")

    devices = payload.get("devices")
    if devices is None:
        return
    typer.echo()
    echo_heading("Devices")
    if not devices:
        typer.echo("No devices on this page.")
        return
    for device in devices:
        status = "online" if device.get("online") else "offline"
        typer.echo(f"  - {device.get('name')} [{device.get('device_id')}] {status}")
        for semantic, value in (device.get("values") or {}).items():
            typer.echo(f"      {semantic}: {_display(value)}")


def render_resolution(payload: Dict[str, Any]) -> None:
    echo_heading("Semantic Value")
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("semantic", payload.get("semantic")),
            ("aggregation", payload.get("aggregation")),
            ("value", _display(payload.get("value"))),
        ]
    )

    fields = payload.get("fields") or []
    typer.echo()
    echo_heading("Fields")
    if not fields:
        typer.echo("Device does not report this semantic.")
        return
    for item in fields:
        unit = f" {item['unit']}" if item.get("unit") else ""
        typer.echo(f"  - {item.get('field_name')}: {_display(item.get('value'))}{unit}")
