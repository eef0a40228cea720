from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.expressions import parse_aggregates, parse_where
from cli.render import render_filter_result, render_resolution


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Query device fleets by semantic measurements.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Query API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("filter")
def filter_command(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace to query."),
    tag: Optional[List[str]] = typer.Option(None, "--tag", help="Device must carry this tag (repeatable)."),
    any_tag: Optional[List[str]] = typer.Option(
        None, "--any-tag", help="Device must carry at least one of these tags (repeatable)."
    ),
    online: Optional[bool] = typer.Option(None, "--online/--offline", help="Match on online status."),
    search: Optional[str] = typer.Option(None, "--search", help="Substring of the device name."),
    where: Optional[List[str]] = typer.Option(
        None,
        "--where",
        "-w",
        help="Semantic filter SEMANTIC[@AGG]:OP:VALUE or SEMANTIC[@AGG]:range:START:END.",
    ),
    aggregate: Optional[List[str]] = typer.Option(
        None, "--aggregate", "-a", help="Fleet aggregate ALIAS=SEMANTIC[:AGG]."
    ),
    devices: bool = typer.Option(False, "--devices/--no-devices", help="List matching devices."),
    all_devices: bool = typer.Option(False, "--all", help="List every device without paging."),
    page: Optional[int] = typer.Option(None, "--page", help="Zero-based page index."),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Devices per page."),
    order: Optional[str] = typer.Option(
        None, "--order", help="name_asc, name_desc, last_heard_desc or last_heard_asc."
    ),
) -> None:
    """Count, aggregate and list devices matching the given filters."""
    state = _get_state(ctx)
    payload: Dict[str, Any] = {
        "filters": parse_where(where or []),
        "aggregates": parse_aggregates(aggregate or []),
        "include_devices": devices,
        "all": all_devices,
    }
    optional = {
        "tags_contains": list(tag) if tag else None,
        "tags_overlap": list(any_tag) if any_tag else None,
        "online": online,
        "search": search,
        "page": page,
        "page_size": page_size,
        "order": order,
    }
    payload.update({key: value for key, value in optional.items() if value is not None})

    result = state.client.filter_devices(workspace_id, payload)
    render_filter_result(result)


@app.command("resolve")
def resolve_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="Device to inspect."),
    semantic: str = typer.Argument(..., help="Semantic name, e.g. temperature."),
    aggregation: Optional[str] = typer.Option(
        None, "--aggregation", help="AVG, SUM, MAX or MIN across the device's fields."
    ),
) -> None:
    """Show a device's semantic value and the fields it comes from."""
    state = _get_state(ctx)
    payload = state.client.resolve_semantic(
        device_id, semantic, aggregation.upper() if aggregation else None
    )
    render_resolution(payload)
