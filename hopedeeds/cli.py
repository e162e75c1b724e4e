from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hopedeeds.config import get_settings
from hopedeeds.db import close_db, init_db, session_scope
from hopedeeds.recurrence import RecurrenceWindowError, occurrence_dates, parse_rule, weekday_abbr

app = typer.Typer(help="HopeDeeds volunteer coordination service")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.getLevelName(get_settings().log_level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    _configure_logging(verbose=verbose, json_output=json_output)
    ctx.obj = {"json": json_output}


@app.command()
def serve(
    host: str | None = typer.Option(None, help="Bind address (default from HOPEDEEDS_HOST)."),
    port: int | None = typer.Option(None, help="Port (default from HOPEDEEDS_PORT)."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("hopedeeds.app:app", host=host or settings.host, port=port or settings.port, reload=reload)


@app.command()
def mcp() -> None:
    """Run the MCP server over stdio."""
    from hopedeeds.mcp_server import main as mcp_main

    mcp_main()


@app.command()
def export(path: Path = typer.Argument(..., help="Destination .xlsx file.")) -> None:
    """Write volunteers and opportunities to an XLSX workbook."""
    from hopedeeds.exporter import export_xlsx

    init_db()
    try:
        with session_scope() as session:
            out = export_xlsx(session, path)
    finally:
        close_db()
    console.print(f"[green]Exported[/green] {out}")


@app.command()
def preview(
    ctx: typer.Context,
    start: str = typer.Argument(..., help="Anchor date, YYYY-MM-DD."),
    rule_type: str = typer.Argument(..., help="daily, weekly or monthly."),
    days: str | None = typer.Option(None, "--days", help="Weekly days, e.g. mon,wed."),
    count: int | None = typer.Option(None, "--count", help="Days scanned including the anchor."),
    bound_by: str | None = typer.Option(None, "--bound-by", help="count, horizon or until."),
    horizon_months: int | None = typer.Option(None, "--horizon-months"),
    until: str | None = typer.Option(None, "--until", help="Last date to scan, YYYY-MM-DD."),
) -> None:
    """Show the dates a recurrence rule would generate."""
    try:
        anchor = date.fromisoformat(start)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid date {start!r}, expected YYYY-MM-DD") from exc
    rule = parse_rule({
        "type": rule_type,
        "days": [d.strip() for d in days.split(",")] if days else None,
        "count": count, "bound_by": bound_by, "horizon_months": horizon_months, "until": until,
    })
    try:
        dates = occurrence_dates(anchor, rule) if rule else []
    except RecurrenceWindowError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if ctx.obj and ctx.obj.get("json"):
        typer.echo(json.dumps([d.isoformat() for d in dates]))
        return
    if rule is None:
        console.print("[yellow]Rule describes no recurrence; only the parent date would be stored.[/yellow]")
        return
    table = Table(title=f"{rule.type} from {anchor.isoformat()}")
    table.add_column("#", justify="right")
    table.add_column("Date")
    table.add_column("Day")
    for idx, d in enumerate(dates, start=1):
        table.add_row(str(idx), d.isoformat(), weekday_abbr(d))
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
