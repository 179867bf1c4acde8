"""Command line interface for SchemaGrid."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schemagrid.config import settings
from schemagrid.conversion.formats import SchemaFormat
from schemagrid.conversion.service import SchemaConversionService
from schemagrid.exceptions import SchemaGridException

app = typer.Typer(
    name="schemagrid",
    help="SchemaGrid - collaborative grid editing for schema documents",
    add_completion=False,
)

console = Console()


def _read_source(path: Path) -> str:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)
    return path.read_text(encoding="utf-8")


def _parse_format(value: str) -> SchemaFormat:
    try:
        return SchemaFormat.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


@app.command("version")
def version():
    """Show version information."""
    version_info = f"""
SchemaGrid v{settings.app_version}
Collaborative grid editing for schema documents

Environment: {settings.environment}
Python: {sys.version}
"""
    console.print(
        Panel(
            version_info.strip(),
            title="Version Information",
            border_style="green",
        )
    )


@app.command("server")
def start_server(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug mode"),
):
    """Start the SchemaGrid server."""
    from schemagrid.server import main as server_main

    if host:
        settings.host = host
    if port:
        settings.port = port
    if reload:
        settings.reload = reload
    if debug:
        settings.debug = debug

    server_main()


@app.command("convert")
def convert(
    source: Path = typer.Argument(..., help="Schema file to convert"),
    target_format: str = typer.Option(..., "--to", "-t", help="Target format"),
    source_format: Optional[str] = typer.Option(None, "--from", "-f", help="Source format (detected when omitted)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result to a file"),
):
    """Convert a schema file to another format."""
    text = _read_source(source)
    target = _parse_format(target_format)
    service = SchemaConversionService()

    if source_format:
        origin = _parse_format(source_format)
    else:
        origin = asyncio.run(service.detect_schema_format(text))
        if origin is None:
            console.print("[red]Could not detect the source format; pass --from[/red]")
            raise typer.Exit(code=1)
        console.print(f"Detected source format: [cyan]{origin.value}[/cyan]")

    try:
        result = asyncio.run(service.convert_between_formats(text, origin, target))
    except SchemaGridException as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(code=1)

    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {warning.code}: {warning.message}")
    if not result.is_successful:
        for error in result.errors:
            console.print(f"[red]error[/red] {error.code}: {error.message}")
        raise typer.Exit(code=1)

    rendered = result.get(target)
    if output:
        output.write_text(rendered, encoding="utf-8")
        console.print(f"[green]Wrote {target.value} schema to {output}[/green]")
    else:
        typer.echo(rendered)


@app.command("validate")
def validate(
    source: Path = typer.Argument(..., help="Schema file to validate"),
    schema_format: str = typer.Option(..., "--format", "-f", help="Schema format"),
):
    """Validate a schema file."""
    text = _read_source(source)
    fmt = _parse_format(schema_format)
    try:
        result = asyncio.run(SchemaConversionService().validate_schema(text, fmt))
    except SchemaGridException as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(code=1)

    if result.is_valid:
        console.print(f"[green]Valid {fmt.value} schema[/green]")
        return

    table = Table(title=f"Invalid {fmt.value} schema")
    table.add_column("Code", style="red")
    table.add_column("Message")
    for error in result.errors:
        table.add_row(error.code, error.message)
    console.print(table)
    raise typer.Exit(code=1)


@app.command("detect")
def detect(source: Path = typer.Argument(..., help="Schema file")):
    """Detect the format of a schema file."""
    detected = asyncio.run(SchemaConversionService().detect_schema_format(_read_source(source)))
    if detected is None:
        console.print("[yellow]Unknown format[/yellow]")
        raise typer.Exit(code=1)
    typer.echo(detected.value)


@app.command("config")
def show_config():
    """Show current configuration."""
    config_table = Table(title="SchemaGrid Configuration")

    config_table.add_column("Setting", style="cyan")
    config_table.add_column("Value", style="green")

    config_items = [
        ("App Name", settings.app_name),
        ("Version", settings.app_version),
        ("Environment", settings.environment),
        ("Debug", str(settings.debug)),
        ("Host", settings.host),
        ("Port", str(settings.port)),
        ("Max Schema Size", str(settings.max_schema_size)),
        ("Grid Min Rows", str(settings.grid_min_rows)),
        ("Join Timeout (s)", str(settings.collaboration_join_timeout)),
        ("Conflict Window (ms)", str(settings.conflict_window_ms)),
        ("Max Session Users", str(settings.max_session_users)),
        ("Conflict Strategy", settings.default_conflict_strategy),
        ("Metrics Enabled", str(settings.metrics_enabled)),
    ]

    for setting, value in config_items:
        config_table.add_row(setting, value)

    console.print(config_table)


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
