"""CLI commands for dashsnap."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dashsnap.config import ensure_workspace, load_config, save_default_config
from dashsnap.cron.store import ScheduleStore
from dashsnap.utils.logging import setup_logging

app = typer.Typer(
    name="dashsnap",
    help="dashsnap: scheduled dashboard screenshots for e-paper displays",
)
console = Console()


@app.command()
def onboard(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
) -> None:
    """Initialize configuration and output directory."""
    path = save_default_config(config_path, overwrite=force)
    config = load_config(config_path)
    output = ensure_workspace(config)

    console.print(f"[green]Config created at:[/green] {path}")
    console.print(f"[green]Output directory:[/green] {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit config to set target.url and target.token")
    console.print(f"2. Add schedules to {config.schedules_path}")
    console.print("3. Run: dashsnap serve")


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Show current configuration."""
    config = load_config(config_path)

    table = Table(title="dashsnap Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Target URL", config.target.url)
    table.add_row("Access Token", f"...{config.target.token[-8:]}" if config.target.token else "[red]Not configured[/red]")
    table.add_row("Client-side Routing", "Enabled" if config.target.client_side_routing else "Disabled")
    table.add_row("Schedules File", str(config.schedules_path))
    table.add_row("Output Directory", str(config.output_path))
    table.add_row("Chromium", config.browser.executable_path or "Bundled")
    table.add_row("Restart After Captures", str(config.browser.restart_after_captures))
    table.add_row("Max Failures", str(config.health.max_failures))
    table.add_row("Stale After", f"{config.health.stale_after_s:g}s")
    table.add_row("Recovery Attempts", str(config.recovery.max_attempts))
    table.add_row("Server", f"{config.server.host}:{config.server.port}")

    console.print(table)


@app.command()
def schedules(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """List configured schedules."""
    config = load_config(config_path)
    items = ScheduleStore(config.schedules_path).load()

    if not items:
        console.print(f"[dim]No schedules in {config.schedules_path}[/dim]")
        return

    table = Table(title="Schedules")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Cron")
    table.add_column("Enabled")
    table.add_column("Path")
    table.add_column("Webhook")

    for schedule in items:
        table.add_row(
            schedule.id,
            schedule.name,
            schedule.cron,
            "[green]yes[/green]" if schedule.enabled else "[dim]no[/dim]",
            schedule.dashboard_path,
            schedule.webhook_url or "[dim]file only[/dim]",
        )

    console.print(table)


@app.command()
def send(
    schedule_id: str = typer.Argument(..., help="Schedule ID to capture now"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
) -> None:
    """Capture and deliver one schedule immediately."""
    config = load_config(config_path)
    setup_logging(config.logging.level, config.logging.file, config.logging.rotation, config.logging.retention)

    from dashsnap.browser.errors import DashsnapError
    from dashsnap.server.app import build_scheduler, build_session

    async def _send() -> dict:
        session = build_session(config)
        scheduler = build_scheduler(config, session)
        try:
            result = await scheduler.execute_now(schedule_id)
            return result.to_dict()
        finally:
            await session.shutdown()

    try:
        result = asyncio.run(_send())
    except DashsnapError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]Captured:[/green] {result['savedPath']}")
    delivery = result.get("delivery")
    if delivery is not None:
        state = "[green]delivered[/green]" if delivery["success"] else f"[red]failed[/red] ({delivery.get('error')})"
        console.print(f"Webhook: {state}")


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
    host: Optional[str] = typer.Option(None, "--host", help="HTTP service host"),
    port: Optional[int] = typer.Option(None, "--port", help="HTTP service port"),
) -> None:
    """Start the scheduler and HTTP service."""
    import uvicorn

    from dashsnap.server.app import build_app

    config = load_config(config_path)
    setup_logging(config.logging.level, config.logging.file, config.logging.rotation, config.logging.retention)
    ensure_workspace(config)

    bind_host = host or config.server.host
    bind_port = port or config.server.port
    console.print(f"[bold green]dashsnap starting on {bind_host}:{bind_port}[/bold green]")
    uvicorn.run(build_app(config), host=bind_host, port=bind_port, log_level=config.logging.level.lower())


if __name__ == "__main__":
    app()
