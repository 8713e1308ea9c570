"""
Management commands for the Fortune City backend.
"""

import asyncio
import sys

import typer
from rich.console import Console
from rich.table import Table

from fortune_city.core.config import settings
from fortune_city.core.database import (
    DatabaseManager, close_database, get_async_session, init_database
)
from fortune_city.core.logging import get_logger, setup_logging
from fortune_city.scheduler.task_scheduler import TaskScheduler, expire_machines
from fortune_city.services.settings_service import SettingsService

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Fortune City backend commands")


@app.command("init-db")
def init_db():
    """Create tables and the default settings row."""
    async def _init():
        setup_logging()
        await init_database()
        try:
            await DatabaseManager.create_tables()
            async with get_async_session() as session:
                await SettingsService(session).ensure_settings_exist()
        finally:
            await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command("drop-db")
def drop_db():
    """Drop all tables."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    async def _drop():
        setup_logging()
        await init_database()
        try:
            await DatabaseManager.drop_tables()
        finally:
            await close_database()
        console.print("🗑️ All tables dropped!")

    asyncio.run(_drop())


@app.command()
def health():
    """Check database health."""
    async def _health() -> bool:
        setup_logging()
        await init_database()
        try:
            return await DatabaseManager.health_check()
        finally:
            await close_database()

    if asyncio.run(_health()):
        console.print("✅ Database is healthy!")
    else:
        console.print("❌ Database health check failed!")
        sys.exit(1)


@app.command()
def settings_show():
    """Print the live game settings."""
    async def _show():
        setup_logging()
        await init_database()
        try:
            async with get_async_session() as session:
                return (await SettingsService(session).get_settings()).to_dict()
        finally:
            await close_database()

    current = asyncio.run(_show())

    table = Table(title="Game Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in current.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("expire-machines")
def expire_machines_command():
    """Expire every machine past its lifespan."""
    async def _expire() -> int:
        setup_logging()
        await init_database()
        try:
            return await expire_machines()
        finally:
            await close_database()

    count = asyncio.run(_expire())
    console.print(f"⏱️ Expired {count} machine(s)")


@app.command("run-scheduler")
def run_scheduler():
    """Run the background jobs without the API server."""
    async def _run():
        setup_logging()
        await init_database()
        scheduler = TaskScheduler()
        scheduler.register_default_tasks()
        try:
            await scheduler.run_forever()
        finally:
            await close_database()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Scheduler stopped")


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Bind address"),
    port: int = typer.Option(settings.port, help="Bind port"),
    reload: bool = typer.Option(settings.is_development, help="Reload on code changes"),
):
    """Run the API server."""
    import uvicorn

    uvicorn.run(
        "fortune_city.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower()
    )


def main():
    app()


if __name__ == "__main__":
    main()
