"""Typer CLI root application with serve command."""

import typer

from plate_registry.core.config import get_settings
from plate_registry.core.logging import setup_logging

app = typer.Typer(name="plate-registry", help="Plate record bulk import CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "plate_registry.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from plate_registry.cli.db_cmd import db_app
    from plate_registry.cli.import_cmd import import_app

    app.add_typer(db_app, name="db", help="Database schema commands")
    app.add_typer(import_app, name="import", help="Plate import commands")


_register_subcommands()
