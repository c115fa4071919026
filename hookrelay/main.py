"""Command line interface for hookrelay."""
import asyncio
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape

from hookrelay.config import RelayConfig
from hookrelay.exceptions import StartupError
from hookrelay.logging import configure_logging
from hookrelay.sandbox.teardown import teardown_orphaned_environments
from hookrelay.server import serve


console = Console()

app = typer.Typer(help="Relay GitHub webhooks into ephemeral webhook sandboxes.")


@app.command(name="serve")
def serve_command(
    hooks: Annotated[
        Path | None,
        typer.Option(
            "--hooks",
            help="Path to an optional hooks.json file. Without it the relay starts in git clone proxy mode.",
        ),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Port to listen on (default: from config/env)"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Minimum log level (default: from config/env)"),
    ] = None,
) -> None:
    """Start the relay.

    Port and log level can also be configured via HOOKRELAY_PORT and
    HOOKRELAY_LOG_LEVEL.
    """
    config = RelayConfig()
    overrides: dict[str, object] = {}
    if port is not None:
        overrides["port"] = port
    if log_level is not None:
        overrides["log_level"] = log_level
    if overrides:
        config = config.model_copy(update=overrides)

    configure_logging(config.log_level)

    mode = "reverse proxy" if hooks is not None else "git clone proxy"
    console.print(f"Starting hookrelay on http://{config.host}:{config.port} ({mode} mode)")

    try:
        asyncio.run(serve(config, hooks_path=hooks))
    except StartupError as e:
        logger.error("Failed to start relay", error=str(e))
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        console.print("\nRelay stopped.")


@app.command(name="cleanup")
def cleanup_command() -> None:
    """Remove sandbox environments left behind by a killed relay."""
    configure_logging(RelayConfig().log_level)
    removed = asyncio.run(teardown_orphaned_environments())
    console.print(f"Removed {removed} environment(s)")


if __name__ == "__main__":
    app()
