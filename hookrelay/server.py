"""FastAPI application and server bootstrap for the relay."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from types import FrameType

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from loguru import logger
from starlette.responses import Response

from hookrelay import __version__
from hookrelay.config import RelayConfig
from hookrelay.exceptions import ProvisionError, RelayServiceError, StartupError
from hookrelay.lifecycle import LifecycleCoordinator
from hookrelay.modes import RelayMode, read_hooks_file, select_mode
from hookrelay.relay import RequestRelay
from hookrelay.sandbox.docker import DockerProvisioner
from hookrelay.sandbox.template import webhook_template
from hookrelay.sandbox.tunnel import PublishedPortTunnelManager
from hookrelay.source import GitSourceResolver


def configure_exception_handlers(app: FastAPI) -> None:
    """Convert relay errors into plain-text error responses.

    Args:
        app: FastAPI application instance.
    """

    @app.exception_handler(RelayServiceError)
    async def relay_error_handler(request: Request, exc: RelayServiceError) -> PlainTextResponse:
        """Log the failing stage and return its status with the error message."""
        logger.warning(
            "Request failed",
            stage=exc.stage,
            status=exc.status_code,
            method=request.method,
            path=request.url.path,
            error=str(exc),
        )
        return PlainTextResponse(str(exc), status_code=exc.status_code)


def create_app(
    mode: RelayMode,
    relay: RequestRelay,
    coordinator: LifecycleCoordinator,
) -> FastAPI:
    """Create the relay application.

    Every path and method is handed to ``mode``. On shutdown the
    coordinator's stop function runs before the relay client is closed.

    Args:
        mode: Operating mode serving the requests.
        relay: Request relay to close on shutdown.
        coordinator: Lifecycle coordinator owning process-wide teardown.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await coordinator.shutdown()
        await relay.aclose()

    application = FastAPI(
        title="hookrelay",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    configure_exception_handlers(application)

    async def relay_request(request: Request) -> Response:
        """Hand the request to the active mode."""
        return await mode.handle(request)

    # Every method, including non-standard ones.
    application.router.add_route("/{full_path:path}", relay_request, methods=None, include_in_schema=False)

    application.state.mode = mode
    return application


class RelayServer(uvicorn.Server):
    """uvicorn server that starts teardown before it stops serving.

    Args:
        config: uvicorn configuration.
        coordinator: Coordinator notified of every exit signal.
    """

    def __init__(self, config: uvicorn.Config, coordinator: LifecycleCoordinator) -> None:
        super().__init__(config)
        self._coordinator = coordinator

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        self._coordinator.request_shutdown(sig)
        super().handle_exit(sig, frame)


async def serve(config: RelayConfig, hooks_path: Path | None = None) -> None:
    """Build the template, select the mode and serve until interrupted.

    Nothing listens until the template is built and, in static mode, the
    shared environment is reachable.

    Args:
        config: Relay configuration.
        hooks_path: Hooks file for static mode, or None for clone mode.

    Raises:
        StartupError: If the relay cannot start serving.
    """
    if hooks_path is not None:
        read_hooks_file(hooks_path)

    provisioner = DockerProvisioner()
    tunnels = PublishedPortTunnelManager(timeout=config.tunnel_timeout_seconds)
    coordinator = LifecycleCoordinator()
    coordinator.attach(asyncio.get_running_loop())

    template = webhook_template(
        version=config.webhook_version,
        base_image=config.base_image,
        port=config.dispatch_port,
        name=config.image_name,
    )
    try:
        template = await provisioner.build_template(template)
    except ProvisionError as exc:
        raise StartupError(f"Failed to build webhook template: {exc}") from exc

    relay = RequestRelay(
        timeout=config.relay_timeout_seconds,
        read_timeout=config.relay_read_timeout_seconds,
    )
    try:
        mode = await select_mode(
            hooks_path,
            relay=relay,
            resolver=GitSourceResolver(),
            provisioner=provisioner,
            tunnels=tunnels,
            template=template,
            coordinator=coordinator,
        )
    except BaseException:
        await relay.aclose()
        raise

    app = create_app(mode, relay, coordinator)
    server = RelayServer(
        uvicorn.Config(app, host=config.host, port=config.port, log_level=config.log_level.lower()),
        coordinator,
    )
    logger.info("Starting proxy server", host=config.host, port=config.port, mode=mode.name)
    try:
        await server.serve()
    finally:
        # Lifespan shutdown is skipped on a forced exit.
        await coordinator.shutdown()
        await relay.aclose()
        logger.info("Proxy server stopped")
