# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Starlette ASGI application for a MIP node.

Serves the protocol endpoints under /mip/node/{id}, the admin API under
/admin and a health check. The outbox worker runs for the lifetime of the
app.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.logging import configure_logging
from ..protocol.node import MipNode, create_node
from ..protocol.node_config import NodeConfig, build_identity, load_members, load_node_config
from .admin_endpoints import admin_routes
from .config import ServerSettings, get_settings
from .mip_endpoints import mip_routes

logger = logging.getLogger(__name__)


async def health_endpoint(request: Request) -> JSONResponse:
    """Health check endpoint."""
    node: MipNode = request.app.state.node
    settings: ServerSettings = request.app.state.settings
    return JSONResponse(
        {
            "status": "healthy",
            "mip_identifier": node.identity.mip_identifier,
            "organization": node.identity.organization_name,
            "version": settings.server_version,
            "outbox": "running" if node.outbox.running else "stopped",
        }
    )


@asynccontextmanager
async def lifespan(app: Starlette):
    """Application lifespan handler."""
    node: MipNode = app.state.node
    await node.start()
    yield
    logger.info("MIP node shutting down")
    await node.stop()


def create_app(node: MipNode, settings: ServerSettings | None = None) -> Starlette:
    """Create the Starlette ASGI application for ``node``."""
    settings = settings or get_settings()

    routes = [
        Route("/health", health_endpoint, methods=["GET"]),
        *mip_routes(),
        *admin_routes(),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.node = node
    app.state.settings = settings
    return app


def build_node(settings: ServerSettings, config: NodeConfig) -> MipNode:
    """Assemble the node described by ``config``."""
    identity = build_identity(config, external_url=settings.external_url)
    return create_node(
        identity,
        members=load_members(config),
        settings=settings,
        state_file=settings.state_file,
    )


def run(settings: ServerSettings | None = None) -> None:
    """Run the server using uvicorn."""
    import uvicorn

    settings = settings or get_settings()
    configure_logging(level=settings.log_level, log_file=settings.log_file)

    config = load_node_config(settings.node_config)
    node = build_node(settings, config)
    port = settings.port or config.port

    logger.info(f"Starting MIP node {node.identity.organization_name} on {settings.host}:{port}")
    logger.info(f"MIP URL: {node.identity.mip_url}")

    uvicorn.run(
        create_app(node, settings),
        host=settings.host,
        port=port,
        log_level=settings.log_level.lower(),
    )
