# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""MIP protocol endpoints.

All routes live under ``/mip/node/{mip_id}`` and require a valid request
signature. Signature checks use the raw body bytes exactly as received.

Access levels:
- first contact: any signer (``mip_connections`` only)
- known: the signer has a connection record here (lifecycle notifications)
- active: the signer's connection is ACTIVE (everything else)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.exceptions import MipException
from ..core.logging import bind_sender, request_scope, summarize_headers
from ..protocol.node import MipNode
from ..protocol.verifier import VerifiedSender
from .errors import (
    NOT_FOUND_CONNECTION,
    NOT_FOUND_NODE,
    exception_response,
    forbidden_error,
    internal_error,
    invalid_json_error,
    mip_response,
    not_found_error,
    validation_error,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[JSONResponse]]

MIP_PREFIX = "/mip/node/{mip_id}"


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================


def require_mip_signature(known: bool = False, active: bool = False) -> Callable[[Handler], Handler]:
    """Decorator that authenticates MIP requests.

    Usage:
        @require_mip_signature(active=True)
        async def my_handler(request: Request) -> JSONResponse:
            # request.state.sender is the VerifiedSender
            # request.state.payload is the parsed JSON body
            ...
    """

    def decorator(handler: Handler) -> Handler:
        @wraps(handler)
        async def wrapper(request: Request) -> JSONResponse:
            node: MipNode = request.app.state.node
            if request.path_params.get("mip_id") != node.identity.mip_identifier:
                return not_found_error("Node", code=NOT_FOUND_NODE)

            body = await request.body()
            with request_scope(request.headers.get("X-Request-ID")):
                logger.debug(f"{request.method} {request.url.path} {summarize_headers(request.headers)}")
                try:
                    sender = node.verifier.verify(request.headers, request.url.path, body)
                except MipException as e:
                    return exception_response(e)

                bind_sender(sender.mip_identifier)
                if (known or active) and sender.connection is None:
                    return not_found_error("Connection", code=NOT_FOUND_CONNECTION)
                if active and not sender.has_active_connection():
                    return forbidden_error("An active connection is required")

                payload = _parse_payload(body)
                if payload is None:
                    return invalid_json_error()
                if not isinstance(payload, dict):
                    return validation_error("Request body must be a JSON object")

                request.state.sender = sender
                request.state.payload = payload
                try:
                    return await handler(request)
                except MipException as e:
                    return exception_response(e)
                except Exception:
                    logger.exception(f"Unhandled error in {handler.__name__}")
                    return internal_error()

        return wrapper

    return decorator


def _parse_payload(body: bytes) -> Any:
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _node(request: Request) -> MipNode:
    return request.app.state.node


def _sender(request: Request) -> VerifiedSender:
    return request.state.sender


# =============================================================================
# CONNECTIONS
# =============================================================================


@require_mip_signature()
async def connection_request(request: Request) -> JSONResponse:
    """Inbound connection request.

    Endpoint: POST /mip/node/{mip_id}/mip_connections
    """
    node = _node(request)
    connection = node.connections.handle_connection_request(_sender(request), request.state.payload)
    return mip_response(
        {
            "mip_connection": {
                "status": connection.status.value,
                "daily_rate_limit": connection.daily_rate_limit,
                "node_profile": node.identity.to_node_profile(),
            }
        }
    )


@require_mip_signature(known=True)
async def connection_approved(request: Request) -> JSONResponse:
    connection = _node(request).connections.handle_approved(_sender(request), request.state.payload)
    return mip_response({"status": connection.status.value})


@require_mip_signature(known=True)
async def connection_declined(request: Request) -> JSONResponse:
    connection = _node(request).connections.handle_declined(_sender(request), request.state.payload)
    return mip_response({"status": connection.status.value})


@require_mip_signature(known=True)
async def connection_revoked(request: Request) -> JSONResponse:
    connection = _node(request).connections.handle_revoked(_sender(request), request.state.payload)
    return mip_response({"status": connection.status.value})


@require_mip_signature(known=True)
async def connection_restored(request: Request) -> JSONResponse:
    connection = _node(request).connections.handle_restored(_sender(request), request.state.payload)
    return mip_response({"status": connection.status.value})


@require_mip_signature(active=True)
async def receive_endorsement(request: Request) -> JSONResponse:
    """Endpoint: POST /mip/node/{mip_id}/endorsements"""
    endorsement = _node(request).connections.receive_endorsement(_sender(request), request.state.payload)
    return mip_response({"endorsement_id": endorsement.id, "status": "accepted"})


@require_mip_signature(active=True)
async def connected_organizations_query(request: Request) -> JSONResponse:
    """Endpoint: GET /mip/node/{mip_id}/connected_organizations_query"""
    organizations = _node(request).connections.connected_organizations(_sender(request).mip_identifier)
    return mip_response({"connected_organizations": organizations})


# =============================================================================
# MEMBER EXCHANGES
# =============================================================================


@require_mip_signature(active=True)
async def member_search(request: Request) -> JSONResponse:
    search = _node(request).exchanges.receive_search(_sender(request), request.state.payload)
    return mip_response({"shared_identifier": search.shared_identifier, "status": search.status.value})


@require_mip_signature(active=True)
async def member_search_reply(request: Request) -> JSONResponse:
    search = _node(request).exchanges.receive_search_reply(_sender(request), request.state.payload)
    return mip_response({"shared_identifier": search.shared_identifier, "status": search.status.value})


@require_mip_signature(active=True)
async def cogs_request(request: Request) -> JSONResponse:
    cogs = _node(request).exchanges.receive_cogs(_sender(request), request.state.payload)
    return mip_response({"shared_identifier": cogs.shared_identifier, "status": cogs.status.value})


@require_mip_signature(active=True)
async def cogs_reply(request: Request) -> JSONResponse:
    cogs = _node(request).exchanges.receive_cogs_reply(_sender(request), request.state.payload)
    return mip_response({"shared_identifier": cogs.shared_identifier, "status": cogs.status.value})


@require_mip_signature(active=True)
async def member_status_check(request: Request) -> JSONResponse:
    """Synchronous member lookup.

    Endpoint: POST /mip/node/{mip_id}/member_status_checks
    """
    return mip_response(_node(request).exchanges.member_status(request.state.payload))


def mip_routes() -> list[Route]:
    return [
        Route(f"{MIP_PREFIX}/mip_connections", connection_request, methods=["POST"]),
        Route(f"{MIP_PREFIX}/mip_connections/approved", connection_approved, methods=["POST"]),
        Route(f"{MIP_PREFIX}/mip_connections/declined", connection_declined, methods=["POST"]),
        Route(f"{MIP_PREFIX}/mip_connections/revoke", connection_revoked, methods=["POST"]),
        Route(f"{MIP_PREFIX}/mip_connections/restore", connection_restored, methods=["POST"]),
        Route(f"{MIP_PREFIX}/endorsements", receive_endorsement, methods=["POST"]),
        Route(f"{MIP_PREFIX}/connected_organizations_query", connected_organizations_query, methods=["GET"]),
        Route(f"{MIP_PREFIX}/mip_member_searches", member_search, methods=["POST"]),
        Route(f"{MIP_PREFIX}/mip_member_searches/reply", member_search_reply, methods=["POST"]),
        Route(f"{MIP_PREFIX}/certificates_of_good_standing", cogs_request, methods=["POST"]),
        Route(f"{MIP_PREFIX}/certificates_of_good_standing/reply", cogs_reply, methods=["POST"]),
        Route(f"{MIP_PREFIX}/member_status_checks", member_status_check, methods=["POST"]),
    ]
