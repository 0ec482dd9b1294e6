# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Admin JSON API for operating a node.

Lets the organization review and act on connections and member exchanges.
When MIP_ADMIN_TOKEN is set every call needs ``Authorization: Bearer <token>``;
otherwise only loopback clients are served.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.exceptions import MipException
from ..protocol.models import ConnectionStatus
from ..protocol.node import MipNode
from .errors import (
    AUTH_INVALID_TOKEN,
    FORBIDDEN_ADMIN,
    auth_error,
    exception_response,
    forbidden_error,
    internal_error,
    invalid_json_error,
    missing_field_error,
    mip_response,
    validation_error,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[JSONResponse]]

LOOPBACK_HOSTS = {"127.0.0.1", "::1"}


# =============================================================================
# AUTHENTICATION
# =============================================================================


def authenticate_admin(request: Request) -> JSONResponse | None:
    """Check admin access. Returns an error response, or None when allowed."""
    admin_token = request.app.state.settings.admin_token
    if admin_token:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return auth_error("Missing or invalid authentication token", code=AUTH_INVALID_TOKEN)
        if not secrets.compare_digest(auth_header[len("Bearer ") :], admin_token):
            return auth_error("Invalid authentication token", code=AUTH_INVALID_TOKEN)
        return None

    client_host = request.client.host if request.client else None
    if client_host not in LOOPBACK_HOSTS:
        logger.warning(f"Rejected admin call from {client_host}: no admin token configured")
        return forbidden_error("Admin API is only available locally", code=FORBIDDEN_ADMIN)
    return None


def admin_endpoint(handler: Handler) -> Handler:
    """Authenticate, parse the JSON body into ``request.state.payload`` and map errors."""

    @wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        denied = authenticate_admin(request)
        if denied is not None:
            return denied

        payload: Any = {}
        if request.method == "POST":
            body = await request.body()
            if body.strip():
                try:
                    payload = json.loads(body)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    return invalid_json_error()
            if not isinstance(payload, dict):
                return validation_error("Request body must be a JSON object")
        request.state.payload = payload

        try:
            return await handler(request)
        except MipException as e:
            return exception_response(e)
        except Exception:
            logger.exception(f"Unhandled error in admin {handler.__name__}")
            return internal_error()

    return wrapper


def _node(request: Request) -> MipNode:
    return request.app.state.node


# =============================================================================
# NODE
# =============================================================================


@admin_endpoint
async def node_info(request: Request) -> JSONResponse:
    node = _node(request)
    identity = node.identity
    profile = identity.to_node_profile()
    profile.update(
        {
            "public_key_fingerprint": identity.public_key_fingerprint(),
            "trust_threshold": identity.trust_threshold,
            "connections": {
                status.value.lower(): len(node.store.connections_with_status(status)) for status in ConnectionStatus
            },
            "members": len(node.store.all_members()),
        }
    )
    return mip_response({"node": profile})


@admin_endpoint
async def list_members(request: Request) -> JSONResponse:
    members = [m.to_member_profile() for m in _node(request).store.all_members()]
    return mip_response({"members": members})


@admin_endpoint
async def list_endorsements(request: Request) -> JSONResponse:
    endorsements = [e.to_dict() for e in _node(request).store.all_endorsements()]
    return mip_response({"endorsements": endorsements})


@admin_endpoint
async def recent_activity(request: Request) -> JSONResponse:
    try:
        limit = int(request.query_params.get("limit", "20"))
    except ValueError:
        return validation_error("limit must be an integer")
    entries = [a.to_dict() for a in _node(request).store.recent_activity(max(limit, 0))]
    return mip_response({"activity": entries})


# =============================================================================
# CONNECTIONS
# =============================================================================


@admin_endpoint
async def list_connections(request: Request) -> JSONResponse:
    store = _node(request).store
    status = request.query_params.get("status")
    if status:
        try:
            connections = store.connections_with_status(ConnectionStatus(status.upper()))
        except ValueError:
            return validation_error(f"Unknown status: {status}")
    else:
        connections = store.all_connections()
    return mip_response({"connections": [c.to_dict() for c in connections]})


@admin_endpoint
async def get_connection(request: Request) -> JSONResponse:
    connection = _node(request).connections.get(request.path_params["mip_id"])
    return mip_response({"connection": connection.to_dict()})


@admin_endpoint
async def initiate_connection(request: Request) -> JSONResponse:
    """Request a connection with another node.

    Body: {"url": "http://host:port/mip/node/<their id>"}
    """
    url = request.state.payload.get("url")
    if not url:
        return missing_field_error("url")
    connection = await _node(request).connections.request_connection(url)
    return mip_response({"connection": connection.to_dict()}, status_code=201)


@admin_endpoint
async def approve_connection(request: Request) -> JSONResponse:
    rate = request.state.payload.get("daily_rate_limit")
    if rate is not None and (not isinstance(rate, int) or isinstance(rate, bool) or rate < 0):
        return validation_error("daily_rate_limit must be a non-negative integer")
    connection = _node(request).connections.approve(request.path_params["mip_id"], rate)
    return mip_response({"connection": connection.to_dict()})


@admin_endpoint
async def decline_connection(request: Request) -> JSONResponse:
    reason = request.state.payload.get("reason")
    connection = _node(request).connections.decline(request.path_params["mip_id"], reason)
    return mip_response({"connection": connection.to_dict()})


@admin_endpoint
async def revoke_connection(request: Request) -> JSONResponse:
    reason = request.state.payload.get("reason")
    connection = _node(request).connections.revoke(request.path_params["mip_id"], reason)
    return mip_response({"connection": connection.to_dict()})


@admin_endpoint
async def restore_connection(request: Request) -> JSONResponse:
    connection = _node(request).connections.restore(request.path_params["mip_id"])
    return mip_response({"connection": connection.to_dict()})


# =============================================================================
# SEARCHES AND COGS
# =============================================================================


@admin_endpoint
async def list_searches(request: Request) -> JSONResponse:
    searches = [s.to_dict() for s in _node(request).store.all_search_requests()]
    return mip_response({"searches": searches})


@admin_endpoint
async def initiate_search(request: Request) -> JSONResponse:
    payload = request.state.payload
    target = payload.get("target_mip_identifier")
    if not target:
        return missing_field_error("target_mip_identifier")
    search = _node(request).exchanges.start_search(target, payload, notes=payload.get("notes"))
    return mip_response({"search": search.to_dict()}, status_code=201)


@admin_endpoint
async def approve_search(request: Request) -> JSONResponse:
    search = _node(request).exchanges.approve_search(request.path_params["shared_id"])
    return mip_response({"search": search.to_dict()})


@admin_endpoint
async def decline_search(request: Request) -> JSONResponse:
    reason = request.state.payload.get("reason")
    search = _node(request).exchanges.decline_search(request.path_params["shared_id"], reason)
    return mip_response({"search": search.to_dict()})


@admin_endpoint
async def list_cogs(request: Request) -> JSONResponse:
    requests_ = [c.to_dict() for c in _node(request).store.all_cogs_requests()]
    return mip_response({"cogs_requests": requests_})


@admin_endpoint
async def initiate_cogs(request: Request) -> JSONResponse:
    payload = request.state.payload
    target = payload.get("target_mip_identifier")
    if not target:
        return missing_field_error("target_mip_identifier")
    cogs = _node(request).exchanges.start_cogs(
        target,
        payload.get("requested_member_number"),
        requesting_member=payload.get("requesting_member"),
        notes=payload.get("notes"),
    )
    return mip_response({"cogs_request": cogs.to_dict()}, status_code=201)


@admin_endpoint
async def approve_cogs(request: Request) -> JSONResponse:
    cogs = _node(request).exchanges.approve_cogs(request.path_params["shared_id"])
    return mip_response({"cogs_request": cogs.to_dict()})


@admin_endpoint
async def decline_cogs(request: Request) -> JSONResponse:
    reason = request.state.payload.get("reason")
    cogs = _node(request).exchanges.decline_cogs(request.path_params["shared_id"], reason)
    return mip_response({"cogs_request": cogs.to_dict()})


@admin_endpoint
async def status_check(request: Request) -> JSONResponse:
    """Ask a connected node about one of its members.

    Body: {"target_mip_identifier": "...", "member_number": "..."}
    """
    payload = request.state.payload
    target = payload.get("target_mip_identifier")
    if not target:
        return missing_field_error("target_mip_identifier")
    result = await _node(request).exchanges.check_member_status(target, payload.get("member_number"))
    return mip_response({"status_check": result})


def admin_routes(prefix: str = "/admin") -> list[Route]:
    return [
        Route(f"{prefix}/node", node_info, methods=["GET"]),
        Route(f"{prefix}/members", list_members, methods=["GET"]),
        Route(f"{prefix}/endorsements", list_endorsements, methods=["GET"]),
        Route(f"{prefix}/activity", recent_activity, methods=["GET"]),
        Route(f"{prefix}/connections", list_connections, methods=["GET"]),
        Route(f"{prefix}/connections", initiate_connection, methods=["POST"]),
        Route(f"{prefix}/connections/{{mip_id}}", get_connection, methods=["GET"]),
        Route(f"{prefix}/connections/{{mip_id}}/approve", approve_connection, methods=["POST"]),
        Route(f"{prefix}/connections/{{mip_id}}/decline", decline_connection, methods=["POST"]),
        Route(f"{prefix}/connections/{{mip_id}}/revoke", revoke_connection, methods=["POST"]),
        Route(f"{prefix}/connections/{{mip_id}}/restore", restore_connection, methods=["POST"]),
        Route(f"{prefix}/searches", list_searches, methods=["GET"]),
        Route(f"{prefix}/searches", initiate_search, methods=["POST"]),
        Route(f"{prefix}/searches/{{shared_id}}/approve", approve_search, methods=["POST"]),
        Route(f"{prefix}/searches/{{shared_id}}/decline", decline_search, methods=["POST"]),
        Route(f"{prefix}/cogs", list_cogs, methods=["GET"]),
        Route(f"{prefix}/cogs", initiate_cogs, methods=["POST"]),
        Route(f"{prefix}/cogs/{{shared_id}}/approve", approve_cogs, methods=["POST"]),
        Route(f"{prefix}/cogs/{{shared_id}}/decline", decline_cogs, methods=["POST"]),
        Route(f"{prefix}/status_checks", status_check, methods=["POST"]),
    ]
