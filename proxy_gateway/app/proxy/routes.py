"""
Proxy Routes - Upstream Request Forwarding
==========================================

This module exposes the forwarding endpoint used by the browser intercept
shim. Requests arrive as

    <METHOD> /proxy?url=<absolute-url>[&token=<token>]

with the token normally in the x-proxy-auth header. The request is handed to
the ForwardingEngine and the upstream response is relayed verbatim.

Response statuses:
    401  missing or invalid token
    429  per-client rate limit exceeded
    400  missing or invalid `url`
    413  body above MAX_REQUEST_BODY_BYTES
    502  upstream transport failure
    *    relayed upstream status
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import Response

from ..auth.tokens import TOKEN_HEADER, TOKEN_QUERY_PARAM, extract_token
from .engine import ForwardingEngine, ForwardResult, IncomingRequest, rate_limit_headers
from .headers import HeaderMap
from .selector import STICKY_COOKIE_NAME, client_identity, encode_node_cookie

logger = logging.getLogger(__name__)

# Create router
proxy_router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

def get_engine(request: Request) -> ForwardingEngine:
    """
    Forwarding engine from app state.

    Raises:
        HTTPException: 503 when the application lifespan has not started
    """
    app_state = getattr(request.app.state, "app_state", None)
    engine = getattr(app_state, "engine", None) if app_state else None
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not available"
        )
    return engine


def build_incoming_request(request: Request) -> IncomingRequest:
    """Translate a Starlette request into the engine's IncomingRequest."""
    peer = request.client.host if request.client else None
    return IncomingRequest(
        method=request.method,
        target=request.query_params.get("url"),
        headers=HeaderMap(request.headers.items()),
        client_identity=client_identity(request.headers, peer),
        token=extract_token(
            request.headers.get(TOKEN_HEADER),
            request.query_params.get(TOKEN_QUERY_PARAM),
        ),
        sticky_cookie=request.cookies.get(STICKY_COOKIE_NAME),
        body_reader=request.body,
    )


def build_response(result: ForwardResult) -> Response:
    """
    Relay a ForwardResult to the caller.

    Repeated upstream headers (Set-Cookie in particular) are appended one by
    one; content-length replaces the value Starlette computed.
    """
    response = Response(content=result.body, status_code=result.status_code)

    for name, value in result.headers.multi_items():
        if name.lower() == "content-length":
            response.headers["content-length"] = value
        else:
            response.headers.append(name, value)

    if result.rate is not None:
        for name, value in rate_limit_headers(result.rate).items():
            response.headers[name] = value

    if result.pinned_node:
        response.set_cookie(
            key=STICKY_COOKIE_NAME,
            value=encode_node_cookie(result.pinned_node),
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )

    return response


# ============================================================================
# Proxy Endpoint
# ============================================================================

async def proxy(request: Request) -> Response:
    """
    Forward the request to an upstream proxy node.

    Flow:
    1. Validate token (x-proxy-auth header, else ?token=)
    2. Count the request against the client's rate window
    3. Validate `url` (absolute http/https)
    4. Select upstream node and forward with sanitized headers
    5. Relay status, sanitized headers and raw body
    """
    engine = get_engine(request)
    result = await engine.forward(build_incoming_request(request))
    return build_response(result)


# Plain route with no method list: every HTTP method reaches the upstream node
proxy_router.add_route("/proxy", proxy, methods=None, include_in_schema=False)
