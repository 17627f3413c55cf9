"""
Forwarding Engine
=================

Runs the per-request forwarding transaction:

    authenticate -> rate limit -> validate target -> select node
    -> sanitize request headers -> forward -> sanitize response headers

Every step either proceeds or raises a GatewayError that terminates the
request. Exactly one upstream attempt is made; nothing is retried here.
The whole exchange, response body included, must finish within
`upstream_timeout` seconds.

The engine owns the only shared mutable state of the gateway (the
round-robin counter inside NodeSelector and the windows inside RateLimiter).
Both are updated in short locked sections before the upstream call; no lock
is held while waiting on the network.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import quote, urlsplit

import httpx

from ..auth.tokens import TOKEN_HEADER, TokenAuthenticator
from ..errors import AuthError, PayloadTooLargeError, RateLimitError, TransportError, ValidationError
from ..models import GatewayConfig, RotationMode
from .headers import Direction, HeaderMap, strip_headers
from .ratelimit import RateDecision, RateLimiter
from .selector import NodeSelector

logger = logging.getLogger(__name__)

BODYLESS_METHODS = frozenset({"GET", "HEAD"})

# encodeURIComponent leaves these unescaped
URI_COMPONENT_SAFE = "!~*'()"


# ============================================================================
# Transaction Types
# ============================================================================

@dataclass
class IncomingRequest:
    """What the engine needs to know about one caller request."""

    method: str
    target: Optional[str]
    headers: HeaderMap
    client_identity: str
    token: Optional[str] = None
    sticky_cookie: Optional[str] = None
    body: Optional[bytes] = None
    # Read lazily, only once the request has been accepted
    body_reader: Optional[Callable[[], Awaitable[bytes]]] = None


@dataclass
class ForwardResult:
    """Relayed upstream response."""

    status_code: int
    reason_phrase: str
    headers: HeaderMap
    body: bytes
    node: str
    pinned_node: Optional[str] = None
    rate: Optional[RateDecision] = None


# ============================================================================
# Helpers
# ============================================================================

def is_valid_target(target: Optional[str]) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not target:
        return False
    try:
        parts = urlsplit(target)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def build_upstream_url(node: str, target: str) -> str:
    return f"{node.rstrip('/')}/proxy?url={quote(target, safe=URI_COMPONENT_SAFE)}"


def rate_limit_headers(decision: RateDecision) -> Dict[str, str]:
    return {
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_in_seconds),
    }


# ============================================================================
# Engine
# ============================================================================

class ForwardingEngine:
    """
    Orchestrates authenticator, rate limiter, node selector and header
    sanitizer around a single outgoing httpx call.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: httpx.AsyncClient,
        authenticator: Optional[TokenAuthenticator] = None,
        selector: Optional[NodeSelector] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config
        self.client = client
        self.authenticator = authenticator or TokenAuthenticator(config.valid_tokens)
        self.selector = selector or NodeSelector(config.nodes, config.rotation_mode)
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self.timeout = httpx.Timeout(
            config.upstream_timeout,
            connect=config.upstream_connect_timeout,
        )

    @property
    def sticky(self) -> bool:
        return self.config.rotation_mode == RotationMode.STICKY_BY_IP

    async def forward(self, incoming: IncomingRequest) -> ForwardResult:
        """
        Relay one accepted request to an upstream node.

        Raises:
            AuthError: token missing or not configured
            RateLimitError: client exceeded its per-minute ceiling
            ValidationError: `url` missing or not an absolute http(s) URL
            PayloadTooLargeError: body above the configured ceiling
            TransportError: upstream unreachable, timed out or malformed
        """
        if not self.authenticator.validate(incoming.token):
            logger.info(
                "Rejected request with invalid or missing token",
                extra={"client": incoming.client_identity}
            )
            raise AuthError()

        decision = self.rate_limiter.check(incoming.client_identity)
        if not decision.allowed:
            headers = rate_limit_headers(decision)
            headers["Retry-After"] = str(decision.reset_in_seconds)
            raise RateLimitError(headers=headers)

        if not is_valid_target(incoming.target):
            raise ValidationError(headers=rate_limit_headers(decision))

        node = self.selector.select(incoming.client_identity, incoming.sticky_cookie)
        upstream_url = build_upstream_url(node, incoming.target)

        outgoing_headers = strip_headers(incoming.headers, Direction.REQUEST)
        outgoing_headers.set(TOKEN_HEADER, incoming.token)

        body = await self._read_body(incoming)

        log_context = {
            "target": incoming.target,
            "node": node,
            "client": incoming.client_identity,
            "method": incoming.method,
        }
        logger.debug("Forwarding request to upstream node", extra=log_context)

        try:
            upstream_request = self.client.build_request(
                incoming.method,
                upstream_url,
                headers=outgoing_headers.multi_items(),
                content=body,
                timeout=self.timeout,
            )
            # httpx timeouts apply per operation; wait_for bounds the whole exchange
            response, content = await asyncio.wait_for(
                self._exchange(upstream_request),
                timeout=self.config.upstream_timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError) as e:
            reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.error(
                f"Upstream transport failure for {incoming.target} via {node} "
                f"(client {incoming.client_identity or 'unknown'}): {reason}",
                extra=log_context
            )
            raise TransportError() from e

        logger.info(
            "Relayed upstream response",
            extra={**log_context, "status_code": response.status_code}
        )

        return ForwardResult(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            headers=strip_headers(response.headers, Direction.RESPONSE),
            body=content,
            node=node,
            pinned_node=node if self.sticky else None,
            rate=decision,
        )

    async def _exchange(self, upstream_request: httpx.Request) -> Tuple[httpx.Response, bytes]:
        """Send one request and collect the raw, still-encoded response body."""
        # stream=True + aiter_raw relays the bytes without content decoding
        response = await self.client.send(
            upstream_request,
            stream=True,
            follow_redirects=True,
        )
        try:
            content = b"".join([chunk async for chunk in response.aiter_raw()])
        finally:
            await response.aclose()
        return response, content

    async def _read_body(self, incoming: IncomingRequest) -> Optional[bytes]:
        """
        Buffer the caller's body for methods that carry one.

        A body that cannot be read is dropped and the request proceeds
        without it; a body above the configured ceiling is rejected.
        """
        if incoming.method.upper() in BODYLESS_METHODS:
            return None

        limit = self.config.max_body_bytes
        declared = incoming.headers.get("content-length")
        if declared and declared.strip().isdigit() and int(declared) > limit:
            raise PayloadTooLargeError()

        body = incoming.body
        if body is None and incoming.body_reader is not None:
            try:
                body = await incoming.body_reader()
            except Exception as e:
                logger.warning(
                    f"Could not read request body, forwarding without it: {e}",
                    extra={"client": incoming.client_identity}
                )
                return None

        if body is not None and len(body) > limit:
            raise PayloadTooLargeError()

        return body or None
