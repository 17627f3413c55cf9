"""
Upstream Node Selection
=======================

Decides which configured upstream proxy node serves a request.

Policies:
    round_robin   - shared counter, nodes[counter % N], counter advances once
                    per selection
    sticky_by_ip  - FNV-1a hash of the client identity picks the node; when no
                    identity is available the `proxy-node` cookie issued on an
                    earlier response is honoured, else round-robin
"""

import logging
import threading
from typing import Mapping, Optional, Sequence
from urllib.parse import quote, unquote

from ..models import RotationMode

logger = logging.getLogger(__name__)

STICKY_COOKIE_NAME = "proxy-node"

FNV32_OFFSET_BASIS = 2166136261
FNV32_PRIME = 16777619


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over the UTF-8 bytes of text (always non-negative)."""
    value = FNV32_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV32_PRIME) & 0xFFFFFFFF
    return value


def client_identity(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """
    Best-effort client IP.

    First address of X-Forwarded-For when present, otherwise the direct peer
    address. Returns an empty string when neither is available.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return (peer or "").strip()


def encode_node_cookie(node: str) -> str:
    return quote(node, safe="")


def decode_node_cookie(value: str) -> str:
    return unquote(value)


class NodeSelector:
    """
    Holds the ordered upstream list and the round-robin RotationState.

    The counter is only touched inside a lock so concurrent selections never
    lose an increment.
    """

    def __init__(self, nodes: Sequence[str], mode: RotationMode = RotationMode.ROUND_ROBIN):
        if not nodes:
            raise ValueError("NodeSelector requires at least one upstream node")
        self.nodes = tuple(nodes)
        self.mode = mode
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def counter(self) -> int:
        return self._counter

    def round_robin(self) -> str:
        with self._lock:
            index = self._counter % len(self.nodes)
            self._counter += 1
        return self.nodes[index]

    def sticky_by_ip(self, identity: Optional[str], cookie: Optional[str] = None) -> str:
        """
        Pin a client to a node.

        Args:
            identity: Client identity (see client_identity); may be empty
            cookie: Raw value of the proxy-node cookie, if the caller sent one

        Returns:
            Base URL of the selected node
        """
        if identity:
            return self.nodes[fnv1a_32(identity) % len(self.nodes)]

        if cookie:
            node = decode_node_cookie(cookie)
            if node in self.nodes:
                return node
            logger.debug("Ignoring sticky cookie for a node that is no longer configured")

        return self.round_robin()

    def select(self, identity: Optional[str], cookie: Optional[str] = None) -> str:
        if self.mode == RotationMode.STICKY_BY_IP:
            return self.sticky_by_ip(identity, cookie)
        return self.round_robin()
