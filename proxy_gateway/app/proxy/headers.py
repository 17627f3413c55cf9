"""
Header Sanitization
===================

Hop-by-hop headers only make sense for a single transport connection and must
not be relayed across the gateway (RFC 7230 section 6.1). The same stripping
routine runs on both sides of the relay:

- REQUEST direction: headers copied from the caller to the upstream node.
  Also drops host, content-length and accept-encoding, which the outgoing
  transport recomputes.
- RESPONSE direction: headers copied from the upstream node to the caller.

HeaderMap is the case-insensitive ordered collection both directions share.
"""

from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


# Hop-by-hop headers (RFC 2616 / RFC 7230)
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Recomputed by the outgoing transport instead of being copied
TRANSPORT_MANAGED_HEADERS = frozenset({
    "host",
    "content-length",
    "accept-encoding",
})


class Direction(str, Enum):
    """Which side of the relay a header collection travels on."""

    REQUEST = "request"
    RESPONSE = "response"


EXCLUDED_HEADERS = {
    Direction.REQUEST: HOP_BY_HOP_HEADERS | TRANSPORT_MANAGED_HEADERS,
    Direction.RESPONSE: HOP_BY_HOP_HEADERS,
}


HeaderSource = Union["HeaderMap", Mapping[str, str], Iterable[Tuple[str, str]]]


class HeaderMap:
    """
    Case-insensitive, insertion-ordered header collection.

    A header that appears several times keeps every raw value; items() and
    get() expose them as one comma-joined value, multi_items() yields each
    value separately (Set-Cookie must never be joined on the wire).
    """

    def __init__(self, source: Optional[HeaderSource] = None):
        # lowercased name -> (name as first seen, values)
        self._entries: Dict[str, Tuple[str, List[str]]] = {}
        if source is None:
            return
        if isinstance(source, HeaderMap):
            pairs: Iterable[Tuple[str, str]] = source.multi_items()
        elif hasattr(source, "multi_items"):
            pairs = source.multi_items()
        elif isinstance(source, Mapping):
            pairs = source.items()
        else:
            pairs = source
        for name, value in pairs:
            self.add(name, value)

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        if key in self._entries:
            self._entries[key][1].append(value)
        else:
            self._entries[key] = (name, [value])

    def set(self, name: str, value: str) -> None:
        """Replace every value of name, keeping its original position."""
        key = name.lower()
        if key in self._entries:
            self._entries[key] = (self._entries[key][0], [value])
        else:
            self._entries[key] = (name, [value])

    def remove(self, name: str) -> None:
        self._entries.pop(name.lower(), None)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._entries.get(name.lower())
        if entry is None:
            return default
        return ", ".join(entry[1])

    def get_all(self, name: str) -> List[str]:
        entry = self._entries.get(name.lower())
        return list(entry[1]) if entry else []

    def items(self) -> List[Tuple[str, str]]:
        return [(name, ", ".join(values)) for name, values in self._entries.values()]

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(name, value) for name, values in self._entries.values() for value in values]

    def without(self, names: Iterable[str]) -> "HeaderMap":
        """Return a new map lacking the given names (case-insensitive)."""
        excluded = {name.lower() for name in names}
        result = HeaderMap()
        for key, (name, values) in self._entries.items():
            if key not in excluded:
                result._entries[key] = (name, list(values))
        return result

    def copy(self) -> "HeaderMap":
        return self.without(())

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._entries

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeaderMap):
            return NotImplemented
        return [(k, v) for k, (_, v) in self._entries.items()] == \
            [(k, v) for k, (_, v) in other._entries.items()]

    def __repr__(self) -> str:
        return f"HeaderMap({self.items()!r})"


def strip_headers(headers: HeaderSource, direction: Direction) -> HeaderMap:
    """
    Remove hop-by-hop headers for the given relay direction.

    The input is never modified; a new HeaderMap is returned. Stripping an
    already stripped collection returns an equal collection.

    Args:
        headers: Header collection (HeaderMap, mapping or name/value pairs)
        direction: Direction.REQUEST or Direction.RESPONSE

    Returns:
        HeaderMap with the excluded names removed, order preserved
    """
    source = headers if isinstance(headers, HeaderMap) else HeaderMap(headers)
    return source.without(EXCLUDED_HEADERS[Direction(direction)])
