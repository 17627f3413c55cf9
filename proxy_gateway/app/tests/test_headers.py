"""
Unit Tests for Header Sanitization
==================================

Tests for proxy_gateway/app/proxy/headers.py
"""

import httpx

from proxy_gateway.app.proxy.headers import (
    HOP_BY_HOP_HEADERS,
    Direction,
    HeaderMap,
    strip_headers,
)


def make_headers():
    return HeaderMap([
        ("Host", "gateway.example.com"),
        ("Connection", "keep-alive"),
        ("Accept", "text/html"),
        ("Keep-Alive", "timeout=5"),
        ("Content-Length", "42"),
        ("Accept-Encoding", "gzip"),
        ("Proxy-Authorization", "Basic Zm9vOmJhcg=="),
        ("X-Custom", "1"),
        ("TE", "trailers"),
        ("Upgrade", "websocket"),
    ])


class TestHeaderMap:

    def test_lookup_is_case_insensitive(self):
        headers = HeaderMap({"Content-Type": "text/plain"})

        assert headers.get("content-type") == "text/plain"
        assert "CONTENT-TYPE" in headers

    def test_repeated_header_is_joined(self):
        headers = HeaderMap([("Accept", "text/html"), ("accept", "application/json")])

        assert len(headers) == 1
        assert headers.get("Accept") == "text/html, application/json"
        assert headers.items() == [("Accept", "text/html, application/json")]
        assert headers.multi_items() == [
            ("Accept", "text/html"),
            ("Accept", "application/json"),
        ]

    def test_set_replaces_in_place(self):
        headers = HeaderMap([("A", "1"), ("X-Proxy-Auth", "old"), ("B", "2")])

        headers.set("x-proxy-auth", "new")

        assert headers.items() == [("A", "1"), ("X-Proxy-Auth", "new"), ("B", "2")]

    def test_from_httpx_headers_keeps_each_value(self):
        source = httpx.Headers([("set-cookie", "a=1"), ("set-cookie", "b=2")])

        headers = HeaderMap(source)

        assert headers.get_all("Set-Cookie") == ["a=1", "b=2"]


class TestStripHeaders:

    def test_request_direction_removes_transport_headers(self):
        result = strip_headers(make_headers(), Direction.REQUEST)

        assert list(result) == ["Accept", "X-Custom"]

    def test_response_direction_keeps_length_and_encoding(self):
        result = strip_headers(make_headers(), Direction.RESPONSE)

        assert list(result) == [
            "Host",
            "Accept",
            "Content-Length",
            "Accept-Encoding",
            "X-Custom",
        ]
        for name in HOP_BY_HOP_HEADERS:
            assert name not in result

    def test_mixed_case_names_are_stripped(self):
        headers = HeaderMap([("CoNnEcTiOn", "close"), ("TRANSFER-ENCODING", "chunked"), ("Trailers", "x")])

        assert len(strip_headers(headers, Direction.RESPONSE)) == 0

    def test_input_is_not_mutated(self):
        headers = make_headers()
        before = headers.copy()

        strip_headers(headers, Direction.REQUEST)

        assert headers == before
        assert "Connection" in headers

    def test_idempotent(self):
        for direction in Direction:
            once = strip_headers(make_headers(), direction)
            twice = strip_headers(once, direction)
            assert once == twice

    def test_accepts_plain_mapping(self):
        result = strip_headers({"Connection": "close", "Accept": "*/*"}, Direction.RESPONSE)

        assert result.to_dict() == {"Accept": "*/*"}
