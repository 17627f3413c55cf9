"""
Unit Tests for Node Selection
=============================

Tests for proxy_gateway/app/proxy/selector.py

Test Coverage:
--------------
1. FNV-1a hash against published test vectors
2. Round-robin order and counter integrity under concurrent calls
3. Sticky-by-IP determinism and cookie fallback
4. Client identity extraction
"""

import threading
from collections import Counter
from urllib.parse import quote

import pytest

from proxy_gateway.app.models import RotationMode
from proxy_gateway.app.proxy.headers import HeaderMap
from proxy_gateway.app.proxy.selector import (
    NodeSelector,
    client_identity,
    encode_node_cookie,
    fnv1a_32,
)

NODES = ["http://u1", "http://u2", "http://u3"]


@pytest.mark.parametrize("text,expected", [
    ("", 0x811C9DC5),
    ("a", 0xE40C292C),
    ("foobar", 0xBF9CF968),
])
def test_fnv1a_32_vectors(text, expected):
    assert fnv1a_32(text) == expected


def test_fnv1a_32_is_unsigned_32_bit():
    value = fnv1a_32("203.0.113.77")
    assert 0 <= value < 2 ** 32


class TestRoundRobin:

    def test_visits_each_node_once_in_order(self):
        selector = NodeSelector(NODES)

        assert [selector.round_robin() for _ in NODES] == NODES
        assert selector.round_robin() == NODES[0]

    def test_single_node_is_degenerate_case(self):
        selector = NodeSelector(["http://only"])

        assert {selector.round_robin() for _ in range(5)} == {"http://only"}

    def test_concurrent_calls_do_not_lose_increments(self):
        selector = NodeSelector(NODES)
        picks = Counter()
        lock = threading.Lock()

        def worker():
            local = Counter(selector.round_robin() for _ in range(300))
            with lock:
                picks.update(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert selector.counter == 2400
        assert picks == Counter({node: 800 for node in NODES})

    def test_rejects_empty_node_list(self):
        with pytest.raises(ValueError):
            NodeSelector([])


class TestStickyByIp:

    def test_same_identity_maps_to_same_node(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        first = selector.sticky_by_ip("198.51.100.7")
        second = selector.sticky_by_ip("198.51.100.7")

        assert first == second
        assert first == NODES[fnv1a_32("198.51.100.7") % len(NODES)]

    def test_hash_selection_does_not_advance_counter(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        selector.select("198.51.100.7")

        assert selector.counter == 0

    def test_cookie_used_when_no_identity(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        assert selector.sticky_by_ip("", encode_node_cookie("http://u3")) == "http://u3"
        assert selector.counter == 0

    def test_unknown_cookie_falls_back_to_round_robin(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        node = selector.sticky_by_ip(None, quote("http://retired", safe=""))

        assert node == NODES[0]
        assert selector.counter == 1

    def test_no_identity_no_cookie_rotates(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        assert [selector.sticky_by_ip(None) for _ in NODES] == NODES


class TestSelectDispatch:

    def test_round_robin_mode_ignores_identity(self):
        selector = NodeSelector(NODES, RotationMode.ROUND_ROBIN)

        picks = [selector.select("198.51.100.7") for _ in NODES]

        assert picks == NODES

    def test_sticky_mode_uses_hash(self):
        selector = NodeSelector(NODES, RotationMode.STICKY_BY_IP)

        picks = {selector.select("198.51.100.7") for _ in range(5)}

        assert len(picks) == 1


class TestClientIdentity:

    def test_first_forwarded_for_address_wins(self):
        headers = HeaderMap({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        assert client_identity(headers, "10.0.0.2") == "203.0.113.9"

    def test_falls_back_to_peer(self):
        assert client_identity(HeaderMap(), "10.0.0.2") == "10.0.0.2"

    def test_empty_when_nothing_known(self):
        assert client_identity(HeaderMap({"X-Forwarded-For": " , "}), None) == ""
