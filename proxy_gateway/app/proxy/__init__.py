"""
Proxy Package
=============

This package implements the authenticated forwarding endpoint that relays
requests from the browser intercept shim to one of the configured upstream
proxy nodes.

Main Components:
----------------
- headers.py: HeaderMap and hop-by-hop header stripping
- selector.py: round-robin and sticky-by-IP node selection
- ratelimit.py: per-client fixed-window rate limiter
- engine.py: the forwarding transaction
- routes.py: FastAPI router exposing /proxy

Usage:
------
    from proxy_gateway.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .routes import proxy_router

__all__ = ["proxy_router"]
