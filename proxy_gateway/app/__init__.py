"""
Proxy Gateway Application
=========================

Authenticated HTTP forwarding gateway. Requests redirected by the browser
intercept shim arrive at /proxy, are checked against the configured bearer
tokens and a per-client rate limit, and are relayed to one of several
upstream proxy nodes chosen round-robin or sticky by client IP.

Subpackages:
    - auth   : token validation and /validate-key
    - proxy  : header sanitizer, node selector, rate limiter, forwarding engine

Entry point: proxy_gateway.app.main:create_app
"""

__version__ = "1.0.0"
