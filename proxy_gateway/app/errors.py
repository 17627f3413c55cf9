"""
Gateway Error Taxonomy
======================

Every per-request failure of the forwarding pipeline is raised as a
GatewayError subclass carrying the HTTP status it maps to. The application
registers one exception handler (see main.py) that turns these into plain-text
responses, so route code only has to raise.

    AuthError             401  missing or invalid token
    ValidationError       400  missing or malformed target URL
    PayloadTooLargeError  413  request body above the ingress ceiling
    RateLimitError        429  per-client ceiling exceeded
    TransportError        502  upstream unreachable, timed out or malformed
    ConfigurationError    -    fatal at startup, never served
"""

from typing import Dict, Optional


class GatewayError(Exception):
    """Base exception for per-request gateway failures."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class AuthError(GatewayError):
    status_code = 401
    default_message = "Unauthorized: invalid or missing token"


class ValidationError(GatewayError):
    status_code = 400
    default_message = "Missing or invalid `url` query parameter"


class PayloadTooLargeError(GatewayError):
    status_code = 413
    default_message = "Payload Too Large"


class RateLimitError(GatewayError):
    status_code = 429
    default_message = "Too many requests, please try again later."


class TransportError(GatewayError):
    status_code = 502
    default_message = "Bad Gateway"


class ConfigurationError(Exception):
    """Raised while building the gateway configuration; the process must not serve."""
    pass
