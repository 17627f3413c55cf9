"""
Authentication Package

Bearer-token checks for the gateway.

Modules:
- tokens: TokenAuthenticator and token extraction (header wins over query)
- routes: POST /validate-key

Tokens are static strings configured through VALID_TOKENS; an empty
configuration rejects every token.
"""

from .routes import auth_router
from .tokens import TokenAuthenticator, extract_token

__all__ = [
    "auth_router",
    "TokenAuthenticator",
    "extract_token",
]
