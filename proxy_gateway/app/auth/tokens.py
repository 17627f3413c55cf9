"""
Bearer token validation.

Tokens are opaque strings configured through VALID_TOKENS. Callers present
one either in the x-proxy-auth header or, for convenience, in the `token`
query parameter; the header wins when both are present.
"""

import hmac
from typing import Iterable, Optional

TOKEN_HEADER = "x-proxy-auth"
TOKEN_QUERY_PARAM = "token"


def extract_token(header_value: Optional[str], query_value: Optional[str]) -> Optional[str]:
    """Pick the presented token, preferring the header over the query parameter."""
    return header_value or query_value or None


class TokenAuthenticator:
    """
    Validates presented tokens against the configured allow-set.

    Fails closed: with no configured tokens every request is rejected.
    """

    def __init__(self, valid_tokens: Iterable[str]):
        self._tokens = frozenset(token for token in valid_tokens if token)

    @property
    def configured(self) -> bool:
        return bool(self._tokens)

    def validate(self, token: Optional[str]) -> bool:
        if not token or not self._tokens:
            return False
        presented = token.encode("utf-8")
        # Compare against every token so timing does not reveal which matched
        matched = False
        for candidate in self._tokens:
            if hmac.compare_digest(presented, candidate.encode("utf-8")):
                matched = True
        return matched
