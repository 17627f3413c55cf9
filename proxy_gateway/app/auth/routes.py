"""
Token validation route.

POST /validate-key lets a front end check a token before enabling the
intercept shim. It has no rate limiting and no forwarding side effects.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError as PydanticValidationError

from ..models import ValidateKeyRequest
from .tokens import TokenAuthenticator


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    tags=["authentication"],
)


def get_authenticator(request: Request) -> TokenAuthenticator:
    """Authenticator owned by the application state."""
    app_state = getattr(request.app.state, "app_state", None)
    if app_state is None or app_state.authenticator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway not initialized"
        )
    return app_state.authenticator


# =============================================================================
# Validate Key Endpoint
# =============================================================================

@auth_router.post("/validate-key", response_class=PlainTextResponse)
async def validate_key(request: Request):
    """
    Check a token against the configured allow-set.

    Body:
        {"token": "<token>"}

    Returns:
        200 if the token is valid, 400 if it is absent, 401 if it is invalid.
    """
    authenticator = get_authenticator(request)

    raw = await request.body()
    try:
        body = ValidateKeyRequest.model_validate_json(raw or b"{}")
    except PydanticValidationError:
        body = ValidateKeyRequest()

    # Falsy JSON values (null, false, 0, "") count as absent
    if body.token is None or body.token in ("", 0, False):
        return PlainTextResponse("token required", status_code=status.HTTP_400_BAD_REQUEST)

    if isinstance(body.token, str) and authenticator.validate(body.token):
        return PlainTextResponse("OK", status_code=status.HTTP_200_OK)

    logger.info("Token validation failed")
    return PlainTextResponse("invalid token", status_code=status.HTTP_401_UNAUTHORIZED)
