"""
Data Models Module

This module defines the Pydantic models shared across the gateway:
- GatewayConfig, the immutable runtime configuration built from Settings
- Request/response bodies of the HTTP surface (/health, /validate-key)
"""

from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class RotationMode(str, Enum):
    """Upstream node selection policy."""

    ROUND_ROBIN = "round_robin"
    STICKY_BY_IP = "sticky_by_ip"


# ============================================================================
# Runtime Configuration
# ============================================================================

class GatewayConfig(BaseModel):
    """Read-only configuration shared by every request for the process lifetime."""

    model_config = ConfigDict(frozen=True)

    valid_tokens: FrozenSet[str] = Field(default_factory=frozenset, description="Accepted bearer tokens")
    nodes: Tuple[str, ...] = Field(..., min_length=1, description="Ordered upstream base URLs")
    rotation_mode: RotationMode = Field(default=RotationMode.ROUND_ROBIN)
    rate_limit: int = Field(default=120, ge=1, description="Requests per 60 s per client")
    allowed_origins: Tuple[str, ...] = Field(default=(), description="CORS allow-list; empty allows all")
    upstream_timeout: float = Field(default=30.0, gt=0)
    upstream_connect_timeout: float = Field(default=10.0, gt=0)
    max_body_bytes: int = Field(default=10 * 1024 * 1024, ge=0)
    region: Optional[str] = None


# ============================================================================
# HTTP Surface Models
# ============================================================================

class ValidateKeyRequest(BaseModel):
    """Body of POST /validate-key."""
    token: Any = Field(None, description="Token to check; any JSON value is accepted")


class HealthResponse(BaseModel):
    """Health check response model."""
    ok: bool = Field(True, description="Service health status")
    nodes: int = Field(..., description="Number of configured upstream nodes")
    rotation_mode: RotationMode = Field(..., description="Configured rotation policy")
    region: Optional[str] = Field(None, description="Deployment region, if configured")
