"""
Configuration module for the Proxy Gateway.

This module uses Pydantic Settings to load and validate environment variables
for bearer tokens, upstream proxy nodes, rotation policy, rate limiting,
upstream timeouts and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import GatewayConfig, RotationMode


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    List-valued settings are comma-separated strings; use the *_list
    properties to read them.
    """

    # =========================================================================
    # Access Control
    # =========================================================================

    VALID_TOKENS: str = Field(
        default="",
        description="Comma-separated bearer tokens accepted by the gateway (empty rejects everything)",
    )

    ALLOWED_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (empty allows any origin)",
    )

    # =========================================================================
    # Upstream Nodes
    # =========================================================================

    PROXY_NODES: str = Field(
        default="",
        description="Comma-separated upstream proxy base URLs, in rotation order (at least one)",
    )

    ROTATION_MODE: str = Field(
        default=RotationMode.ROUND_ROBIN.value,
        description="Node selection policy: round_robin or sticky_by_ip",
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Total time allowed for one upstream call",
        gt=0,
        le=600,
    )

    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Time allowed to establish the upstream connection",
        gt=0,
        le=600,
    )

    # =========================================================================
    # Ingress Limits
    # =========================================================================

    PROXY_RATE_LIMIT: int = Field(
        default=120,
        description="Requests per minute per client IP on /proxy",
        ge=1,
    )

    MAX_REQUEST_BODY_BYTES: int = Field(
        default=10 * 1024 * 1024,
        description="Largest request body accepted for forwarding",
        ge=0,
    )

    # =========================================================================
    # Gateway Server Configuration
    # =========================================================================

    GATEWAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    GATEWAY_PORT: int = Field(
        default=3000,
        validation_alias=AliasChoices("GATEWAY_PORT", "PORT"),
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    REGION: Optional[str] = Field(
        None,
        description="Deployment region reported by /health",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def valid_tokens_list(self) -> List[str]:
        return _split_csv(self.VALID_TOKENS)

    @property
    def allowed_origins_list(self) -> List[str]:
        return _split_csv(self.ALLOWED_ORIGINS)

    @property
    def proxy_nodes_list(self) -> List[str]:
        """
        Parse PROXY_NODES into base URLs without trailing slashes.

        Returns:
            Upstream base URLs in configured order.
        """
        return [node.rstrip("/") for node in _split_csv(self.PROXY_NODES)]

    @property
    def rotation_mode(self) -> RotationMode:
        """Configured rotation policy; unrecognised values rotate round-robin."""
        try:
            return RotationMode(self.ROTATION_MODE)
        except ValueError:
            return RotationMode.ROUND_ROBIN

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("ROTATION_MODE")
    @classmethod
    def normalize_rotation_mode(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Raises:
            ValueError: If the level is unknown
        """
        level = v.strip().upper()
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if level not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return level

    # =========================================================================
    # Runtime Configuration
    # =========================================================================

    def to_gateway_config(self) -> GatewayConfig:
        """
        Build the immutable GatewayConfig used by the forwarding engine.

        Raises:
            ConfigurationError: If no upstream node is configured or a node
                                is not an absolute http(s) URL.
        """
        nodes = self.proxy_nodes_list
        if not nodes:
            raise ConfigurationError(
                "PROXY_NODES must list at least one upstream base URL"
            )

        for node in nodes:
            parts = urlsplit(node)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ConfigurationError(
                    f"Invalid upstream node URL: '{node}'. "
                    "Expected format: 'https://node.example.com'"
                )

        return GatewayConfig(
            valid_tokens=frozenset(self.valid_tokens_list),
            nodes=tuple(nodes),
            rotation_mode=self.rotation_mode,
            rate_limit=self.PROXY_RATE_LIMIT,
            allowed_origins=tuple(self.allowed_origins_list),
            upstream_timeout=self.UPSTREAM_TIMEOUT_SECONDS,
            upstream_connect_timeout=self.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            max_body_bytes=self.MAX_REQUEST_BODY_BYTES,
            region=self.REGION,
        )


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are present but invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup so misconfiguration is visible in
    the logs before the first request arrives.

    Returns:
        Dictionary with validation status, errors and warnings.
    """
    errors = []
    warnings = []

    try:
        config = settings.to_gateway_config()
    except ConfigurationError as e:
        errors.append(str(e))
        config = None

    if not settings.valid_tokens_list:
        warnings.append("VALID_TOKENS is empty - no tokens will be accepted")

    if settings.ROTATION_MODE not in {mode.value for mode in RotationMode}:
        warnings.append(
            f"Unknown ROTATION_MODE '{settings.ROTATION_MODE}', using round_robin"
        )

    if not settings.allowed_origins_list:
        warnings.append("ALLOWED_ORIGINS is empty - any origin may call the gateway")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "nodes": len(config.nodes) if config else 0,
        "rotation_mode": settings.rotation_mode.value,
    }


if __name__ == "__main__":
    """
    Validate your .env configuration:
        python -m proxy_gateway.app.config
    """
    config_settings = get_settings()
    status = validate_configuration(config_settings)

    print("=" * 80)
    print("PROXY GATEWAY CONFIGURATION")
    print("=" * 80)
    print(f"  Upstream nodes:  {', '.join(config_settings.proxy_nodes_list) or '(none)'}")
    print(f"  Rotation mode:   {status['rotation_mode']}")
    print(f"  Rate limit:      {config_settings.PROXY_RATE_LIMIT} req/min per client")
    print(f"  Upstream timeout:{config_settings.UPSTREAM_TIMEOUT_SECONDS}s")
    print(f"  Tokens:          {len(config_settings.valid_tokens_list)} configured")

    for error in status["errors"]:
        print(f"  ✗ {error}")
    for warning in status["warnings"]:
        print(f"  ⚠ {warning}")
