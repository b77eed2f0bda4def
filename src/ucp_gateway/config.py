"""Canonical configuration surface for the UCP gateway."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .constants import UCPProtocol

NON_PRODUCTION_ENVIRONMENTS = ("dev", "test", "local")


class GatewaySettings(BaseSettings):
    """Main gateway configuration."""

    model_config = SettingsConfigDict(
        env_prefix="UCP_",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "test", "sandbox", "prod"] = "dev"

    # Public URL used for links and issuer
    base_url: str = "http://localhost:3000"
    ucp_version: str = UCPProtocol.VERSION

    # Ephemeral store; empty means in-process store
    redis_url: str = ""

    # Token signing
    jwt_secret: str = ""
    jwt_issuer: str = ""

    # Merchant identity
    merchant_id: str = "default_merchant"
    site_id: str = "default_site"
    business_name: str = "Wix Store"
    handler_id: str = ""

    # Payment handler
    payment_environment: Literal["TEST", "PRODUCTION"] = "TEST"
    tokenization_type: Literal["PAYMENT_GATEWAY", "DIRECT"] = "PAYMENT_GATEWAY"
    supported_currencies: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["USD", "EUR", "GBP", "ILS"]
    )
    three_ds_enabled: bool = True
    recurring_enabled: bool = False

    # Pricing
    tax_rate: Decimal = Decimal("0")

    # Lifetimes (seconds)
    checkout_ttl_seconds: int = 24 * 60 * 60
    completed_retention_seconds: int = 5 * 60
    cancelled_retention_seconds: int = 60
    idempotency_window_seconds: int = 24 * 60 * 60
    payment_token_ttl_seconds: int = 15 * 60
    auth_code_ttl_seconds: int = 10 * 60
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    consent_ttl_seconds: int = 30 * 24 * 60 * 60
    client_cache_ttl_seconds: int = 5 * 60
    profile_cache_ttl_seconds: int = 5 * 60

    # CORS
    allowed_origins: str = "*"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    @field_validator("supported_currencies", mode="before")
    @classmethod
    def parse_currencies(cls, v):
        """Parse comma-separated currencies from env var."""
        if isinstance(v, str):
            return [c.strip().upper() for c in v.split(",") if c.strip()]
        return v

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        env = info.data.get("environment", os.getenv("UCP_ENVIRONMENT", "dev"))
        if env not in NON_PRODUCTION_ENVIRONMENTS and (not v or len(v) < 32):
            raise ValueError(
                "UCP_JWT_SECRET must be at least 32 characters outside dev/test. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        return v or "dev-only-jwt-secret-not-for-production-use"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def issuer(self) -> str:
        return self.jwt_issuer or self.base_url

    @property
    def resolved_handler_id(self) -> str:
        return self.handler_id or f"wix_pay_handler_{self.merchant_id[-6:]}"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def is_production(self) -> bool:
        """Only dev/test/local are treated as non-production."""
        return self.environment not in NON_PRODUCTION_ENVIRONMENTS


@lru_cache
def load_settings(env_file: str | None = None) -> GatewaySettings:
    """Load GatewaySettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return GatewaySettings(_env_file=env_path)
