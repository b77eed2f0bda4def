"""OAuth 2.0 identity linking."""

from .clients import ClientRegistry, InMemoryClientRepository
from .models import OAuthError, OAuthErrorCode, OAuthScope
from .service import OAuthService
from .signer import JWTSigner
from .token_manager import TokenManager

__all__ = [
    "ClientRegistry",
    "InMemoryClientRepository",
    "JWTSigner",
    "OAuthError",
    "OAuthErrorCode",
    "OAuthScope",
    "OAuthService",
    "TokenManager",
]
