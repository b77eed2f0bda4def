"""Payment handler: single-use, checkout-bound payment tokens."""

from .config import PaymentHandlerConfig
from .detokenizer import PaymentDetokenizer
from .handler import PaymentHandler
from .tokenizer import PaymentTokenizer, SandboxCardVault

__all__ = [
    "PaymentDetokenizer",
    "PaymentHandler",
    "PaymentHandlerConfig",
    "PaymentTokenizer",
    "SandboxCardVault",
]
