"""Payment handler facade published to agents as ``com.wix.payments``."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..constants import HandlerIdentity
from ..exceptions import UCPErrorCode, UCPException
from .config import PaymentHandlerConfig
from .detokenizer import PaymentDetokenizer
from .models import DetokenizeResult, SourceCredential, TokenBinding, TokenizeResult
from .tokenizer import PaymentTokenizer

logger = logging.getLogger(__name__)


class PaymentHandler:
    """Wraps the tokenizer and detokenizer behind one handler identity.

    Protocol errors propagate unchanged; anything else is reported as a
    retryable NETWORK_ERROR without leaking the underlying message.
    """

    def __init__(
        self,
        config: PaymentHandlerConfig,
        tokenizer: PaymentTokenizer,
        detokenizer: PaymentDetokenizer,
        handler_id: Optional[str] = None,
    ) -> None:
        self.config = config
        self.tokenizer = tokenizer
        self.detokenizer = detokenizer
        self.handler_id = handler_id or f"wix_pay_handler_{config.merchant_id[-6:]}"

    async def tokenize(self, credential: SourceCredential, binding: TokenBinding) -> TokenizeResult:
        try:
            return await self.tokenizer.tokenize(credential, binding)
        except UCPException:
            raise
        except Exception as e:
            logger.error(f"Tokenization failed for checkout {binding.checkout_id}: {type(e).__name__}", exc_info=True)
            raise UCPException(UCPErrorCode.NETWORK_ERROR, "Payment tokenization failed") from e

    async def detokenize(
        self,
        token: str,
        binding: TokenBinding,
        delegated_to: Optional[str] = None,
    ) -> DetokenizeResult:
        try:
            return await self.detokenizer.detokenize(token, binding, delegated_to)
        except UCPException:
            raise
        except Exception as e:
            logger.error(f"Detokenization failed for checkout {binding.checkout_id}: {type(e).__name__}", exc_info=True)
            raise UCPException(UCPErrorCode.NETWORK_ERROR, "Payment detokenization failed") from e

    async def invalidate(self, checkout_id: str, token: str) -> bool:
        return await self.detokenizer.invalidate(checkout_id, token)

    def declaration(self) -> Dict[str, Any]:
        """Handler entry for checkout responses and the discovery profile."""
        return {
            "id": self.handler_id,
            "name": HandlerIdentity.NAME,
            "version": HandlerIdentity.VERSION,
            "spec": HandlerIdentity.SPEC_URL,
            "config": self.config.to_dict(),
        }

    def info(self) -> Dict[str, Any]:
        return {
            "handler": self.declaration(),
            "tokenTtlSeconds": self.tokenizer.ttl_seconds,
            "endpoints": {
                "tokenize": "/payment-handler/tokenize",
                "detokenize": "/payment-handler/detokenize",
                "invalidate": "/payment-handler/invalidate",
            },
        }
