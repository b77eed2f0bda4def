"""
Idempotency guard for checkout completion.

Retried completion requests (network timeouts, agent restarts) must not
create a second order. The first caller to claim ``(checkout_id, key)``
through the store's atomic set-if-absent proceeds; everyone else is told
the request is a duplicate and, once the original succeeded, receives the
stored result.

Usage:
    guard = IdempotencyGuard(store, window_seconds=86400)
    claim = await guard.acquire(checkout_id, idempotency_key)
    if not claim.acquired:
        ...  # inspect claim.record
    result = await do_side_effects()
    await guard.record_success(checkout_id, idempotency_key, result)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..constants import StoreKeys
from ..store import KeyValueStore
from .models import from_iso, to_iso, utc_now

logger = logging.getLogger(__name__)


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class IdempotencyRecord:
    checkout_id: str
    idempotency_key: str
    status: IdempotencyStatus = IdempotencyStatus.PENDING
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkoutId": self.checkout_id,
            "idempotencyKey": self.idempotency_key,
            "status": self.status.value,
            "result": self.result,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdempotencyRecord":
        return cls(
            checkout_id=data["checkoutId"],
            idempotency_key=data["idempotencyKey"],
            status=IdempotencyStatus(data.get("status", "pending")),
            result=data.get("result"),
            created_at=from_iso(data["createdAt"]),
        )


@dataclass(slots=True)
class IdempotencyClaim:
    """Outcome of acquire(): either we own the key or someone else does."""

    acquired: bool
    record: Optional[IdempotencyRecord] = None

    @property
    def is_duplicate(self) -> bool:
        return not self.acquired

    @property
    def cached_result(self) -> Optional[Dict[str, Any]]:
        if self.record and self.record.status == IdempotencyStatus.COMPLETED:
            return self.record.result
        return None


def idempotency_key(checkout_id: str, key: str) -> str:
    return f"{StoreKeys.IDEMPOTENCY}{checkout_id}:{key}"


class IdempotencyGuard:
    """At-most-once gate keyed by (checkout_id, idempotency_key)."""

    def __init__(self, store: KeyValueStore, window_seconds: int = 24 * 60 * 60) -> None:
        self.store = store
        self.window_seconds = window_seconds

    async def acquire(self, checkout_id: str, key: str) -> IdempotencyClaim:
        record = IdempotencyRecord(checkout_id=checkout_id, idempotency_key=key)
        created = await self.store.set_if_absent(
            idempotency_key(checkout_id, key), record.to_dict(), self.window_seconds
        )
        if created:
            return IdempotencyClaim(acquired=True, record=record)

        existing = await self.store.get(idempotency_key(checkout_id, key))
        logger.info(f"Duplicate completion request for {checkout_id} (key reused)")
        return IdempotencyClaim(
            acquired=False,
            record=IdempotencyRecord.from_dict(existing) if existing else None,
        )

    async def _finish(self, checkout_id: str, key: str, status: IdempotencyStatus, result: Optional[Dict[str, Any]]) -> None:
        store_key = idempotency_key(checkout_id, key)
        data = await self.store.get(store_key)
        record = IdempotencyRecord.from_dict(data) if data else IdempotencyRecord(checkout_id, key)
        record.status = status
        record.result = result
        ttl = await self.store.remaining_ttl(store_key) or self.window_seconds
        await self.store.set_with_ttl(store_key, record.to_dict(), ttl)

    async def record_success(self, checkout_id: str, key: str, result: Dict[str, Any]) -> None:
        """Store the result so duplicates replay it."""
        await self._finish(checkout_id, key, IdempotencyStatus.COMPLETED, result)

    async def record_failure(self, checkout_id: str, key: str) -> None:
        await self._finish(checkout_id, key, IdempotencyStatus.FAILED, None)

    async def release(self, checkout_id: str, key: str) -> bool:
        """Drop a claim that failed before any side effect so the key can be retried."""
        return await self.store.delete(idempotency_key(checkout_id, key))
