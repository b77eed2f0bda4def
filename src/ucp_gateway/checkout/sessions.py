"""
Checkout session store.

Sessions are kept only in the ephemeral keyed store; every call round-trips
to it so concurrent requests for the same checkout observe the same state.
The state machine keeps ``status`` authoritative on every write.

Usage:
    sessions = CheckoutSessionStore(store, ttl_seconds=86400)
    session = await sessions.create(CreateSessionParams(currency="USD", line_items=items))
    session = await sessions.update(session.id, SessionPatch(buyer=Buyer(email="a@b.co")))
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from ..constants import IdPrefix, StoreKeys
from ..exceptions import UCPErrorCode, UCPException, not_found_error
from ..store import KeyValueStore
from .models import Address, Buyer, CheckoutSession, LineItem, SessionPatch, UNSET, utc_now
from .state_machine import (
    CheckoutEvent,
    CheckoutStatus,
    can_modify,
    determine_status,
    transition,
)

logger = logging.getLogger(__name__)

CHECKOUT_ID_PATTERN = re.compile(r"^chk_[a-f0-9]{32}$")


def generate_checkout_id() -> str:
    return f"{IdPrefix.CHECKOUT}{uuid.uuid4().hex}"


def is_valid_checkout_id(checkout_id: str) -> bool:
    return bool(checkout_id) and CHECKOUT_ID_PATTERN.match(checkout_id) is not None


def session_key(checkout_id: str) -> str:
    return f"{StoreKeys.CHECKOUT}{checkout_id}"


@dataclass(slots=True)
class CreateSessionParams:
    currency: str
    line_items: List[LineItem]
    buyer: Optional[Buyer] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    selected_fulfillment_id: Optional[str] = None
    discount_code: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    ttl_seconds: Optional[int] = None


class CheckoutSessionStore:
    """CRUD over CheckoutSession records with TTL-bound retention."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = 24 * 60 * 60,
        completed_retention_seconds: int = 5 * 60,
        cancelled_retention_seconds: int = 60,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self.cancelled_retention_seconds = cancelled_retention_seconds

    async def _save(self, session: CheckoutSession, ttl_seconds: int) -> None:
        await self.store.set_with_ttl(session_key(session.id), session.to_dict(), ttl_seconds)

    async def _load(self, checkout_id: str) -> Optional[CheckoutSession]:
        data = await self.store.get(session_key(checkout_id))
        if data is None:
            return None
        return CheckoutSession.from_dict(data)

    async def _require(self, checkout_id: str) -> CheckoutSession:
        session = await self.get(checkout_id)
        if session is None:
            raise not_found_error("Checkout session", checkout_id)
        return session

    async def _remaining_ttl(self, session: CheckoutSession) -> int:
        ttl = await self.store.remaining_ttl(session_key(session.id))
        if ttl is None or ttl <= 0:
            remaining = int((session.expires_at - utc_now()).total_seconds())
            return max(1, remaining)
        return ttl

    async def create(self, params: CreateSessionParams) -> CheckoutSession:
        ttl = params.ttl_seconds or self.ttl_seconds
        now = utc_now()
        session = CheckoutSession(
            id=generate_checkout_id(),
            currency=params.currency.upper(),
            line_items=list(params.line_items),
            buyer=params.buyer,
            shipping_address=params.shipping_address,
            billing_address=params.billing_address,
            selected_fulfillment_id=params.selected_fulfillment_id,
            discount_code=params.discount_code,
            metadata=dict(params.metadata),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        session.status = determine_status(session, now)

        await self._save(session, ttl)
        logger.info(f"Created checkout session {session.id} status={session.status.value}")
        return session

    async def get(self, checkout_id: str) -> Optional[CheckoutSession]:
        """Load a session; reports ``expired`` if past expires_at without writing."""
        session = await self._load(checkout_id)
        if session is None:
            return None
        if session.status not in (CheckoutStatus.COMPLETED, CheckoutStatus.CANCELLED, CheckoutStatus.EXPIRED):
            if session.is_expired():
                session.status = CheckoutStatus.EXPIRED
        return session

    async def exists(self, checkout_id: str) -> bool:
        return await self.store.exists(session_key(checkout_id))

    async def update(self, checkout_id: str, patch: SessionPatch) -> CheckoutSession:
        """Merge patch fields, recompute status and keep the remaining TTL.

        Raises:
            UCPException: NOT_FOUND if absent, GONE if expired,
                CONFLICT if the status does not allow modification.
        """
        session = await self._require(checkout_id)
        if session.status == CheckoutStatus.EXPIRED:
            raise UCPException(UCPErrorCode.GONE, "Checkout session has expired")
        if not can_modify(session.status):
            raise UCPException(
                UCPErrorCode.CONFLICT,
                f"Cannot modify checkout in '{session.status.value}' state",
            )

        if patch.buyer is not UNSET:
            if patch.buyer is None:
                session.buyer = None
            else:
                session.buyer = (session.buyer or Buyer()).merged(patch.buyer)
        if patch.shipping_address is not UNSET:
            session.shipping_address = patch.shipping_address
        if patch.billing_address is not UNSET:
            session.billing_address = patch.billing_address
        if patch.selected_fulfillment_id is not UNSET:
            session.selected_fulfillment_id = patch.selected_fulfillment_id
        if patch.discount_code is not UNSET:
            session.discount_code = patch.discount_code
        if patch.metadata is not UNSET:
            session.metadata = {**session.metadata, **(patch.metadata or {})}

        now = utc_now()
        session.updated_at = now
        session.status = determine_status(session, now)

        await self._save(session, await self._remaining_ttl(session))
        logger.debug(f"Updated checkout session {checkout_id} fields={patch.provided()}")
        return session

    async def set_payment_transaction(self, checkout_id: str, transaction_id: str) -> CheckoutSession:
        session = await self._require(checkout_id)
        if session.status == CheckoutStatus.READY_FOR_PAYMENT:
            session.status = transition(session.status, CheckoutEvent.PAYMENT_SUBMITTED)
        elif session.status != CheckoutStatus.READY_FOR_COMPLETE:
            raise UCPException(
                UCPErrorCode.CONFLICT,
                f"Cannot record payment in '{session.status.value}' state",
            )
        session.payment_transaction_id = transaction_id
        session.updated_at = utc_now()
        await self._save(session, await self._remaining_ttl(session))
        return session

    async def complete(self, checkout_id: str, order_id: str) -> CheckoutSession:
        """Move to terminal ``completed`` and shorten retention."""
        session = await self._require(checkout_id)
        session.status = transition(session.status, CheckoutEvent.COMPLETE_CALLED)
        session.order_id = order_id
        session.updated_at = utc_now()
        await self._save(session, self.completed_retention_seconds)
        logger.info(f"Checkout {checkout_id} completed with order {order_id}")
        return session

    async def cancel(self, checkout_id: str) -> CheckoutSession:
        """Move to terminal ``cancelled`` and shorten retention.

        Raises:
            UCPException: CONFLICT if already completed or cancelled,
                GONE if expired.
        """
        session = await self._require(checkout_id)
        if session.status == CheckoutStatus.COMPLETED:
            raise UCPException(UCPErrorCode.CONFLICT, "Cannot cancel completed checkout")
        if session.status == CheckoutStatus.CANCELLED:
            raise UCPException(UCPErrorCode.CONFLICT, "Checkout is already cancelled")
        if session.status == CheckoutStatus.EXPIRED:
            raise UCPException(UCPErrorCode.GONE, "Checkout session has expired")

        session.status = transition(session.status, CheckoutEvent.CANCEL_CALLED)
        session.updated_at = utc_now()
        await self._save(session, self.cancelled_retention_seconds)
        logger.info(f"Checkout {checkout_id} cancelled")
        return session

    async def extend_ttl(self, checkout_id: str, additional_seconds: int) -> CheckoutSession:
        session = await self._require(checkout_id)
        if session.status in (CheckoutStatus.COMPLETED, CheckoutStatus.CANCELLED, CheckoutStatus.EXPIRED):
            raise UCPException(
                UCPErrorCode.CONFLICT,
                f"Cannot extend checkout in '{session.status.value}' state",
            )
        remaining = await self._remaining_ttl(session)
        new_ttl = remaining + additional_seconds
        session.expires_at = session.expires_at + timedelta(seconds=additional_seconds)
        session.updated_at = utc_now()
        await self._save(session, new_ttl)
        return session

    async def delete(self, checkout_id: str) -> bool:
        return await self.store.delete(session_key(checkout_id))
