"""
Tests for ucp_gateway.checkout.service.

Tests cover:
- Checkout creation and response rendering
- Update validation (discounts, fulfillment)
- Completion flow, including idempotent replay
- Failure handling around payment and order creation
"""
from __future__ import annotations

import logging

import pytest

from ucp_gateway.checkout.models import SessionPatch
from ucp_gateway.constants import StoreKeys
from ucp_gateway.exceptions import StoreUnavailableError, UCPErrorCode, UCPException
from ucp_gateway.payments.models import BusinessIdentity, SourceCredential, TokenBinding

from ucp_helpers import MERCHANT_ID


@pytest.fixture
def service(container):
    return container.checkout


async def tokenize_for(container, checkout_id: str, business_id: str = MERCHANT_ID) -> str:
    result = await container.payment_handler.tokenize(
        SourceCredential(type="card", pan="4111111111111111", expiry_month="12", expiry_year="2030", cvv="123"),
        TokenBinding(checkout_id=checkout_id, business_identity=BusinessIdentity(value=business_id)),
    )
    return result.token


async def ready_checkout(service, tshirt, buyer, shipping_address) -> str:
    created = await service.create_checkout("USD", [tshirt], buyer=buyer, shipping_address=shipping_address)
    await service.update_checkout(created["id"], SessionPatch(selected_fulfillment_id="standard_shipping"))
    return created["id"]


class TestCreateCheckout:
    """Tests for create_checkout."""

    @pytest.mark.asyncio
    async def test_create_renders_full_response(self, service, tshirt):
        response = await service.create_checkout("USD", [tshirt])

        assert response["id"].startswith("chk_")
        assert response["status"] == "incomplete"
        assert response["currency"] == "USD"
        assert response["lineItems"][0]["quantity"] == 2
        assert response["payment"]["handlers"][0]["id"] == "wix_pay_handler_est123"
        assert [o["id"] for o in response["fulfillment"]["options"]] == ["standard_shipping", "express_shipping"]
        assert {m["code"] for m in response["messages"]} >= {"MISSING_EMAIL", "MISSING_SHIPPING"}
        assert "ucp" in response

    @pytest.mark.asyncio
    async def test_digital_only_has_no_fulfillment(self, service, ebook, buyer):
        response = await service.create_checkout("USD", [ebook], buyer=buyer)
        assert "fulfillment" not in response
        assert response["status"] == "ready_for_payment"

    @pytest.mark.asyncio
    async def test_empty_items_rejected(self, service):
        with pytest.raises(UCPException) as exc_info:
            await service.create_checkout("USD", [])
        assert exc_info.value.code == UCPErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, service, tshirt):
        with pytest.raises(UCPException) as exc_info:
            await service.create_checkout("JPY", [tshirt])
        assert exc_info.value.detail_codes == ["UNSUPPORTED_CURRENCY"]

    @pytest.mark.asyncio
    async def test_invalid_discount_rejected(self, service, tshirt):
        with pytest.raises(UCPException) as exc_info:
            await service.create_checkout("USD", [tshirt], discount_code="BOGUS")
        assert exc_info.value.code == UCPErrorCode.INVALID_FIELD
        assert exc_info.value.detail_codes == ["INVALID_DISCOUNT"]

    @pytest.mark.asyncio
    async def test_get_unknown(self, service):
        with pytest.raises(UCPException) as exc_info:
            await service.get_checkout("chk_" + "0" * 32)
        assert exc_info.value.code == UCPErrorCode.NOT_FOUND


class TestUpdateCheckout:
    """Tests for update_checkout."""

    @pytest.mark.asyncio
    async def test_fulfillment_selection_updates_totals(self, service, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        response = await service.get_checkout(checkout_id)

        assert response["status"] == "ready_for_payment"
        assert response["fulfillment"]["selectedId"] == "standard_shipping"
        totals = {t["type"]: t["amount"] for t in response["totals"]}
        assert totals["SUBTOTAL"] == 5000
        assert totals["SHIPPING"] == 599
        assert totals["TOTAL"] == 5599

    @pytest.mark.asyncio
    async def test_unknown_fulfillment_option(self, service, tshirt):
        created = await service.create_checkout("USD", [tshirt])
        with pytest.raises(UCPException) as exc_info:
            await service.update_checkout(created["id"], SessionPatch(selected_fulfillment_id="teleport"))
        assert exc_info.value.detail_codes == ["INVALID_FULFILLMENT"]

    @pytest.mark.asyncio
    async def test_discount_applied_and_removed(self, service, tshirt):
        created = await service.create_checkout("USD", [tshirt])

        applied = await service.update_checkout(created["id"], SessionPatch(discount_code="TEST10"))
        assert applied["discountCode"] == "TEST10"
        assert any(t["type"] == "DISCOUNT" and t["amount"] == -500 for t in applied["totals"])

        removed = await service.update_checkout(created["id"], SessionPatch(discount_code=None))
        assert "discountCode" not in removed
        assert all(t["type"] != "DISCOUNT" for t in removed["totals"])

    @pytest.mark.asyncio
    async def test_empty_patch_is_noop(self, service, tshirt):
        created = await service.create_checkout("USD", [tshirt])
        response = await service.update_checkout(created["id"], SessionPatch())
        assert response["status"] == created["status"]


class TestCompleteCheckout:
    """Tests for complete_checkout."""

    @pytest.mark.asyncio
    async def test_complete_success(self, service, container, merchant, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        result = await service.complete_checkout(checkout_id, token, "idem-1", "wix_pay_handler_est123")

        assert result["status"] == "completed"
        assert result["orderId"] in merchant.orders
        assert result["confirmationNumber"] == f"ORD-{result['orderId'][-8:].upper()}"
        assert result["payment"]["status"] == "captured"

        session = await container.checkout.sessions.get(checkout_id)
        assert session.order_id == result["orderId"]

    @pytest.mark.asyncio
    async def test_replay_returns_same_result(self, service, container, merchant, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        first = await service.complete_checkout(checkout_id, token, "idem-1")
        second = await service.complete_checkout(checkout_id, token, "idem-1")

        assert second == first
        assert len(merchant.orders) == 1

    @pytest.mark.asyncio
    async def test_new_key_after_completion_conflicts(self, service, container, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)
        await service.complete_checkout(checkout_id, token, "idem-1")

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-2")
        assert exc_info.value.code == UCPErrorCode.CONFLICT

    @pytest.mark.asyncio
    async def test_missing_fields_release_claim(self, service, container, tshirt, buyer, shipping_address):
        created = await service.create_checkout("USD", [tshirt], buyer=buyer, shipping_address=shipping_address)
        token = await tokenize_for(container, created["id"])

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(created["id"], token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.INVALID_REQUEST
        assert exc_info.value.details[0].field == "fulfillment.selectedId"

        await service.update_checkout(created["id"], SessionPatch(selected_fulfillment_id="standard_shipping"))
        result = await service.complete_checkout(created["id"], token, "idem-1")
        assert result["status"] == "completed"

    @pytest.mark.asyncio
    async def test_handler_mismatch(self, service, container, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1", handler_id="other_handler")
        assert exc_info.value.detail_codes == ["INVALID_HANDLER"]

    @pytest.mark.asyncio
    async def test_token_for_other_checkout(self, service, container, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        other_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, other_id)

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.UNPROCESSABLE
        assert exc_info.value.detail_codes == ["PAYMENT_FAILED"]

        # the key is burned after a payment failure
        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.CONFLICT

    @pytest.mark.asyncio
    async def test_order_failure_is_network_error(self, service, container, merchant, tshirt, buyer, shipping_address):
        async def broken_create_order(session, credential):
            raise RuntimeError("merchant down")

        merchant.create_order = broken_create_order
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.NETWORK_ERROR
        assert exc_info.value.retryable

        session = await container.checkout.sessions.get(checkout_id)
        assert session.status.value == "ready_for_payment"

    @pytest.mark.asyncio
    async def test_cancelled_checkout_is_gone(self, service, container, tshirt, buyer, shipping_address):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)
        await service.cancel_checkout(checkout_id)

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.GONE

    @pytest.mark.asyncio
    async def test_store_outage_during_redemption_is_retryable(
        self, service, container, store, merchant, tshirt, buyer, shipping_address, monkeypatch
    ):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        original_get = store.get
        failures = [StoreUnavailableError("get")]

        async def flaky_get(key):
            if key.startswith(StoreKeys.PAYMENT_TOKEN) and failures:
                raise failures.pop()
            return await original_get(key)

        monkeypatch.setattr(store, "get", flaky_get)

        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.SERVICE_UNAVAILABLE
        assert exc_info.value.retryable

        result = await service.complete_checkout(checkout_id, token, "idem-1")
        assert result["status"] == "completed"
        assert len(merchant.orders) == 1

    @pytest.mark.asyncio
    async def test_orphaned_order_is_logged(
        self, service, container, merchant, tshirt, buyer, shipping_address, monkeypatch, caplog
    ):
        checkout_id = await ready_checkout(service, tshirt, buyer, shipping_address)
        token = await tokenize_for(container, checkout_id)

        async def failing_complete(checkout_id, order_id):
            raise StoreUnavailableError("set")

        monkeypatch.setattr(container.checkout.sessions, "complete", failing_complete)

        with caplog.at_level(logging.ERROR, logger="ucp_gateway.checkout.service"):
            with pytest.raises(StoreUnavailableError):
                await service.complete_checkout(checkout_id, token, "idem-1")

        [order_id] = list(merchant.orders)
        assert any(order_id in r.getMessage() and r.levelno == logging.ERROR for r in caplog.records)

        # the key is burned so a retry cannot place a second order
        with pytest.raises(UCPException) as exc_info:
            await service.complete_checkout(checkout_id, token, "idem-1")
        assert exc_info.value.code == UCPErrorCode.CONFLICT
        assert len(merchant.orders) == 1


class TestFulfillmentOptions:
    @pytest.mark.asyncio
    async def test_shipping_lookup_failure_uses_defaults(self, service, merchant, tshirt):
        async def broken_rates(checkout_id, shipping_address=None):
            raise ConnectionError("rates unavailable")

        created = await service.create_checkout("USD", [tshirt])
        merchant.get_shipping_rates = broken_rates

        options = await service.get_fulfillment_options(created["id"])
        assert [o.id for o in options] == ["standard_shipping", "express_shipping"]
