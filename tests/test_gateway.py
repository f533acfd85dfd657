"""Tests for the Stripe gateway adapter. The Stripe SDK is patched; no network."""

from types import SimpleNamespace

import pytest
import stripe

from app.errors import GatewayError, GatewayNotConfigured
from app.services.gateway import GatewayPaymentStatus, StripeGateway, map_payment_intent_status


@pytest.mark.parametrize(
    "vendor_status, has_error, expected",
    [
        ("succeeded", False, GatewayPaymentStatus.SUCCEEDED),
        ("canceled", False, GatewayPaymentStatus.FAILED),
        ("requires_payment_method", True, GatewayPaymentStatus.FAILED),
        ("requires_payment_method", False, GatewayPaymentStatus.PENDING),
        ("processing", False, GatewayPaymentStatus.PENDING),
        ("requires_action", False, GatewayPaymentStatus.PENDING),
        ("requires_capture", False, GatewayPaymentStatus.PENDING),
        ("requires_confirmation", False, GatewayPaymentStatus.PENDING),
    ],
)
def test_map_payment_intent_status(vendor_status: str, has_error: bool, expected: GatewayPaymentStatus) -> None:
    assert map_payment_intent_status(vendor_status, has_error) == expected


def test_unknown_vendor_status_is_gateway_error() -> None:
    with pytest.raises(GatewayError):
        map_payment_intent_status("teleported")


@pytest.mark.asyncio
async def test_missing_api_key_not_configured() -> None:
    gateway = StripeGateway(api_key="")
    with pytest.raises(GatewayNotConfigured):
        await gateway.get_payment_status("pi_123")


@pytest.mark.asyncio
async def test_create_held_payment_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_abc", client_secret="pi_abc_secret_xyz")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    gateway = StripeGateway(api_key="sk_test_dummy", api_version="2025-02-24.acacia")

    held = await gateway.create_held_payment(
        amount=10_000,
        currency="USD",
        destination_account="acct_payee",
        commission=800,
        transfer_group="escrow_1_2_3",
        metadata={"payer_id": "2", "payee_id": "3"},
    )

    assert held.payment_reference == "pi_abc"
    assert held.client_secret == "pi_abc_secret_xyz"
    assert captured["amount"] == 10_000
    assert captured["currency"] == "usd"
    assert captured["application_fee_amount"] == 800
    assert captured["transfer_data"] == {"destination": "acct_payee"}
    assert captured["transfer_group"] == "escrow_1_2_3"
    assert captured["metadata"]["type"] == "escrow_transaction"
    assert captured["api_key"] == "sk_test_dummy"
    assert captured["stripe_version"] == "2025-02-24.acacia"
    assert "idempotency_key" not in captured


@pytest.mark.asyncio
async def test_stripe_error_becomes_gateway_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_create(**kwargs):
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.PaymentIntent, "create", failing_create)
    gateway = StripeGateway(api_key="sk_test_dummy")

    with pytest.raises(GatewayError) as exc_info:
        await gateway.create_held_payment(
            amount=500, currency="usd", destination_account="acct_x", commission=40,
            transfer_group="g", metadata={},
        )

    assert exc_info.value.status_code == 502
    assert isinstance(exc_info.value.__cause__, stripe.APIConnectionError)


@pytest.mark.asyncio
async def test_payment_status_uses_last_payment_error(monkeypatch: pytest.MonkeyPatch) -> None:
    intents = {
        "pi_declined": SimpleNamespace(
            status="requires_payment_method", last_payment_error={"code": "card_declined"},
        ),
        "pi_fresh": SimpleNamespace(status="requires_payment_method", last_payment_error=None),
    }
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda ref, **kwargs: intents[ref])
    gateway = StripeGateway(api_key="sk_test_dummy")

    assert await gateway.get_payment_status("pi_declined") == GatewayPaymentStatus.FAILED
    assert await gateway.get_payment_status("pi_fresh") == GatewayPaymentStatus.PENDING


@pytest.mark.asyncio
async def test_create_refund(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_refund(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="re_789")

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)
    gateway = StripeGateway(api_key="sk_test_dummy")

    reference = await gateway.create_refund(
        "pi_abc", "Session cancelled", {"escrow_transaction_id": "9"},
        idempotency_key="escrow-refund-9",
    )

    assert reference == "re_789"
    assert captured["payment_intent"] == "pi_abc"
    assert captured["reason"] == "requested_by_customer"
    assert captured["metadata"] == {"escrow_transaction_id": "9", "reason": "Session cancelled"}
    assert captured["idempotency_key"] == "escrow-refund-9"


@pytest.mark.asyncio
async def test_payout_destination_status(monkeypatch: pytest.MonkeyPatch) -> None:
    account = SimpleNamespace(details_submitted=True, charges_enabled=False, payouts_enabled=False)
    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id, **kwargs: account)
    gateway = StripeGateway(api_key="sk_test_dummy")

    status = await gateway.get_payout_destination_status("acct_1")

    assert status.details_submitted is True
    assert status.is_complete is False


@pytest.mark.asyncio
async def test_onboarding_link_uses_frontend_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_link(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(url="https://connect.stripe.com/setup/e/acct_1/abc")

    monkeypatch.setattr(stripe.AccountLink, "create", fake_link)
    gateway = StripeGateway(api_key="sk_test_dummy")

    url = await gateway.create_onboarding_link("acct_1")

    assert url == "https://connect.stripe.com/setup/e/acct_1/abc"
    assert captured["type"] == "account_onboarding"
    assert captured["refresh_url"].endswith("/professional-dashboard?setup=refresh")
    assert captured["return_url"].endswith("/professional-dashboard?setup=complete")
