"""Payment gateway adapter.

The escrow tracker only talks to the ``PaymentGateway`` interface below.
``StripeGateway`` implements it on top of Stripe Connect: a payment intent with
``transfer_data.destination`` holds the payer's funds for the payee's connected
account, and the platform keeps ``application_fee_amount``.
See: https://docs.stripe.com/connect/destination-charges

Vendor status strings are interpreted in exactly one place,
``map_payment_intent_status``.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol

import stripe

from app.config import settings
from app.errors import GatewayError, GatewayNotConfigured

logger = logging.getLogger(__name__)


class GatewayPaymentStatus(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class HeldPayment:
    """A payment created on the gateway, awaiting capture from the payer."""
    payment_reference: str
    client_secret: str | None


@dataclass
class PayoutDestinationStatus:
    details_submitted: bool
    charges_enabled: bool
    payouts_enabled: bool

    @property
    def is_complete(self) -> bool:
        return self.details_submitted and self.charges_enabled


@dataclass
class PaymentMethodDetails:
    payment_method_id: str
    type: str
    brand: str | None = None
    last4: str | None = None
    expiry_month: int | None = None
    expiry_year: int | None = None


class PaymentGateway(Protocol):
    async def create_held_payment(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        commission: int,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> HeldPayment: ...

    async def get_payment_status(self, payment_reference: str) -> GatewayPaymentStatus: ...

    async def create_refund(
        self,
        payment_reference: str,
        reason: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> str: ...

    async def create_payout_destination(self, owner_id: int, country: str, email: str) -> str: ...

    async def create_onboarding_link(self, destination_account_id: str) -> str: ...

    async def get_payout_destination_status(
        self, destination_account_id: str
    ) -> PayoutDestinationStatus: ...

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails: ...


# Payment intent states that mean "the payer hasn't finished paying yet"
_STRIPE_PENDING_STATES = frozenset({
    "processing",
    "requires_action",
    "requires_capture",
    "requires_confirmation",
})


def map_payment_intent_status(vendor_status: str, has_error: bool = False) -> GatewayPaymentStatus:
    """Translate a Stripe payment intent status into our gateway status.

    ``requires_payment_method`` is both the initial state and the state Stripe
    returns to after a declined attempt; only the latter (with a
    ``last_payment_error``) counts as a failure.
    """
    if vendor_status == "succeeded":
        return GatewayPaymentStatus.SUCCEEDED
    if vendor_status == "canceled":
        return GatewayPaymentStatus.FAILED
    if vendor_status == "requires_payment_method":
        return GatewayPaymentStatus.FAILED if has_error else GatewayPaymentStatus.PENDING
    if vendor_status in _STRIPE_PENDING_STATES:
        return GatewayPaymentStatus.PENDING
    raise GatewayError(f"Unexpected payment status from provider: {vendor_status}")


class StripeGateway:
    """``PaymentGateway`` backed by the Stripe API.

    The Stripe SDK is synchronous, so calls run in the default executor.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self.api_key = settings.stripe_secret_key if api_key is None else api_key
        self.api_version = api_version or settings.stripe_api_version

    async def _call(self, operation: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        if not self.api_key:
            raise GatewayNotConfigured()
        # Stripe replays the original response for a repeated key instead of acting twice
        if kwargs.get("idempotency_key") is None:
            kwargs.pop("idempotency_key", None)
        kwargs.setdefault("api_key", self.api_key)
        kwargs.setdefault("stripe_version", self.api_version)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except stripe.StripeError as e:
            logger.error(
                "Stripe %s failed (%s): %s",
                operation, type(e).__name__, getattr(e, "user_message", None) or str(e),
            )
            raise GatewayError() from e

    async def create_held_payment(
        self,
        amount: int,
        currency: str,
        destination_account: str,
        commission: int,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> HeldPayment:
        intent = await self._call(
            "create payment intent",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            application_fee_amount=commission,
            transfer_data={"destination": destination_account},
            transfer_group=transfer_group,
            metadata={**metadata, "type": "escrow_transaction"},
            idempotency_key=idempotency_key,
        )
        return HeldPayment(payment_reference=intent.id, client_secret=intent.client_secret)

    async def get_payment_status(self, payment_reference: str) -> GatewayPaymentStatus:
        intent = await self._call(
            "retrieve payment intent", stripe.PaymentIntent.retrieve, payment_reference,
        )
        has_error = getattr(intent, "last_payment_error", None) is not None
        return map_payment_intent_status(intent.status, has_error)

    async def create_refund(
        self,
        payment_reference: str,
        reason: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> str:
        refund = await self._call(
            "create refund",
            stripe.Refund.create,
            payment_intent=payment_reference,
            reason="requested_by_customer",
            metadata={**metadata, "reason": reason},
            idempotency_key=idempotency_key,
        )
        return refund.id

    async def create_payout_destination(self, owner_id: int, country: str, email: str) -> str:
        account = await self._call(
            "create connected account",
            stripe.Account.create,
            type="express",
            country=country,
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            business_type="individual",
            settings={
                "payouts": {
                    "schedule": {"interval": "weekly", "weekly_anchor": "friday"},
                },
            },
            metadata={"user_id": str(owner_id)},
        )
        return account.id

    async def create_onboarding_link(self, destination_account_id: str) -> str:
        link = await self._call(
            "create account link",
            stripe.AccountLink.create,
            account=destination_account_id,
            refresh_url=settings.onboarding_refresh_url,
            return_url=settings.onboarding_return_url,
            type="account_onboarding",
        )
        return link.url

    async def get_payout_destination_status(
        self, destination_account_id: str
    ) -> PayoutDestinationStatus:
        account = await self._call(
            "retrieve connected account", stripe.Account.retrieve, destination_account_id,
        )
        return PayoutDestinationStatus(
            details_submitted=bool(getattr(account, "details_submitted", False)),
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
        )

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails:
        pm = await self._call(
            "retrieve payment method", stripe.PaymentMethod.retrieve, payment_method_id,
        )
        card = getattr(pm, "card", None)
        return PaymentMethodDetails(
            payment_method_id=pm.id,
            type=pm.type,
            brand=getattr(card, "brand", None) if card else None,
            last4=getattr(card, "last4", None) if card else None,
            expiry_month=getattr(card, "exp_month", None) if card else None,
            expiry_year=getattr(card, "exp_year", None) if card else None,
        )


def get_gateway() -> PaymentGateway:
    """FastAPI dependency. Overridden in tests with an in-memory gateway."""
    return StripeGateway()
