"""Payout destination provisioning and onboarding status for receiving parties."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import PayoutAccountExists
from app.models.user import User
from app.services.gateway import PaymentGateway

logger = logging.getLogger(__name__)


@dataclass
class ProvisionedAccount:
    account_id: str
    onboarding_url: str


async def provision_payout_account(
    db: AsyncSession,
    gateway: PaymentGateway,
    user: User,
    country: str | None = None,
) -> ProvisionedAccount:
    """Create a payout destination for ``user`` and an onboarding link for it."""
    if user.payout_account_id:
        raise PayoutAccountExists()

    country = (country or settings.payout_default_country).upper()
    account_id = await gateway.create_payout_destination(user.id, country, user.email)

    user.payout_account_id = account_id
    user.payout_country = country
    await db.commit()
    logger.info("Provisioned payout account %s for user %s", account_id, user.id)

    # The account id is stored first so a failed link can be retried via refresh_onboarding_link
    onboarding_url = await gateway.create_onboarding_link(account_id)
    return ProvisionedAccount(account_id=account_id, onboarding_url=onboarding_url)


async def refresh_onboarding_link(gateway: PaymentGateway, user: User) -> str | None:
    """Issue a new onboarding link for an existing payout destination."""
    if not user.payout_account_id:
        return None
    return await gateway.create_onboarding_link(user.payout_account_id)


async def payout_account_status(gateway: PaymentGateway, user: User) -> dict:
    if not user.payout_account_id:
        return {
            "has_account": False,
            "is_complete": False,
            "account_id": None,
            "payouts_enabled": False,
        }

    status = await gateway.get_payout_destination_status(user.payout_account_id)
    return {
        "has_account": True,
        "is_complete": status.is_complete,
        "account_id": user.payout_account_id,
        "payouts_enabled": status.payouts_enabled,
    }
