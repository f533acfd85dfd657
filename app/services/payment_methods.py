"""Saved payment methods for paying parties."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment_method import PaymentMethod
from app.services.gateway import PaymentGateway

logger = logging.getLogger(__name__)


async def save_payment_method(
    db: AsyncSession,
    gateway: PaymentGateway,
    user_id: int,
    payment_method_id: str,
) -> PaymentMethod:
    """Look up card details on the gateway and store them for the user.

    Saving an already-saved method returns the existing row. The first method
    a user saves becomes their default.
    """
    result = await db.execute(
        select(PaymentMethod).where(PaymentMethod.user_id == user_id)
    )
    existing = list(result.scalars().all())
    for method in existing:
        if method.gateway_payment_method_id == payment_method_id:
            return method

    details = await gateway.get_payment_method(payment_method_id)
    method = PaymentMethod(
        user_id=user_id,
        gateway_payment_method_id=details.payment_method_id,
        type=details.type,
        brand=details.brand,
        last4=details.last4,
        expiry_month=details.expiry_month,
        expiry_year=details.expiry_year,
        is_default=not existing,
    )
    db.add(method)
    await db.commit()
    await db.refresh(method)
    logger.info("Saved %s payment method for user %s", details.type, user_id)
    return method


async def list_payment_methods(db: AsyncSession, user_id: int) -> list[PaymentMethod]:
    result = await db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.user_id == user_id)
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
    )
    return list(result.scalars().all())
