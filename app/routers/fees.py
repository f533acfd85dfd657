"""Commission schedule endpoint: public, no auth required."""

from fastapi import APIRouter

from app.services.commission import commission_schedule

router = APIRouter(tags=["fees"])


@router.get("/fees")
async def fee_schedule() -> dict:
    """Current platform commission. The payee receives the amount minus this share."""
    return commission_schedule()
