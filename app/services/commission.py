"""Platform commission calculation.

The platform keeps a fixed share of every escrow transaction, expressed in
basis points (800 bps = 8%). The split is computed once, when the transaction
is created, and stored on the row. It is never recomputed: a later change to
``escrow_commission_rate_bps`` only affects new transactions.

All amounts are integers in minor currency units (cents, fils).
Query GET /fees for the current schedule.
"""

from dataclasses import dataclass

from app.config import settings

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class CommissionSplit:
    """How a transaction amount divides between the platform and the payee."""
    commission: int
    payout: int

    def to_dict(self) -> dict:
        return {"commission": self.commission, "payout": self.payout}


def compute_split(amount: int, rate_bps: int) -> CommissionSplit:
    """Split ``amount`` into (platform commission, payee payout).

    commission = round(amount * rate_bps / 10000), half-up; payout is the rest,
    so commission + payout == amount always holds.
    """
    if amount < 0:
        raise ValueError("amount must be non-negative")
    if not 0 <= rate_bps <= BPS_DENOMINATOR:
        raise ValueError(f"rate_bps must be between 0 and {BPS_DENOMINATOR}")

    # Integer half-up rounding: floor((a*r + d/2) / d)
    commission = (amount * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR
    return CommissionSplit(commission=commission, payout=amount - commission)


def commission_schedule() -> dict:
    """Return the current commission schedule for display to payers and payees."""
    example = compute_split(10_000, settings.escrow_commission_rate_bps)
    return {
        "commission_rate_bps": settings.escrow_commission_rate_bps,
        "commission_rate_percent": str(settings.commission_rate_percent),
        "charged_at": "Transaction creation (withheld from the payee's payout)",
        "escrow_release_days": settings.escrow_release_days,
        "supported_currencies": settings.escrow_supported_currencies,
        "example": {
            "amount": 10_000,
            **example.to_dict(),
            "note": "Amounts are in minor currency units (e.g. cents)",
        },
    }
