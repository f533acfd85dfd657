"""Escrow error taxonomy and the handler that turns it into JSON responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EscrowError(Exception):
    """Base for every error the escrow flow surfaces to callers."""

    status_code: int = 400
    detail: str = "Escrow request failed"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> dict:
        return {}


class PayeeNotOnboarded(EscrowError):
    status_code = 422
    detail = "Payee must set up a payout account before receiving payments"


class InvalidEscrowRequest(EscrowError):
    status_code = 422
    detail = "Invalid escrow request"


class PartyNotFound(EscrowError):
    status_code = 404
    detail = "User not found"


class TransactionNotFound(EscrowError):
    status_code = 404
    detail = "Transaction not found"


class InvalidStateTransition(EscrowError):
    status_code = 409

    def __init__(self, operation: str, current_status: str) -> None:
        self.operation = operation
        self.current_status = current_status
        super().__init__(f"Cannot {operation} transaction in status {current_status}")

    def extra(self) -> dict:
        return {"current_status": self.current_status}


class Unauthorized(EscrowError):
    status_code = 403
    detail = "Not authorized for this transaction"


class PayoutAccountExists(EscrowError):
    status_code = 409
    detail = "Payout account already exists"


class GatewayError(EscrowError):
    """The payment gateway call failed or returned something we can't interpret."""

    status_code = 502
    detail = "Payment provider request failed"


class GatewayNotConfigured(GatewayError):
    status_code = 503
    detail = "Payment provider is not configured on this server"


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, **exc.extra()},
    )
