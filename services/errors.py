# services/errors.py
"""
Error taxonomy for the ticketing core.

Every denial carries a stable ``code`` (what scanner and checkout clients
branch on), a default HTTP ``status`` and a human-readable message. Routes
turn these into ``{"success": false, "error": ..., "code": ...}``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ZestError(Exception):
    code = "ERROR"
    status = 400

    def __init__(self, message: str, *, code: Optional[str] = None,
                 status: Optional[int] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status:
            self.status = status
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        out.update(self.details)
        return out


class NotFoundError(ZestError):
    code = "NOT_FOUND"
    status = 404


class BusinessRuleError(ZestError):
    code = "BUSINESS_RULE"
    status = 400


class InsufficientCapacityError(BusinessRuleError):
    code = "INSUFFICIENT_CAPACITY"
    status = 409

    def __init__(self, ticket_type: str, available: int, requested: int):
        super().__init__(
            f"Only {available} tickets available for {ticket_type}",
            ticketType=ticket_type,
            available=int(available),
            requested=int(requested),
        )
        self.available = int(available)


class AuthorizationError(ZestError):
    code = "UNAUTHORIZED"
    status = 403


class TransactionFailedError(ZestError):
    code = "TRANSACTION_FAILED"
    status = 500


class PaymentGatewayError(ZestError):
    code = "PAYMENT_GATEWAY_ERROR"
    status = 502
