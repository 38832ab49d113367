# app/payouts/errors.py
from __future__ import annotations

from typing import Optional


class PayoutError(Exception):
    code = "PAYOUT_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(PayoutError):
    code = "VALIDATION_ERROR"

    def __init__(self, problems: dict[str, str]):
        self.problems = dict(problems)
        detail = ", ".join(f"{k}: {v}" for k, v in sorted(self.problems.items()))
        super().__init__(f"Invalid payout request ({detail})")


class DuplicateReferenceError(PayoutError):
    code = "DUPLICATE_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Payout with reference {reference!r} already exists")


class DuplicateKeyError(PayoutError):
    """providerTransferId / customerTransactionId already belongs to another record."""

    code = "DUPLICATE_KEY"

    def __init__(self, field: str, value: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field}")


class NotFoundError(PayoutError):
    code = "NOT_FOUND"


class InvalidTransitionError(PayoutError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal payout transition: {from_status} -> {to_status}")


class LeaseLostError(PayoutError):
    code = "LEASE_LOST"


class PayoutInFlightError(PayoutError):
    """The record holds a live worker lease and cannot be hidden yet."""

    code = "PAYOUT_IN_FLIGHT"
