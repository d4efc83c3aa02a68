"""Business-rule failures raised by the settlement services.

Every error aborts the surrounding transaction. The HTTP layer maps each
class to a status code through ``status_code``.
"""

from __future__ import annotations


class SettlementError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """Missing or malformed input: empty basket, no payments, bad quantity or price."""


class NotFound(SettlementError):
    status_code = 404


class Conflict(SettlementError):
    """A ticket unit is not in the state the transition requires."""

    status_code = 409

    def __init__(self, message: str, unit_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.unit_ids = unit_ids or []


class AmountMismatch(SettlementError):
    pass


class InvalidPaymentCombination(SettlementError):
    pass


class InvalidInput(SettlementError):
    """Enum or reference violation at the storage boundary."""
