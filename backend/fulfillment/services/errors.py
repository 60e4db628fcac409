# Overview: Error taxonomy shared by the order, cash and wallet services.

from __future__ import annotations


class FulfillmentError(Exception):
    """
    Base class for every rejected operation in the operations core.

    Errors are surfaced to callers verbatim; the route layer maps
    status_code onto the HTTP response.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(FulfillmentError):
    """Referenced order, order item, user or agent does not exist."""
    status_code = 404


class IllegalTransitionError(FulfillmentError):
    """Status change not permitted from the current state."""
    status_code = 409


class OrderTerminalError(FulfillmentError):
    """Mutation attempted on a delivered or cancelled order."""
    status_code = 409


class OrderNotEditableError(OrderTerminalError):
    """Item edit attempted on a delivered or cancelled order."""


class InvalidQuantityError(FulfillmentError):
    status_code = 400


class InvalidAmountError(FulfillmentError):
    status_code = 400


class ProviderMismatchError(FulfillmentError):
    """Item belongs to a different provider than the order."""
    status_code = 409


class ItemUnavailableError(FulfillmentError):
    status_code = 409


class InsufficientBalanceError(FulfillmentError):
    status_code = 409


class AlreadyCreditedError(FulfillmentError):
    """Change for this order has already been credited to a wallet."""
    status_code = 409


class IdempotencyConflictError(FulfillmentError):
    """Idempotency key already recorded for a different order."""
    status_code = 409
