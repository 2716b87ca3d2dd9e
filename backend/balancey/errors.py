# Overview: Domain error hierarchy shared by services, routes and the CLI.

"""
Error taxonomy.

Services raise these; nothing in the service layer catches them. The app
factory maps each class to an HTTP status (see ``HTTP_STATUS``).
"""


class BalanceyError(ValueError):
    """Base class for all domain errors."""


class NotFoundError(BalanceyError):
    """Referenced customer, product or order has no backing row."""


class ValidationError(BalanceyError):
    """400-level input problem."""


class SchemaVersionError(ValidationError):
    """Backup file was written by a newer schema than this build supports."""


class InvariantViolation(BalanceyError):
    """
    A mutation would break an inventory invariant.

    Raised when a reservation would exceed on-hand stock or an adjustment
    would leave on-hand or available stock negative.
    """


class LifecycleError(BalanceyError):
    """Invalid order state transition (e.g. cancelling a CLOSED order)."""


class OrderBlockedError(BalanceyError):
    """Order refused by policy (DO_NOT_ADVANCE hard block)."""


HTTP_STATUS = {
    NotFoundError: 404,
    ValidationError: 400,
    InvariantViolation: 409,
    LifecycleError: 409,
    OrderBlockedError: 409,
}
