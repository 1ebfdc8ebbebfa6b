# app/core/exceptions.py
"""
Domain error taxonomy.

Services raise these; the handlers registered in app.main turn them into
JSON responses so admin screens can show the message as-is
(e.g. "cannot ship: prescription revoked").
"""

from fastapi import status


class PharmacyError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PharmacyError):
    """Malformed input, e.g. a non-positive quantity."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(PharmacyError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(PharmacyError):
    """Requested state change is not allowed from the current state."""

    status_code = status.HTTP_409_CONFLICT


class PrescriptionNotVerified(PharmacyError):
    status_code = status.HTTP_409_CONFLICT


class InsufficientInventory(PharmacyError):
    status_code = status.HTTP_409_CONFLICT


class NoMappingAvailable(PharmacyError):
    status_code = status.HTTP_404_NOT_FOUND


class ConcurrencyConflict(PharmacyError):
    """Lost an optimistic-lock race or could not acquire a named lock in time."""

    status_code = status.HTTP_409_CONFLICT


class ExternalProviderError(PharmacyError):
    """Inventory provider timed out, answered non-2xx, or sent an unusable payload."""

    status_code = status.HTTP_502_BAD_GATEWAY
