"""Exception types raised by the lucky draw backend."""

from __future__ import annotations

from typing import Iterable


class LuckyDrawError(Exception):
    """Base class for all lucky draw errors."""

    status_code = 500


class ValidationError(LuckyDrawError):
    """Request is missing required fields or carries invalid values."""

    status_code = 400

    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        self.fields = list(fields)
        if self.fields:
            message = f"{message}: {', '.join(self.fields)}"
        super().__init__(message)


class NotFoundError(LuckyDrawError):
    status_code = 404


class StoreError(LuckyDrawError):
    """Failure reported by the persistence backend; message is passed through."""

    status_code = 500


class ConflictError(StoreError):
    """Unique constraint violated by an insert."""


class DuplicateOrderCodeError(ConflictError):
    pass


class InvalidTransitionError(StoreError):
    """Order payment status may only leave `pending` once."""
