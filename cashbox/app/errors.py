from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from psycopg import errors as pg_errors
import psycopg

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    NOT_FOUND_OR_PROCESSED = "not_found_or_processed"
    INTERNAL = "internal"


# One place maps outcome kinds to transport codes.
HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND_OR_PROCESSED: 400,
    ErrorKind.INTERNAL: 500,
}

INTERNAL_MESSAGE = "Internal server error"


@dataclass(frozen=True)
class LedgerError:
    kind: ErrorKind
    message: str

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


def validation_error(message: str) -> LedgerError:
    return LedgerError(ErrorKind.VALIDATION, message)


def internal_error() -> LedgerError:
    return LedgerError(ErrorKind.INTERNAL, INTERNAL_MESSAGE)


def translate_store_error(exc: Exception, *, conflict_message: str = "conflict") -> LedgerError:
    """
    Map a driver exception to a domain outcome by exception class.

    Constraint and cast failures become caller-facing messages; anything else
    is reported as a generic internal failure.
    """
    if isinstance(exc, pg_errors.UniqueViolation):
        return LedgerError(ErrorKind.CONFLICT, conflict_message)
    if isinstance(exc, pg_errors.StringDataRightTruncation):
        return validation_error("A field exceeds its maximum length")
    if isinstance(exc, pg_errors.InvalidTextRepresentation):
        # e.g. invalid enum cast on payment_type / payment_status
        return validation_error("Invalid payment type or status value provided")
    if isinstance(exc, pg_errors.NumericValueOutOfRange):
        return validation_error("Amount is out of range")
    if isinstance(exc, pg_errors.CheckViolation):
        return validation_error("Value violates a receipt constraint")
    if isinstance(exc, pg_errors.InvalidDatetimeFormat):
        return validation_error("Invalid date format")
    if isinstance(exc, psycopg.DataError):
        return validation_error("Invalid value provided")
    return internal_error()
