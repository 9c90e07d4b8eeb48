from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar, Union

from .errors import Ok

T = TypeVar("T")


class Retry(Exception):
    """Raised by an attempt to ask for another try (e.g. a random key collided)."""


@dataclass(frozen=True)
class AttemptsExhausted:
    attempts: int
    last_error: Optional[str] = None


def attempt(fn: Callable[[int], T], max_attempts: int) -> Union[Ok[T], AttemptsExhausted]:
    """
    Call `fn(n)` for n = 1..max_attempts until it returns without raising Retry.

    Any other exception propagates unchanged. The attempt number is passed in
    so callers can log or vary their input.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    last: Optional[str] = None
    for n in range(1, max_attempts + 1):
        try:
            return Ok(fn(n))
        except Retry as exc:
            last = str(exc) or None
    return AttemptsExhausted(attempts=max_attempts, last_error=last)
