"""Failure taxonomy for the order core.

User-side failures (:class:`UserActionError`) mean the input must be
corrected; system-side failures (:class:`SystemActionError`) mean the same
action may simply be retried later.
"""
from __future__ import annotations

from typing import Iterable, Optional


class OrderError(Exception):
    __slots__ = ()


class UserActionError(OrderError):
    __slots__ = ()


class SystemActionError(OrderError):
    __slots__ = ()


class ValidationFailure(UserActionError):
    """Empty cart or missing required customer fields."""

    def __init__(self, problems: Iterable[str]):
        self.problems = tuple(problems)
        super().__init__("; ".join(self.problems) or "invalid input")


class AuthorizationFailure(UserActionError):
    def __init__(self, message: str = "no signed-in actor to attribute the order to"):
        super().__init__(message)


class UniqueViolation(OrderError):
    """Insert rejected by the store's uniqueness constraint on a column."""

    def __init__(self, column: str, value: Optional[str] = None):
        self.column = column
        self.value = value
        super().__init__(f"duplicate value for {column}: {value!r}")


class RetryBudgetExhausted(SystemActionError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"could not allocate a unique order code after {attempts} attempts")


class RemoteStoreError(SystemActionError):
    """Any read or write failure of the remote store other than a code collision."""


class NotFound(RemoteStoreError):
    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} not found")
