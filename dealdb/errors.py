"""Errors raised while bootstrapping the database.

Every error aborts the remaining steps. ``step`` names the step that failed
and ``stage`` the last stage the run completed before it.
"""
from __future__ import annotations

from pymongo.errors import (
    CollectionInvalid,
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

UNAUTHORIZED = 13
NAMESPACE_EXISTS = 48
USER_ALREADY_EXISTS = 51003
INDEX_OPTIONS_CONFLICT = 85
INDEX_KEY_SPECS_CONFLICT = 86
DUPLICATE_KEY = 11000


class BootstrapError(Exception):
    def __init__(self, message: str, *, step: str | None = None, stage=None):
        super().__init__(message)
        self.step = step
        self.stage = stage


class DuplicateCredentialError(BootstrapError):
    pass


class AuthorizationError(BootstrapError):
    pass


class CollectionExistsError(BootstrapError):
    pass


class IndexConflictError(BootstrapError):
    pass


class UniqueConstraintViolationError(BootstrapError):
    pass


class ConnectionError(BootstrapError):
    """The database server could not be reached."""


def translate(exc: PyMongoError, step: str | None = None) -> BootstrapError | None:
    """Map a driver error onto the bootstrap taxonomy.

    Returns None for errors with no counterpart; callers re-raise those as-is.
    """
    msg = str(exc)
    if isinstance(exc, ConnectionFailure):
        return ConnectionError(msg, step=step)
    if isinstance(exc, DuplicateKeyError):
        return UniqueConstraintViolationError(msg, step=step)
    if isinstance(exc, CollectionInvalid):
        return CollectionExistsError(msg, step=step)
    if isinstance(exc, OperationFailure):
        code = exc.code
        if code == UNAUTHORIZED:
            return AuthorizationError(msg, step=step)
        if code == USER_ALREADY_EXISTS:
            return DuplicateCredentialError(msg, step=step)
        if code == NAMESPACE_EXISTS:
            return CollectionExistsError(msg, step=step)
        if code in (INDEX_OPTIONS_CONFLICT, INDEX_KEY_SPECS_CONFLICT):
            return IndexConflictError(msg, step=step)
        if code == DUPLICATE_KEY:
            return UniqueConstraintViolationError(msg, step=step)
    return None
