"""
Error taxonomy.

Every error the service raises on purpose derives from ClassCalError, which
carries an HTTP-like status code and whether it is an operational failure
(store/infrastructure) rather than a problem with the caller's input.
"""

from __future__ import annotations

from typing import Optional


class ClassCalError(Exception):
    def __init__(self, message: str, status_code: int = 500, is_operational: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational


class ValidationError(ClassCalError):
    """Input payload is malformed. ``errors`` lists ``{field, message}`` details."""

    def __init__(self, message: str, errors: Optional[list[dict[str, str]]] = None) -> None:
        super().__init__(message, status_code=400, is_operational=False)
        self.errors = list(errors or [])


class NotFoundError(ClassCalError):
    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found", status_code=404, is_operational=False)
        self.resource = resource


class StoreError(ClassCalError):
    """The storage backend failed (I/O error, unreadable data)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500, is_operational=True)


class ConflictError(ClassCalError):
    """The change would give a class two instances with the same date and start time."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409, is_operational=False)
