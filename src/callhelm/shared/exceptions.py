"""
Shared application exceptions.

Routers map these onto HTTP responses in ``callhelm.main``.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for recoverable application errors."""

    default_message = "Application error"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class NotFoundError(AppError):
    default_message = "Resource not found"


class ValidationError(AppError):
    default_message = "Validation failed"


class ConflictError(AppError):
    default_message = "Conflicting update"
