"""
Platform error hierarchy.

Services raise these instead of ``HTTPException`` so that the same
code can run behind the API, inside a package import or from a test.
Each error carries the HTTP status it maps to; ``main`` installs an
exception handler that renders them as ``{"detail": message}``.
"""

from typing import Optional


class PlatformError(Exception):
    """Base class for all errors raised by platform services."""

    status_code: int = 500

    def __init__(self, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def with_context(self, prefix: str) -> "PlatformError":
        """Return a copy of this error with ``prefix`` prepended to the message.

        The class and status code are preserved so callers can still
        react to the original error kind.
        """
        message = f"{prefix}\n{self.message}" if self.message else prefix
        return type(self)(message, status_code=self.status_code)

    def __str__(self) -> str:
        return self.message


class BadRequestError(PlatformError):
    status_code = 400


class ForbiddenError(PlatformError):
    status_code = 403


class NotFoundError(PlatformError):
    status_code = 404


class InternalServerError(PlatformError):
    status_code = 500
