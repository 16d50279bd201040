"""Exception types raised by the Picvault client layer."""

from __future__ import annotations


class PicvaultError(Exception):
    """Base class for all Picvault errors."""

    pass


class ApiError(PicvaultError):
    """Raise when a request to the image API fails.

    Covers transport errors, non-2xx responses, and bodies that cannot be
    decoded as JSON.  ``status_code`` is ``None`` when no response arrived.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MutationError(PicvaultError):
    """Raise when a delete or update is rejected by the API."""

    pass
