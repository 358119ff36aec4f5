"""Error hierarchy for the listing pipeline."""

from __future__ import annotations

from typing import Optional


class ListingError(Exception):
    """Base class for all torbox_index errors.

    :param message: Human-readable error description.
    :param source: The provider category involved, if any.
    """

    def __init__(self, message: str = "", *, source: Optional[str] = None) -> None:
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.source is not None:
            return f"{self.source}: {message}"
        return message

    def __repr__(self) -> str:
        args = [repr(super().__str__())]
        if self.source is not None:
            args.append(f"source={self.source!r}")
        return f"{type(self).__name__}({', '.join(args)})"


class BadRequest(ListingError):
    """Raised for missing or malformed request parameters."""


class InvalidFilter(BadRequest):
    """Raised when a filter pattern or its flags are rejected."""


class UpstreamError(ListingError):
    """Raised when the remote API reports failure or retries are exhausted.

    :param status_code: Last HTTP status seen, if the failure came from one.
    """

    def __init__(
        self,
        message: str = "",
        *,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, source=source)


class NotFound(ListingError):
    """Raised for unknown routes and containers."""
