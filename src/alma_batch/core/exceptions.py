"""Exception hierarchy for the Alma batch client.

Every failure the client or the orchestrator can surface derives from
`AlmaBatchError`, so callers can catch one base class per record or page while
still telling transport, decoding and remote-service failures apart.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from alma_batch.core.types import ErrorDetail, Page


class AlmaBatchError(Exception):
    """Base exception for Alma batch processing errors."""


class ConfigurationError(AlmaBatchError):
    """Raised when run configuration is missing or invalid."""


class TransportError(AlmaBatchError):
    """Raised when a request never produced an HTTP response.

    Covers connection failures, timeouts, DNS errors and malformed URLs.
    """


class DecodeError(AlmaBatchError):
    """Raised when a successful response body is malformed or incomplete."""


class ApiProtocolError(AlmaBatchError):
    """Raised when a failed response carries an error body we cannot classify."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        content_type: str | None = None,
        body_excerpt: str = "",
    ) -> None:
        """Initialize with the status and declared content type of the response."""
        self.status_code = status_code
        self.content_type = content_type
        self.body_excerpt = body_excerpt
        super().__init__(message)


class APIError(AlmaBatchError):
    """One or more structured errors reported by the Alma API in one response."""

    def __init__(self, status_code: int, errors: tuple[ErrorDetail, ...]) -> None:
        """Initialize with the shared status code and the decoded error details."""
        self.status_code = status_code
        self.errors = tuple(errors)
        super().__init__(self._format())

    def _format(self) -> str:
        lines = [f"Alma API error (status {self.status_code}):"]
        lines.extend(
            f" Error Code: {e.error_code} Error Message: {e.error_message}"
            f" Tracking Id: {e.tracking_id}"
            for e in self.errors
        )
        return "\n".join(lines)

    @property
    def error_codes(self) -> tuple[str, ...]:
        """Error codes in the order the API reported them."""
        return tuple(e.error_code for e in self.errors)


class JoinFailure(AlmaBatchError):
    """Raised when a page task terminated abnormally instead of returning a result."""

    def __init__(self, page: Page, cause: BaseException) -> None:
        """Initialize with the page whose task crashed and the escaping exception."""
        self.page = page
        self.cause = cause
        super().__init__(
            f"Task for page {page.index} (offset {page.offset}) crashed: "
            f"{type(cause).__name__}: {cause}"
        )
