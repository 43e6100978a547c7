"""Core data types that flow through the batch pipeline.

This module defines the immutable values passed between the client, the
transformer and the orchestrator: page descriptions, decoded API errors,
transformation outcomes and per-page / per-run results.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
import typing

if typing.TYPE_CHECKING:
    from alma_batch.core.exceptions import AlmaBatchError

# --- Minimal guard helpers ---


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


# --- API values ---


@dataclasses.dataclass(frozen=True, slots=True)
class ErrorDetail:
    """A single structured error decoded from an Alma error body."""

    status_code: int
    error_code: str
    error_message: str
    tracking_id: str


@dataclasses.dataclass(frozen=True, slots=True)
class UserList:
    """Identifiers decoded from one listing response, in server order."""

    ids: tuple[str, ...]
    total: int | None = None


# --- Pagination ---


@dataclasses.dataclass(frozen=True, slots=True)
class Page:
    """One offset/limit slice of the user listing, processed as one unit of work."""

    index: int
    limit: int
    total: int | None = None

    def __post_init__(self) -> None:
        """Validate page bounds."""
        _require(
            condition=isinstance(self.index, int) and self.index >= 0,
            message=f"must be an int >= 0, got {self.index!r}",
            field_name="index",
        )
        _require(
            condition=isinstance(self.limit, int) and self.limit > 0,
            message=f"must be an int > 0, got {self.limit!r}",
            field_name="limit",
        )

    @property
    def offset(self) -> int:
        """Record offset of the first user on this page."""
        return self.index * self.limit


def last_page_index(total: int, limit: int, to_page: int | None = None) -> int:
    """Return the last page index to visit for `total` records.

    The range is inclusive, so with an exact multiple the final page is empty;
    the listing API answers it with no ids.
    """
    _require(condition=limit > 0, message="must be > 0", field_name="limit")
    last = total // limit
    if to_page is not None:
        last = min(to_page, last)
    return last


# --- Transformation outcomes ---


@dataclasses.dataclass(frozen=True, slots=True)
class Unchanged:
    """The transform rules required no edit."""


@dataclasses.dataclass(frozen=True, slots=True)
class Changed:
    """The transform rules produced a new user document."""

    user: dict[str, typing.Any]


TransformOutcome = Unchanged | Changed

UNCHANGED = Unchanged()

# --- Results ---


class RecordOutcome(str, Enum):
    """What happened to a single user record."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclasses.dataclass(frozen=True, slots=True)
class RecordError:
    """An error attributed to one user id, or to the whole page when id is None."""

    user_id: str | None
    error: Exception

    def describe(self) -> str:
        """Human-readable one-line description."""
        target = f"user {self.user_id}" if self.user_id is not None else "page"
        return f"{target}: {type(self.error).__name__}: {self.error}"


@dataclasses.dataclass(frozen=True, slots=True)
class PageResult:
    """Outcome counts and errors for one page."""

    page: Page
    updated: int = 0
    unchanged: int = 0
    errors: tuple[RecordError, ...] = ()
    crashed: bool = False

    @property
    def failed(self) -> int:
        """Number of errors recorded for this page."""
        return len(self.errors)

    @property
    def attempted(self) -> int:
        """Number of user ids whose processing completed or failed."""
        return self.updated + self.unchanged + sum(
            1 for e in self.errors if e.user_id is not None
        )

    @classmethod
    def page_failure(
        cls, page: Page, error: AlmaBatchError, *, crashed: bool = False
    ) -> PageResult:
        """Result for a page that failed as a whole and updated nothing."""
        return cls(page=page, errors=(RecordError(None, error),), crashed=crashed)


@dataclasses.dataclass(frozen=True, slots=True)
class RunSummary:
    """Aggregated results for every page in a run."""

    pages: tuple[PageResult, ...] = ()
    total_records: int | None = None

    @property
    def updated(self) -> int:
        """Users written back across all pages."""
        return sum(p.updated for p in self.pages)

    @property
    def unchanged(self) -> int:
        """Users that needed no update across all pages."""
        return sum(p.unchanged for p in self.pages)

    @property
    def failed(self) -> int:
        """Errors recorded across all pages."""
        return sum(p.failed for p in self.pages)

    @property
    def crashed_pages(self) -> tuple[Page, ...]:
        """Pages whose task terminated abnormally."""
        return tuple(p.page for p in self.pages if p.crashed)

    @property
    def errors(self) -> tuple[tuple[int, RecordError], ...]:
        """Flattened (page index, error) pairs in page order."""
        return tuple(
            (p.page.index, e)
            for p in sorted(self.pages, key=lambda r: r.page.index)
            for e in p.errors
        )
