"""Concurrent page-by-page batch update of Alma users.

A run moves through ``list first page -> dispatch -> collect``:

1. The first listing call also returns the total user count. Its failure is
   fatal, since no page range can be computed without it.
2. One task is spawned per page in ``[from_page, last_page]``. The first page
   reuses the ids already fetched; every other page lists its own ids.
3. Every task is awaited. A task that crashes is reported as a `JoinFailure`
   for its page rather than aborting the run.

Within a page, users are processed in listing order: fetch, transform, and
replace only when the transform changed something. Errors are recorded against
the user id and processing moves on. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from alma_batch.constants import PAGE_SIZE
from alma_batch.core.exceptions import AlmaBatchError, JoinFailure
from alma_batch.core.types import (
    Changed,
    Page,
    PageResult,
    RecordError,
    RecordOutcome,
    RunSummary,
    last_page_index,
)
from alma_batch.telemetry import TelemetryContext
from alma_batch.transform import transform_user

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from alma_batch.config import RuleConfig
    from alma_batch.telemetry import TelemetryContextProtocol

log = logging.getLogger(__name__)


class UserApi(Protocol):
    """The subset of `AlmaClient` the orchestrator depends on."""

    async def list_user_ids_and_total(
        self, offset: int, limit: int
    ) -> tuple[list[str], int]: ...  # noqa: D102

    async def list_user_ids(self, offset: int, limit: int) -> list[str]: ...  # noqa: D102

    async def get_user(self, user_id: str) -> dict[str, Any]: ...  # noqa: D102

    async def update_user(self, user_id: str, user: dict[str, Any]) -> None: ...  # noqa: D102


class BatchOrchestrator:
    """Runs the fetch/transform/replace pipeline over every page of users."""

    def __init__(
        self,
        client: UserApi,
        rules: RuleConfig,
        *,
        page_size: int = PAGE_SIZE,
        max_concurrency: int | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: API client shared by every page task.
            rules: Immutable transformation rules shared by every page task.
            page_size: Users per listing page.
            max_concurrency: Maximum pages processed at once; ``None`` runs
                every page concurrently, ``1`` processes pages sequentially.
            telemetry: Optional telemetry context.
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.client = client
        self.rules = rules
        self.page_size = page_size
        self.max_concurrency = max_concurrency
        self._telemetry = telemetry or TelemetryContext()

    async def run(self, from_page: int = 0, to_page: int | None = None) -> RunSummary:
        """Process every page from `from_page` up to `to_page` (inclusive).

        Raises:
            AlmaBatchError: If the first listing call fails.
        """
        if from_page < 0:
            raise ValueError(f"from_page must be >= 0, got {from_page}")

        first_ids, total = await self.client.list_user_ids_and_total(
            from_page * self.page_size, self.page_size
        )
        last_page = last_page_index(total, self.page_size, to_page)
        log.info(
            "%d users in total; processing pages %d..%d of %d users each",
            total,
            from_page,
            max(from_page, last_page),
            self.page_size,
        )

        pages = [Page(from_page, self.page_size, total)]
        pages.extend(
            Page(index, self.page_size, total)
            for index in range(from_page + 1, last_page + 1)
        )
        semaphore = (
            asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        )

        tasks: list[asyncio.Task[PageResult]] = []
        for page in pages:
            log.info("Spawning task for page %d", page.index)
            user_ids = first_ids if page.index == from_page else None
            tasks.append(
                asyncio.create_task(
                    self._guarded_page(page, user_ids, semaphore),
                    name=f"alma-page-{page.index}",
                )
            )

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[PageResult] = []
        for page, outcome in zip(pages, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failure = JoinFailure(page, outcome)
                failure.__cause__ = outcome
                log.error("Join error for page %d: %s", page.index, failure)
                results.append(PageResult.page_failure(page, failure, crashed=True))
                continue
            log.info(
                "Page %d: %d users updated. %d errors.",
                page.index,
                outcome.updated,
                outcome.failed,
            )
            results.append(outcome)

        return RunSummary(pages=tuple(results), total_records=total)

    async def _guarded_page(
        self,
        page: Page,
        user_ids: list[str] | None,
        semaphore: asyncio.Semaphore | None,
    ) -> PageResult:
        if semaphore is None:
            return await self.process_page(page, user_ids)
        async with semaphore:
            return await self.process_page(page, user_ids)

    async def process_page(
        self, page: Page, user_ids: Iterable[str] | None = None
    ) -> PageResult:
        """Process one page, listing its ids first unless they are given.

        A failed listing is recorded as a single page error with no updates.
        """
        with self._telemetry("batch.page", page=page.index):
            if user_ids is None:
                try:
                    user_ids = await self.client.list_user_ids(page.offset, page.limit)
                except AlmaBatchError as e:
                    log.error(
                        "Failed to get user ids for page %d (offset %d): %s",
                        page.index,
                        page.offset,
                        e,
                    )
                    return PageResult.page_failure(page, e)
            log.info("Starting page %d", page.index)
            result = await self.process_users(user_ids, page=page)
            self._telemetry.count("users.updated", result.updated)
            self._telemetry.count("users.unchanged", result.unchanged)
            self._telemetry.count("users.failed", result.failed)
            return result

    async def process_users(
        self,
        user_ids: Iterable[str],
        *,
        page: Page | None = None,
        verbose: bool = False,
    ) -> PageResult:
        """Process users in order, recording each failure against its id.

        With `verbose`, every processed user is also logged at INFO.
        """
        page = page or Page(0, self.page_size)
        updated = 0
        unchanged = 0
        errors: list[RecordError] = []
        for user_id in user_ids:
            try:
                outcome = await self.process_user(user_id)
            except Exception as e:  # noqa: BLE001 - attributed to the user, run continues
                log.error("user %s: %s", user_id, e)
                errors.append(RecordError(user_id, e))
                continue
            if outcome is RecordOutcome.UPDATED:
                updated += 1
                if verbose:
                    log.info("user %s updated.", user_id)
            else:
                unchanged += 1
                if verbose:
                    log.info("user %s did not need updating.", user_id)
        return PageResult(
            page=page, updated=updated, unchanged=unchanged, errors=tuple(errors)
        )

    async def process_user(self, user_id: str) -> RecordOutcome:
        """Fetch, transform and, when changed, replace one user."""
        user = await self.client.get_user(user_id)
        outcome = transform_user(user, self.rules, user_id)
        if not isinstance(outcome, Changed):
            log.debug("user %s did not need updating", user_id)
            return RecordOutcome.UNCHANGED
        await self.client.update_user(user_id, outcome.user)
        log.debug("user %s updated", user_id)
        return RecordOutcome.UPDATED
