"""Human-readable summaries of a batch run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from alma_batch.core.types import RunSummary

log = logging.getLogger(__name__)


def format_summary(summary: RunSummary) -> str:
    """Render a run summary as a short multi-line report."""
    lines = [
        "=== Alma batch summary ===",
        f"Total users: {summary.total_records if summary.total_records is not None else 'unknown'}",
        f"Pages processed: {len(summary.pages)}",
        f"Updated: {summary.updated}",
        f"Unchanged: {summary.unchanged}",
        f"Errors: {summary.failed}",
    ]
    if summary.crashed_pages:
        crashed = ", ".join(str(p.index) for p in summary.crashed_pages)
        lines.append(f"Crashed pages: {crashed}")
    return "\n".join(lines)


def log_summary(summary: RunSummary, *, logger: logging.Logger | None = None) -> None:
    """Log the run summary at INFO and every recorded error at ERROR."""
    logger = logger or log
    for page_index, error in summary.errors:
        logger.error("Page %d: %s", page_index, error.describe())
    for line in format_summary(summary).splitlines():
        logger.info(line)
