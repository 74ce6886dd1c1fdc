"""
Batch Coordinator -- paginated, failure-isolated batch processing.

Drives a scan over a large document set:

  1. Fetch one page (ordered by a stable key, strictly after the cursor).
  2. Run ``process`` on each document.  An exception is recorded against
     that document and the scan moves on.  ``process`` returns a mutation,
     or ``None`` when the document needs no change.
  3. Commit all of the page's mutations at once.
  4. Advance the cursor to the key of the page's last document.
  5. Stop when a page comes back short or empty.

A failed fetch or commit is a batch-level error: it is recorded and the
scan stops, since the cursor can no longer be trusted.  Mutations of a
failed page are not retried here; the next scheduled run picks them up.

Usage::

    outcome = await run_paginated(
        fetch_page=store.fetch_escalation_page,
        process=plan_increase,
        commit=apply_increases,
        key=lambda wo: wo.id,
        page_size=500,
    )
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M")

DEFAULT_PAGE_SIZE = 500

FetchPage = Callable[[Optional[Any], int], Awaitable[Sequence[T]]]
Process = Callable[[T], Awaitable[Optional[M]]]
Commit = Callable[[list[tuple[T, M]]], Awaitable[None]]


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------

@dataclass
class BatchError:
    """One failure: a document (``key`` set) or a whole page (``key`` None)."""
    key: Optional[Any]
    message: str
    page: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def is_batch_failure(self) -> bool:
        return self.key is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": None if self.key is None else str(self.key),
            "message": self.message,
            "page": self.page,
            "timestamp": self.occurred_at.isoformat(),
        }


@dataclass
class BatchOutcome(Generic[T, M]):
    processed_count: int = 0
    mutated_count: int = 0
    pages: int = 0
    errors: list[BatchError] = field(default_factory=list)
    committed: list[tuple[T, M]] = field(default_factory=list)
    # True when a fetch or commit failure cut the scan short
    aborted: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def run_paginated(
    *,
    fetch_page: FetchPage,
    process: Process,
    commit: Commit,
    key: Callable[[T], Any],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> BatchOutcome:
    """Process every document, committing mutations once per page.

    Args:
        fetch_page: ``(cursor, limit)`` -> up to ``limit`` documents ordered by
            ``key`` with keys strictly greater than ``cursor`` (``None`` on the
            first call).
        process: Per-document planner returning a mutation or ``None``.
        commit: Persists a page's ``(document, mutation)`` pairs atomically.
        key: Stable ordering key used as the cursor.
        page_size: Maximum documents per page.

    Returns:
        A ``BatchOutcome`` with counts, the committed pairs and every error.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    outcome: BatchOutcome = BatchOutcome()
    cursor: Optional[Any] = None

    while True:
        page_number = outcome.pages + 1
        try:
            documents = list(await fetch_page(cursor, page_size))
        except Exception as exc:
            logger.exception("Batch fetch failed on page %d", page_number)
            outcome.errors.append(
                BatchError(key=None, message=f"Fetch failed: {exc}", page=page_number, exception=exc)
            )
            outcome.aborted = True
            break

        if not documents:
            break
        outcome.pages = page_number

        pending: list[tuple[Any, Any]] = []
        for document in documents:
            outcome.processed_count += 1
            try:
                mutation = await process(document)
            except Exception as exc:
                logger.warning("Document %s failed: %s", key(document), exc)
                outcome.errors.append(
                    BatchError(key=key(document), message=str(exc), page=page_number, exception=exc)
                )
                continue
            if mutation is not None:
                pending.append((document, mutation))

        if pending:
            try:
                await commit(pending)
            except Exception as exc:
                logger.exception(
                    "Batch commit failed on page %d (%d mutations)", page_number, len(pending)
                )
                outcome.errors.append(
                    BatchError(key=None, message=f"Commit failed: {exc}", page=page_number, exception=exc)
                )
                outcome.aborted = True
                break
            outcome.mutated_count += len(pending)
            outcome.committed.extend(pending)

        if len(documents) < page_size:
            break
        cursor = key(documents[-1])

    logger.debug(
        "Batch run finished: pages=%d processed=%d mutated=%d errors=%d",
        outcome.pages,
        outcome.processed_count,
        outcome.mutated_count,
        outcome.error_count,
    )
    return outcome


def paginate_sequence(items: Sequence[T]) -> FetchPage:
    """Adapt an in-memory sequence to ``fetch_page``.

    Documents are ``(index, item)`` pairs; use ``key=lambda pair: pair[0]``.
    """
    indexed = list(enumerate(items))

    async def fetch_page(cursor: Optional[int], limit: int) -> list[tuple[int, T]]:
        start = 0 if cursor is None else cursor + 1
        return indexed[start:start + limit]

    return fetch_page
