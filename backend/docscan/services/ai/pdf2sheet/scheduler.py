"""Page fan-out for multi-page extraction.

Pages run in sequential batches; the pages of one batch run concurrently and
all settle before the next batch starts. The batch size is the only cap on
concurrent model calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .contracts import BatchExtractResult, PageExtractionResult

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_PAGE_TIMEOUT_SECONDS = 120.0

PageTask = Callable[[int], Awaitable[PageExtractionResult]]


def plan_batches(total_pages: int, batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[int]]:
    """Partition pages ``1..total_pages`` into consecutive batches.

    >>> plan_batches(12, 5)
    [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10], [11, 12]]
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    pages = list(range(1, max(total_pages, 0) + 1))
    return [pages[i:i + batch_size] for i in range(0, len(pages), batch_size)]


class PageScheduler:
    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        page_timeout_seconds: float = DEFAULT_PAGE_TIMEOUT_SECONDS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.page_timeout_seconds = page_timeout_seconds

    async def run_page(self, page: int, task: PageTask) -> PageExtractionResult:
        """Run one page task; any failure becomes an empty, warned page result."""
        try:
            result = await asyncio.wait_for(task(page), timeout=self.page_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Page %d timed out after %.0fs", page, self.page_timeout_seconds)
            return PageExtractionResult.failed(page, f"timed out after {self.page_timeout_seconds:g}s")
        except Exception as exc:
            logger.warning("Page %d failed: %s", page, exc)
            return PageExtractionResult.failed(page, str(exc) or exc.__class__.__name__)

        if result.page != page:
            result = result.model_copy(update={"page": page})
        return result

    async def run(self, total_pages: int, task: PageTask) -> BatchExtractResult:
        results: list[PageExtractionResult] = []
        for batch in plan_batches(total_pages, self.batch_size):
            logger.info("Extracting pages %d-%d of %d", batch[0], batch[-1], total_pages)
            settled = await asyncio.gather(*(self.run_page(page, task) for page in batch))
            results.extend(settled)

        results.sort(key=lambda r: r.page)
        total_rows = sum(len(r.rows) for r in results)
        logger.info("Batch extraction complete: %d rows from %d pages", total_rows, total_pages)
        return BatchExtractResult(results=results, total_rows=total_rows)
