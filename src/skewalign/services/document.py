"""
Document-level processing: parallel pages, ordered results.

Pages are independent, so they fan out to a thread pool. Results are
buffered by page index and yielded strictly in the requested order,
which lets a single writer consume them without any locking.
"""

import logging
import os
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from skewalign.services.deskew.types import PageResult
from skewalign.services.page_pipeline import PageProcessor
from skewalign.services.rasterizer import Rasterizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


def resolve_workers(workers: int, page_count: int) -> int:
    """0 means one worker per CPU, never more workers than pages."""
    if workers <= 0:
        workers = os.cpu_count() or 1
    return max(1, min(workers, page_count))


def process_page(
    rasterizer: Rasterizer,
    processor: PageProcessor,
    page_index: int,
    page_timeout: float | None = None,
) -> PageResult:
    """Rasterize and process one page, honoring the skip-existing-text option."""
    if processor.config.skip_pages_with_text and rasterizer.has_text(page_index):
        logger.info(f"Page {page_index + 1}: already has text, skipped")
        return PageResult(page_index=page_index, width=0, height=0, skipped=True)

    image = rasterizer.render(page_index)
    return processor.process(image, page_index, timeout=page_timeout)


def process_document(
    rasterizer: Rasterizer,
    page_indices: Iterable[int] | None,
    processor: PageProcessor,
    workers: int = 0,
    page_timeout: float | None = None,
    progress_callback: ProgressCallback | None = None,
) -> Iterator[PageResult]:
    """Process pages in parallel and yield their results in page order.

    Args:
        rasterizer: Page source
        page_indices: 0-based pages to process (default: all)
        processor: Page pipeline shared by all workers
        workers: Thread count (0 = one per CPU)
        page_timeout: Seconds allowed for each page's angle search
        progress_callback: Called with (done, total, message) per yielded page

    Yields:
        PageResult per page, in the order of ``page_indices``

    Raises:
        RasterizationError: When a page cannot be rendered (raised when
            that page's turn comes)
        RecognitionError: When recognition fails after all retries
    """
    indices = list(range(rasterizer.page_count()) if page_indices is None else page_indices)
    if not indices:
        return

    total = len(indices)
    pool_size = resolve_workers(workers, total)
    logger.info(f"Processing {total} pages with {pool_size} workers")

    pool = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="skewalign-page")
    try:
        futures: dict[Future, int] = {
            pool.submit(process_page, rasterizer, processor, index, page_timeout): position
            for position, index in enumerate(indices)
        }
        finished: dict[int, Future] = {}
        next_position = 0
        for future in as_completed(futures):
            finished[futures[future]] = future
            while next_position in finished:
                result = finished.pop(next_position).result()
                next_position += 1
                if progress_callback:
                    progress_callback(
                        next_position, total, f"Page {result.page_index + 1} done"
                    )
                yield result
    finally:
        pool.shutdown(wait=True, cancel_futures=True)
