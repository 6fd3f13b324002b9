"""Concurrency-bounded batch scheduling with chunk barriers.

Keys are split into chunks of max_concurrent. A chunk's jobs run together
on a thread pool, and the next chunk starts only after every job in the
current one has settled. A failing job is logged and left out of the
result map; its siblings and later chunks are unaffected.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")

# (succeeded, total, current_key)
BatchProgressCallback = Callable[[int, int, str], None]


def chunked(keys: Sequence[str], size: int) -> list[list[str]]:
    return [list(keys[i:i + size]) for i in range(0, len(keys), size)]


def run_batch(
    keys: Sequence[str],
    worker: Callable[[str], R],
    max_concurrent: int,
    progress_callback: Optional[BatchProgressCallback] = None,
    on_result: Optional[Callable[[str, R], None]] = None,
    on_error: Optional[Callable[[str, Exception], None]] = None,
    cancellation_check: Optional[Callable[[], bool]] = None,
    label: str = "batch",
) -> dict[str, R]:
    """Run worker(key) for every key, at most max_concurrent at a time.

    Args:
        keys: Job keys, processed in chunk order
        worker: Called once per key from a pool thread
        max_concurrent: Chunk size (and pool size)
        progress_callback: Called once per successful job with the running
            success count; failures are reported through on_error only
        on_result: Called with (key, result) for each successful job
        on_error: Called with (key, exception) for each failed job
        cancellation_check: Polled before each chunk; True stops the batch
        label: Log prefix

    Returns:
        {key: result} for the jobs that succeeded
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

    results: dict[str, R] = {}
    total = len(keys)
    settled = 0
    succeeded = 0

    for chunk_index, chunk in enumerate(chunked(keys, max_concurrent)):
        if cancellation_check is not None and cancellation_check():
            logger.info(
                f"[{label}] Cancelled before chunk {chunk_index + 1} "
                f"({settled}/{total} settled)"
            )
            break

        # Leaving the with-block waits for the whole chunk
        with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix=label) as pool:
            futures = {pool.submit(worker, key): key for key in chunk}
            for future in as_completed(futures):
                key = futures[future]
                settled += 1
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"[{label}] Job {key} failed: {e}")
                    if on_error is not None:
                        on_error(key, e)
                else:
                    results[key] = result
                    succeeded += 1
                    if on_result is not None:
                        on_result(key, result)
                    if progress_callback is not None:
                        progress_callback(succeeded, total, key)

    logger.info(f"[{label}] Batch finished: {len(results)}/{total} succeeded")
    return results
