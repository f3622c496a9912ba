import asyncio
import logging
from typing import Callable, Optional, Sequence

from providers.interface import IObjectStore
from .types import BatchResult

logger = logging.getLogger("batch_fanout")

# on_progress(processed, total, deleted, failed)
ProgressCallback = Callable[[int, int, int, int], None]


async def delete_many(store: IObjectStore, keys: Sequence[str], concurrency: int = 10,
                      on_progress: Optional[ProgressCallback] = None,
                      batch_delay: float = 0.05, sleep=asyncio.sleep) -> BatchResult:
    """
    Delete keys in fixed-size concurrent batches.
    Each batch is awaited in full before the next one starts.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    result = BatchResult()
    total = len(keys)

    for start in range(0, total, concurrency):
        batch = keys[start:start + concurrency]
        outcomes = await asyncio.gather(*(store.delete_object(k) for k in batch),
                                        return_exceptions=True)

        for key, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                result.errors.append(f"Failed to delete {key}: {outcome}")
            elif outcome:
                result.deleted += 1
            else:
                result.failed += 1
                result.errors.append(f"Failed to delete {key}: API returned false")

        if on_progress:
            on_progress(result.deleted + result.failed, total, result.deleted, result.failed)

        if start + concurrency < total:
            await sleep(batch_delay)

    if result.failed:
        logger.warning(f"Batch delete finished with {result.failed} failure(s) of {total}")
    return result
