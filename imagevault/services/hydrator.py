"""
Bounded-concurrency hydration of image ids into full records.

Ids are read in chunks of ``batch_size``: one task per id within a chunk,
and the next chunk starts only when the previous one has finished, so no
more than ``batch_size`` reads are ever in flight against the store.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from imagevault.schemas.image import ImageRecord
from imagevault.services.metrics import record_hydration_miss

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

ReadOne = Callable[[str], Awaitable[ImageRecord]]


def batch(ids: Sequence[str], size: int) -> List[List[str]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(ids[i:i + size]) for i in range(0, len(ids), size)]


async def _read(read_one: ReadOne, image_id: str) -> Tuple[str, Optional[ImageRecord]]:
    try:
        return image_id, await read_one(image_id)
    except Exception as e:
        # best effort: a missing or unreadable record is left out of the map
        logger.debug("Hydration of %s failed: %s", image_id, e)
        record_hydration_miss()
        return image_id, None


async def read_image_map(read_one: ReadOne, ids: Sequence[str], batch_size: int = DEFAULT_BATCH_SIZE) -> Dict[str, ImageRecord]:
    """
    Read records for ids concurrently, batch_size at a time.

    Ids that fail to read are absent from the result. Cancellation is not
    caught: it cancels the in-flight reads and propagates to the caller.
    """
    images: Dict[str, ImageRecord] = {}
    for chunk in batch(ids, batch_size):
        results = await asyncio.gather(*(_read(read_one, image_id) for image_id in chunk))
        for image_id, img in results:
            if img is not None:
                images[image_id] = img
    return images
