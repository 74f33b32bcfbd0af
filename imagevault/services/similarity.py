"""
Near-duplicate search over the perceptual hash index.

This is an exhaustive linear scan: every (id, phash) pair in the index is
compared against the query. Results are ordered by distance, then by id,
so repeated searches over the same index state return the same list.
"""

import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Sequence, Tuple

from imagevault.errors import MalformedHash, ValidationError
from imagevault.schemas.image import ImageDistance, ImageRecord
from imagevault.services.metrics import record_malformed_hash, record_search
from imagevault.services.phash import HASH_BITS, PHash

logger = logging.getLogger(__name__)

MAX_LIMIT = 100

Hydrate = Callable[[Sequence[str]], Awaitable[Dict[str, ImageRecord]]]


def validate_search(phash: str, max_distance: int, limit: int, max_limit: int = MAX_LIMIT) -> PHash:
    """Check search parameters and return the parsed query hash."""
    if not phash:
        raise ValidationError("find similar images: empty perceptual hash")
    if max_distance < 0 or max_distance > HASH_BITS:
        raise ValidationError(
            f"find similar images: maxDistance {max_distance} must be between 0 and {HASH_BITS} (inclusive)"
        )
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"find similar images: limit {limit} must be between 1 and {max_limit} (inclusive)")
    return PHash.parse(phash)


def rank(query: PHash, entries: Iterable[Tuple[str, str]], max_distance: int, limit: int) -> List[Tuple[str, str, int]]:
    """
    Distances from query to each (id, phash) entry, as (id, phash, distance).

    Entries whose hash does not parse are skipped; entries farther than
    max_distance are dropped. Sorted by distance then id, truncated to limit.
    """
    ranked = []
    for image_id, text in entries:
        try:
            d = query.distance(text)
        except MalformedHash as e:
            logger.warning("Skipping Image %s in similarity scan: %s", image_id, e)
            record_malformed_hash()
            continue
        if d <= max_distance:
            ranked.append((image_id, text, d))
    ranked.sort(key=lambda t: (t[2], t[0]))
    return ranked[:limit]


async def find_similar(
    read_all: Callable[[], Awaitable[List[Tuple[str, str]]]],
    hydrate: Hydrate,
    phash: str,
    max_distance: int,
    limit: int,
    max_limit: int = MAX_LIMIT,
) -> List[ImageDistance]:
    """
    Find images whose perceptual hash is within max_distance of phash.

    Args:
        read_all: reads the complete (id, phash) fingerprint index
        hydrate: reads full records for a list of ids (missing ids absent)
        phash: query hash text
        max_distance: maximum Hamming distance, 0-256
        limit: maximum number of results, 1-max_limit

    Returns:
        ImageDistance list, closest first, ties broken by ascending id.
        Ids that do not hydrate are omitted.
    """
    query = validate_search(phash, max_distance, limit, max_limit)
    record_search()
    entries = await read_all()
    ranked = rank(query, entries, max_distance, limit)
    if not ranked:
        return []
    images = await hydrate([image_id for image_id, _, _ in ranked])
    results = []
    for image_id, _, d in ranked:
        img = images.get(image_id)
        if img is None:
            logger.info("Similar Image %s is in the hash index but could not be read", image_id)
            continue
        results.append(ImageDistance.from_image(img, d))
    return results
