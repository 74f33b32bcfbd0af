"""
Perceptual hashing (pHash) for near-duplicate detection.

A PHash is a 256-bit DCT perceptual hash (16x16 low-frequency window) split
into four 64-bit blocks. Its text form is the four blocks base-62 encoded
and joined with ":", e.g. "DDw8mJX4sL7:1S6NzKzmgBw:4UQDA381I4b:6QJ3WYrxSI6".
Distance is the Hamming distance over all 256 bits (0 = identical).
"""

from typing import Iterable, Union

import imagehash
import numpy as np
from PIL import Image

from imagevault.errors import InvalidDigit, MalformedHash
from imagevault.utils import base62

HASH_SIZE = 16
BLOCKS = 4
BLOCK_BITS = 64
HASH_BITS = BLOCKS * BLOCK_BITS
SEPARATOR = ":"


class PHash:
    """A 256-bit perceptual hash held as four unsigned 64-bit blocks."""

    __slots__ = ("blocks",)

    def __init__(self, blocks: Iterable[int]):
        blocks = tuple(blocks)
        if len(blocks) != BLOCKS:
            raise MalformedHash(f"perceptual hash needs {BLOCKS} blocks, got {len(blocks)}")
        for b in blocks:
            if not isinstance(b, int) or b < 0 or b > base62.MAX_VALUE:
                raise MalformedHash(f"perceptual hash block {b!r} is not an unsigned 64-bit integer")
        self.blocks = blocks

    @classmethod
    def parse(cls, text: str) -> "PHash":
        """Parse the text form; anything but four decodable segments is MalformedHash."""
        if not text:
            raise MalformedHash("parse hash: empty value")
        segments = text.split(SEPARATOR)
        if len(segments) != BLOCKS:
            raise MalformedHash(f"parse hash {text}: invalid length {len(segments)}")
        try:
            return cls(base62.decode(s) for s in segments)
        except InvalidDigit as e:
            raise MalformedHash(f"parse hash {text}: {e}") from e

    @classmethod
    def from_image(cls, img: Image.Image) -> "PHash":
        """Compute the DCT perceptual hash of a decoded image."""
        bits = imagehash.phash(img, hash_size=HASH_SIZE).hash.flatten()
        blocks = []
        for i in range(BLOCKS):
            chunk = np.packbits(bits[i * BLOCK_BITS:(i + 1) * BLOCK_BITS])
            blocks.append(int.from_bytes(chunk.tobytes(), "big"))
        return cls(blocks)

    def distance(self, other: Union["PHash", str]) -> int:
        """Hamming distance to another hash, between 0 and 256."""
        if isinstance(other, str):
            other = PHash.parse(other)
        return sum((a ^ b).bit_count() for a, b in zip(self.blocks, other.blocks))

    def __str__(self) -> str:
        return SEPARATOR.join(base62.encode(b) for b in self.blocks)

    def __repr__(self) -> str:
        return f"PHash({str(self)!r})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, PHash):
            return NotImplemented
        return self.blocks == other.blocks

    def __hash__(self) -> int:
        return hash(self.blocks)


def phash_distance(h1: str, h2: str) -> int:
    """Hamming distance between two perceptual hash texts."""
    return PHash.parse(h1).distance(PHash.parse(h2))
