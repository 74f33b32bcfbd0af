"""
Image analysis pipeline.

Turns raw image bytes into fingerprint metadata on an ImageRecord: media
type, file name, size, MD5 content hash, 256-bit perceptual hash and
dimensions. Analysis is pure: nothing is stored and the record status is
left for the caller to decide.
"""

import hashlib
import io
import logging

from PIL import Image, UnidentifiedImageError

from imagevault.errors import UnsupportedMediaType, UnsupportedOrCorruptImage
from imagevault.schemas.image import PIL_FORMATS, ImageRecord, MediaType
from imagevault.services.phash import PHash

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError)


def decode_image(blob: bytes) -> Image.Image:
    """Decode image bytes, inferring the format."""
    try:
        img = Image.open(io.BytesIO(blob))
        img.load()
    except _DECODE_ERRORS as e:
        raise UnsupportedOrCorruptImage(f"decode image: {e}") from e
    return img


def media_type_of(img: Image.Image) -> MediaType:
    mt = PIL_FORMATS.get((img.format or "").upper())
    if mt is None:
        raise UnsupportedMediaType(f"unsupported image format: {img.format}")
    return mt


def sniff_media_type(blob: bytes) -> MediaType:
    """Identify the media type of image bytes without hashing them."""
    return media_type_of(decode_image(blob))


def analyze(record: ImageRecord, blob: bytes) -> ImageRecord:
    """
    Analyze image bytes and return an updated copy of the record.

    Raises:
        UnsupportedOrCorruptImage: the bytes do not decode, or cannot be hashed
        UnsupportedMediaType: the decoded format is not GIF, JPEG, PNG or WebP
    """
    img = decode_image(blob)
    out = record.model_copy(deep=True)
    out.media_type = media_type_of(img)
    out.file_name = out.id + out.media_type.file_ext
    out.file_size = len(blob)
    out.content_hash = hashlib.md5(blob).hexdigest()
    try:
        out.phash = str(PHash.from_image(img))
    except (OSError, ValueError) as e:
        raise UnsupportedOrCorruptImage(f"hash image {record.id}: {e}") from e
    out.width, out.height = img.size
    # a decoded image always has positive bounds
    out.aspect_ratio = out.width / out.height
    logger.debug("Analyzed %s: %s %dx%d %s", out.id, out.media_type.value, out.width, out.height, out.phash)
    return out
