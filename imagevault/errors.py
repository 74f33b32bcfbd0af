"""
Error taxonomy for ImageVault.

Per-candidate problems during a similarity scan (MalformedHash, NotFound) are
recovered by the scan itself. Pipeline failures (ImageError subclasses) abort
the analysis and carry the ERROR-marked record in ``image`` when they are
raised by the image service. Cancellation is plain asyncio.CancelledError.
"""

from typing import List, Optional


class InvalidDigit(ValueError):
    """A base-62 text contains a character outside the alphabet."""


class MalformedHash(ValueError):
    """A perceptual hash text is not four base-62 encoded 64-bit blocks."""


class ValidationError(ValueError):
    """Invalid request parameters or record fields."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class NotFound(LookupError):
    """A record, record version or stored object does not exist."""


class ImageError(Exception):
    """A step of the image pipeline failed."""

    def __init__(self, message: str, image=None):
        super().__init__(message)
        self.image = image


class UnsupportedOrCorruptImage(ImageError):
    pass


class UnsupportedMediaType(ImageError):
    pass


class SourceFetchError(ImageError):
    pass


class StorageError(ImageError):
    pass
