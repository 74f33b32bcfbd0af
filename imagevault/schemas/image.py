from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from imagevault.services.phash import PHash
from imagevault.errors import MalformedHash
from imagevault.utils import tuid


class MediaType(str, Enum):
    GIF = "image/gif"
    JPEG = "image/jpeg"
    PNG = "image/png"
    WEBP = "image/webp"

    @property
    def file_ext(self) -> str:
        """File extension, including the leading period."""
        return MEDIA_TYPE_EXTENSIONS[self]


MEDIA_TYPE_EXTENSIONS = {
    MediaType.JPEG: ".jpeg",
    MediaType.WEBP: ".webp",
    MediaType.PNG: ".png",
    MediaType.GIF: ".gif",
}

# Pillow format names
PIL_FORMATS = {
    "GIF": MediaType.GIF,
    "JPEG": MediaType.JPEG,
    "MPO": MediaType.JPEG,
    "PNG": MediaType.PNG,
    "WEBP": MediaType.WEBP,
}


class ImageStatus(str, Enum):
    PENDING = "PENDING"      # created, further processing required
    UPLOADED = "UPLOADED"    # file stored, not yet analyzed
    COMPLETE = "COMPLETE"    # file stored and fully analyzed
    ERROR = "ERROR"          # a processing step failed


class ImageRecord(BaseModel):
    """Metadata about an image file in object storage."""

    id: str = ""
    created_at: Optional[datetime] = None
    version_id: str = ""
    updated_at: Optional[datetime] = None
    title: str = ""
    alt_text: str = ""
    source_uri: str = ""
    source_file_name: str = ""
    media_type: Optional[MediaType] = None
    file_name: str = ""
    file_size: int = 0
    content_hash: str = ""
    phash: str = ""
    width: int = 0
    height: int = 0
    aspect_ratio: float = 0.0
    tags: List[str] = Field(default_factory=list)
    status: ImageStatus = ImageStatus.PENDING

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return sorted({t.strip() for t in v if t and t.strip()})

    @property
    def file_ext(self) -> str:
        return self.media_type.file_ext if self.media_type else ""

    def expected_file_name(self) -> str:
        return self.id + self.file_ext

    def label(self) -> str:
        """A text label, suitable for display."""
        return self.title or self.alt_text or self.source_file_name or self.file_name

    def source(self) -> str:
        return self.source_uri or self.source_file_name

    def problems(self) -> List[str]:
        """Validation problems; an empty list means the record is valid."""
        problems = []
        if not tuid.is_valid(self.id):
            problems.append("ID is missing or invalid")
        if self.created_at is None:
            problems.append("CreatedAt is missing")
        if not tuid.is_valid(self.version_id):
            problems.append("VersionID is missing or invalid")
        if self.updated_at is None:
            problems.append("UpdatedAt is missing")
        if not self.file_name or self.file_name != self.expected_file_name():
            problems.append("FileName is missing or inconsistent with ID and MediaType")
        if self.phash:
            try:
                PHash.parse(self.phash)
            except MalformedHash:
                problems.append("PHash is malformed")
        if self.status == ImageStatus.COMPLETE:
            if self.media_type is None:
                problems.append("MediaType is missing. Expected: " + ", ".join(m.value for m in MediaType))
            if self.file_size <= 0 or not self.content_hash or not self.phash:
                problems.append("COMPLETE Image requires FileSize, ContentHash and PHash")
        return problems

    def __str__(self) -> str:
        return f"Image {self.label()} ({self.id})"


class ImageCreate(BaseModel):
    title: str = ""
    alt_text: str = ""
    source_uri: str = ""
    source_file_name: str = ""
    media_type: Optional[MediaType] = None
    tags: List[str] = Field(default_factory=list)


class ImageUpdate(BaseModel):
    """Partial update; unset fields keep their stored values."""

    title: Optional[str] = None
    alt_text: Optional[str] = None
    source_uri: Optional[str] = None
    source_file_name: Optional[str] = None
    tags: Optional[List[str]] = None
    reanalyze: bool = False


class ImageDistance(BaseModel):
    """Perceptual distance to a similar image, with information about that image."""

    id: str
    label: str = ""
    source: str = ""
    file_name: str = ""
    file_size: int = 0
    content_hash: str = ""
    width: int = 0
    height: int = 0
    phash: str = ""
    distance: int

    @classmethod
    def from_image(cls, img: ImageRecord, distance: int) -> "ImageDistance":
        return cls(
            id=img.id,
            label=img.label(),
            source=img.source(),
            file_name=img.file_name,
            file_size=img.file_size,
            content_hash=img.content_hash,
            width=img.width,
            height=img.height,
            phash=img.phash,
            distance=distance,
        )


class TextValue(BaseModel):
    key: str
    value: str
