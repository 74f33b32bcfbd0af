# Import all models for Tortoise ORM registration
from .image import ImageEntity, ImageTagEntity, ImageVersionEntity

__all__ = [
    "ImageEntity",
    "ImageTagEntity",
    "ImageVersionEntity",
]
