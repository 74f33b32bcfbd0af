from tortoise import fields
from tortoise.models import Model


class ImageEntity(Model):
    """Current version of an Image, plus the columns its indexes scan."""

    id = fields.CharField(pk=True, max_length=32)
    version_id = fields.CharField(max_length=32)
    status = fields.CharField(max_length=16, index=True)
    phash = fields.CharField(max_length=64, default="")
    label = fields.CharField(max_length=1024, default="")
    data = fields.JSONField()

    class Meta:
        table = "images"


class ImageVersionEntity(Model):
    id = fields.IntField(pk=True)
    image_id = fields.CharField(max_length=32, index=True)
    version_id = fields.CharField(max_length=32)
    data = fields.JSONField()

    class Meta:
        table = "image_versions"
        unique_together = ("image_id", "version_id")


class ImageTagEntity(Model):
    id = fields.IntField(pk=True)
    image_id = fields.CharField(max_length=32, index=True)
    tag = fields.CharField(max_length=255, index=True)

    class Meta:
        table = "image_tags"
        unique_together = ("image_id", "tag")
