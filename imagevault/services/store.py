"""
Versioned metadata store for Image records.

Two interchangeable backends share one async interface:

    read_all(index_name)            full scan of an index -> [(id, value)]
    read(id) / exists(id)           current version of a record
    write(record)                   new current version, indexes refreshed
    delete(id)                      remove every version, returns the current one
    read_versions / read_version / delete_version
    read_ids / read_labels / read_ids_by(index_name, key) / read_keys(index_name)

Index rows are derived from the current record on every write: the
perceptual hash index (HASH_INDEX), the label index, and the status and tag
secondary indexes. Pagination uses the last id returned as the offset.

Ids and version ids are TUIDs, which sort by time only in byte order. SQL
collations are locale dependent (Postgres en_US puts "a" before "Z"), so the
SQL store selects keys and orders, pages and picks the latest version in
Python rather than with ORDER BY or range filters.
"""

import logging
from typing import Dict, List, Tuple

from tortoise.transactions import in_transaction

from imagevault.errors import NotFound
from imagevault.models.image import ImageEntity, ImageTagEntity, ImageVersionEntity
from imagevault.schemas.image import ImageRecord

logger = logging.getLogger(__name__)

HASH_INDEX = "image_hashes"
LABEL_INDEX = "image_labels"
STATUS_INDEX = "images_status"
TAG_INDEX = "images_tag"


def _page(keys: List[str], reverse: bool, limit: int, offset: str) -> List[str]:
    keys = sorted(keys, reverse=reverse)
    if offset:
        keys = [k for k in keys if (k < offset if reverse else k > offset)]
    if limit > 0:
        keys = keys[:limit]
    return keys


class MemoryImageStore:
    """In-memory store, for tests and ephemeral deployments."""

    def __init__(self):
        self._versions: Dict[str, Dict[str, ImageRecord]] = {}

    def _current(self, image_id: str) -> ImageRecord:
        versions = self._versions.get(image_id)
        if not versions:
            raise NotFound(f"Image {image_id} not found")
        return versions[max(versions)]

    async def read_all(self, index_name: str) -> List[Tuple[str, str]]:
        if index_name not in (HASH_INDEX, LABEL_INDEX):
            raise ValueError(f"unknown index: {index_name}")
        rows = []
        for image_id in sorted(self._versions):
            img = self._current(image_id)
            if index_name == LABEL_INDEX:
                rows.append((image_id, img.label()))
            elif img.phash:
                rows.append((image_id, img.phash))
        return rows

    async def read(self, image_id: str) -> ImageRecord:
        return self._current(image_id).model_copy(deep=True)

    async def exists(self, image_id: str) -> bool:
        return bool(self._versions.get(image_id))

    async def write(self, record: ImageRecord) -> None:
        self._versions.setdefault(record.id, {})[record.version_id] = record.model_copy(deep=True)

    async def delete(self, image_id: str) -> ImageRecord:
        img = self._current(image_id)
        del self._versions[image_id]
        return img

    async def read_versions(self, image_id: str, reverse: bool = False, limit: int = 100, offset: str = "") -> List[ImageRecord]:
        versions = self._versions.get(image_id)
        if not versions:
            raise NotFound(f"Image {image_id} not found")
        return [versions[v].model_copy(deep=True) for v in _page(list(versions), reverse, limit, offset)]

    async def read_version(self, image_id: str, version_id: str) -> ImageRecord:
        img = self._versions.get(image_id, {}).get(version_id)
        if img is None:
            raise NotFound(f"Image {image_id} version {version_id} not found")
        return img.model_copy(deep=True)

    async def delete_version(self, image_id: str, version_id: str) -> ImageRecord:
        versions = self._versions.get(image_id, {})
        img = versions.pop(version_id, None)
        if img is None:
            raise NotFound(f"Image {image_id} version {version_id} not found")
        if not versions:
            self._versions.pop(image_id, None)
        return img

    async def read_ids(self, reverse: bool = False, limit: int = 100, offset: str = "") -> List[str]:
        return _page([k for k, v in self._versions.items() if v], reverse, limit, offset)

    async def read_labels(self, reverse: bool = False, limit: int = 100, offset: str = "") -> List[Tuple[str, str]]:
        ids = await self.read_ids(reverse, limit, offset)
        return [(image_id, self._current(image_id).label()) for image_id in ids]

    async def read_ids_by(self, index_name: str, key: str, reverse: bool = False, limit: int = 100, offset: str = "") -> List[str]:
        if index_name not in (STATUS_INDEX, TAG_INDEX):
            raise ValueError(f"unknown index: {index_name}")
        ids = []
        for image_id, versions in self._versions.items():
            if not versions:
                continue
            img = versions[max(versions)]
            if index_name == STATUS_INDEX and img.status.value == key:
                ids.append(image_id)
            elif index_name == TAG_INDEX and key in img.tags:
                ids.append(image_id)
        return _page(ids, reverse, limit, offset)

    async def read_keys(self, index_name: str) -> List[str]:
        if index_name not in (STATUS_INDEX, TAG_INDEX):
            raise ValueError(f"unknown index: {index_name}")
        keys = set()
        for versions in self._versions.values():
            if not versions:
                continue
            img = versions[max(versions)]
            if index_name == STATUS_INDEX:
                keys.add(img.status.value)
            else:
                keys.update(img.tags)
        return sorted(keys)


def _record(data: dict) -> ImageRecord:
    return ImageRecord.model_validate(data)


class TortoiseImageStore:
    """SQL store backed by Tortoise ORM; call db.init_db() first."""

    async def read_all(self, index_name: str) -> List[Tuple[str, str]]:
        if index_name == HASH_INDEX:
            rows = await ImageEntity.exclude(phash="").values_list("id", "phash")
        elif index_name == LABEL_INDEX:
            rows = await ImageEntity.all().values_list("id", "label")
        else:
            raise ValueError(f"unknown index: {index_name}")
        return sorted((r[0], r[1]) for r in rows)

    async def read(self, image_id: str) -> ImageRecord:
        entity = await ImageEntity.get_or_none(id=image_id)
        if entity is None:
            raise NotFound(f"Image {image_id} not found")
        return _record(entity.data)

    async def exists(self, image_id: str) -> bool:
        return await ImageEntity.filter(id=image_id).exists()

    async def _write_current(self, record: ImageRecord, conn) -> None:
        await ImageEntity.update_or_create(
            defaults={
                "version_id": record.version_id,
                "status": record.status.value,
                "phash": record.phash,
                "label": record.label()[:1024],
                "data": record.model_dump(mode="json"),
            },
            using_db=conn,
            id=record.id,
        )
        await ImageTagEntity.filter(image_id=record.id).using_db(conn).delete()
        if record.tags:
            await ImageTagEntity.bulk_create(
                [ImageTagEntity(image_id=record.id, tag=t) for t in record.tags],
                using_db=conn,
            )

    async def write(self, record: ImageRecord) -> None:
        async with in_transaction() as conn:
            await ImageVersionEntity.update_or_create(
                defaults={"data": record.model_dump(mode="json")},
                using_db=conn,
                image_id=record.id,
                version_id=record.version_id,
            )
            await self._write_current(record, conn)

    async def delete(self, image_id: str) -> ImageRecord:
        async with in_transaction() as conn:
            entity = await ImageEntity.get_or_none(id=image_id, using_db=conn)
            if entity is None:
                raise NotFound(f"Image {image_id} not found")
            await ImageTagEntity.filter(image_id=image_id).using_db(conn).delete()
            await ImageVersionEntity.filter(image_id=image_id).using_db(conn).delete()
            await entity.delete(using_db=conn)
        return _record(entity.data)

    async def read_versions(self, image_id: str, reverse: bool = False, limit: int = 100, offset: str = "") -> List[ImageRecord]:
        version_ids = await ImageVersionEntity.filter(image_id=image_id).values_list("version_id", flat=True)
        if not version_ids:
            raise NotFound(f"Image {image_id} not found")
        page = _page(list(version_ids), reverse, limit, offset)
        rows = await ImageVersionEntity.filter(image_id=image_id, version_id__in=page)
        by_version = {v.version_id: v.data for v in rows}
        return [_record(by_version[v]) for v in page]

    async def read_version(self, image_id: str, version_id: str) -> ImageRecord:
        v = await ImageVersionEntity.get_or_none(image_id=image_id, version_id=version_id)
        if v is None:
            raise NotFound(f"Image {image_id} version {version_id} not found")
        return _record(v.data)

    async def delete_version(self, image_id: str, version_id: str) -> ImageRecord:
        async with in_transaction() as conn:
            v = await ImageVersionEntity.get_or_none(image_id=image_id, version_id=version_id, using_db=conn)
            if v is None:
                raise NotFound(f"Image {image_id} version {version_id} not found")
            await v.delete(using_db=conn)
            remaining = await ImageVersionEntity.filter(image_id=image_id).using_db(conn).values_list("version_id", flat=True)
            if not remaining:
                await ImageTagEntity.filter(image_id=image_id).using_db(conn).delete()
                await ImageEntity.filter(id=image_id).using_db(conn).delete()
            else:
                latest = await ImageVersionEntity.get(image_id=image_id, version_id=max(remaining), using_db=conn)
                await self._write_current(_record(latest.data), conn)
        return _record(v.data)

    async def read_ids(self, reverse: bool = False, limit: int = 100, offset: str = "") -> List[str]:
        ids = await ImageEntity.all().values_list("id", flat=True)
        return _page(list(ids), reverse, limit, offset)

    async def read_labels(self, reverse: bool = False, limit: int = 100, offset: str = "") -> List[Tuple[str, str]]:
        labels = dict(await self.read_all(LABEL_INDEX))
        return [(image_id, labels[image_id]) for image_id in _page(list(labels), reverse, limit, offset)]

    async def read_ids_by(self, index_name: str, key: str, reverse: bool = False, limit: int = 100, offset: str = "") -> List[str]:
        if index_name == STATUS_INDEX:
            ids = await ImageEntity.filter(status=key).values_list("id", flat=True)
        elif index_name == TAG_INDEX:
            ids = await ImageTagEntity.filter(tag=key).values_list("image_id", flat=True)
        else:
            raise ValueError(f"unknown index: {index_name}")
        return _page(list(ids), reverse, limit, offset)

    async def read_keys(self, index_name: str) -> List[str]:
        if index_name == STATUS_INDEX:
            keys = await ImageEntity.all().distinct().values_list("status", flat=True)
        elif index_name == TAG_INDEX:
            keys = await ImageTagEntity.all().distinct().values_list("tag", flat=True)
        else:
            raise ValueError(f"unknown index: {index_name}")
        return sorted(set(keys))


def build_store(driver: str):
    if driver == "memory":
        return MemoryImageStore()
    if driver == "tortoise":
        return TortoiseImageStore()
    raise ValueError(f"unknown STORE_DRIVER: {driver}")
