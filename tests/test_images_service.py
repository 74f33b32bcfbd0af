"""ImageService: creation, upload, re-analysis, errors, listing and search"""

import httpx
import pytest

from imagevault.errors import (
    NotFound,
    SourceFetchError,
    StorageError,
    UnsupportedMediaType,
    UnsupportedOrCorruptImage,
    ValidationError,
)
from imagevault.schemas.image import ImageRecord, ImageStatus, MediaType
from imagevault.services.images import ImageService
from imagevault.services.source import SourceFetcher
from imagevault.services.storage import MemoryStorage
from imagevault.utils import tuid


class BrokenStorage(MemoryStorage):
    """Storage that accepts no writes."""

    async def put(self, key, data, content_type=""):
        raise StorageError(f"store file {key}: disk full")


def write_file(tmp_path, name, data):
    path = tmp_path / name
    path.write_bytes(data)
    return str(path)


def http_service(store, storage, routes):
    """Service whose fetcher serves routes {url: (status, bytes)} from a mock transport."""

    def handler(request: httpx.Request):
        status, body = routes.get(str(request.url), (404, b""))
        return httpx.Response(status, content=body)

    return ImageService(store, storage, fetcher=SourceFetcher(transport=httpx.MockTransport(handler)))


async def test_create_without_source_is_pending(service, store):
    img = await service.create(ImageRecord(title="Empty", tags=["b", " a ", "b"]))

    assert tuid.is_valid(img.id)
    assert img.version_id == img.id
    assert img.created_at == img.updated_at == tuid.id_time(img.id)
    assert img.status == ImageStatus.PENDING
    assert img.file_name == img.id
    assert img.tags == ["a", "b"]
    assert (await store.read(img.id)).title == "Empty"


async def test_create_from_file(service, storage, tmp_path, png_bytes):
    path = write_file(tmp_path, "cat.png", png_bytes)
    img = await service.create(ImageRecord(title="Cat", source_file_name=path))

    assert img.status == ImageStatus.COMPLETE
    assert img.media_type == MediaType.PNG
    assert img.file_name == img.id + ".png"
    assert img.file_size == len(png_bytes)
    assert img.phash
    assert await storage.get(img.file_name) == png_bytes
    assert storage.content_type(img.file_name) == "image/png"
    assert img.problems() == []


async def test_create_from_uri(store, storage, jpeg_bytes):
    service = http_service(store, storage, {"https://example.com/dog.jpg": (200, jpeg_bytes)})
    img = await service.create(ImageRecord(source_uri="https://example.com/dog.jpg"))

    assert img.status == ImageStatus.COMPLETE
    assert img.media_type == MediaType.JPEG
    assert img.source() == "https://example.com/dog.jpg"
    assert await storage.exists(img.id + ".jpeg")


async def test_create_with_failed_fetch_is_error(store, storage):
    service = http_service(store, storage, {})
    with pytest.raises(SourceFetchError) as info:
        await service.create(ImageRecord(title="Gone", source_uri="https://example.com/gone.png"))

    failed = info.value.image
    assert failed.status == ImageStatus.ERROR
    assert (await store.read(failed.id)).status == ImageStatus.ERROR
    assert storage.files == {}


async def test_create_with_unsupported_scheme(service):
    with pytest.raises(SourceFetchError):
        await service.create(ImageRecord(source_uri="ftp://example.com/a.png"))


async def test_error_record_can_be_resubmitted(service, store, tmp_path, png_bytes):
    path = write_file(tmp_path, "broken.png", b"definitely not a png")
    with pytest.raises(UnsupportedOrCorruptImage) as info:
        await service.create(ImageRecord(title="Broken", source_file_name=path))
    image_id = info.value.image.id
    assert (await store.read(image_id)).status == ImageStatus.ERROR

    write_file(tmp_path, "broken.png", png_bytes)
    fixed = await service.update(await service.read(image_id))
    assert fixed.status == ImageStatus.COMPLETE
    assert fixed.media_type == MediaType.PNG
    assert fixed.created_at == info.value.image.created_at


async def test_upload_then_update_completes(service, storage, jpeg_bytes):
    img = await service.create(ImageRecord(title="Upload"))

    uploaded = await service.upload(img.id, jpeg_bytes)
    assert uploaded.status == ImageStatus.UPLOADED
    assert uploaded.media_type == MediaType.JPEG
    assert uploaded.file_name == img.id + ".jpeg"
    assert uploaded.phash == ""
    assert await storage.get(uploaded.file_name) == jpeg_bytes

    done = await service.update(await service.read(img.id))
    assert done.status == ImageStatus.COMPLETE
    assert done.file_size == len(jpeg_bytes)
    assert done.phash
    assert list(storage.files) == [img.id + ".jpeg"]


async def test_upload_replaces_file_of_other_type(service, storage, tmp_path, png_bytes, jpeg_bytes):
    img = await service.create(ImageRecord(source_file_name=write_file(tmp_path, "a.png", png_bytes)))
    await service.upload(img.id, jpeg_bytes)
    assert list(storage.files) == [img.id + ".jpeg"]


async def test_upload_rejects_bad_files(service, make_image):
    img = await service.create(ImageRecord(title="Upload"))
    with pytest.raises(ValidationError):
        await service.upload(img.id, b"")
    with pytest.raises(UnsupportedMediaType):
        await service.upload(img.id, make_image("BMP", seed=1, size=(8, 8)))
    with pytest.raises(UnsupportedOrCorruptImage):
        await service.upload(img.id, b"garbage")
    assert (await service.read(img.id)).status == ImageStatus.PENDING


async def test_upload_unknown_image(service, png_bytes):
    with pytest.raises(NotFound):
        await service.upload(tuid.new_id(), png_bytes)


async def test_update_metadata_keeps_analysis(service, tmp_path, png_bytes):
    img = await service.create(ImageRecord(title="Old", source_file_name=write_file(tmp_path, "a.png", png_bytes)))

    current = await service.read(img.id)
    current.title = "New"
    updated = await service.update(current)

    assert updated.title == "New"
    assert updated.status == ImageStatus.COMPLETE
    assert updated.phash == img.phash
    assert updated.version_id > img.version_id
    assert [v.title for v in await service.read_versions(img.id)] == ["Old", "New"]
    assert (await service.read_version(img.id, img.version_id)).title == "Old"


async def test_zero_file_size_forces_reanalysis(service, storage, tmp_path, png_bytes):
    img = await service.create(ImageRecord(source_file_name=write_file(tmp_path, "a.png", png_bytes)))
    current = await service.read(img.id)
    current.file_size = 0
    current.phash = ""

    again = await service.update(current)
    assert again.status == ImageStatus.COMPLETE
    assert again.phash == img.phash
    assert again.file_size == len(png_bytes)


async def test_update_unknown_image(service):
    now = tuid.new_id()
    with pytest.raises(NotFound):
        await service.update(ImageRecord(id=now, version_id=now))


async def test_write_validates(service):
    with pytest.raises(ValidationError) as info:
        await service.write(ImageRecord(title="No id"))
    assert "ID is missing or invalid" in info.value.problems


async def test_delete(service, store, storage, tmp_path, png_bytes):
    img = await service.create(ImageRecord(source_file_name=write_file(tmp_path, "a.png", png_bytes)))

    deleted = await service.delete(img.id)
    assert deleted.id == img.id
    assert not await service.exists(img.id)
    assert storage.files == {}
    with pytest.raises(NotFound):
        await service.read(img.id)
    with pytest.raises(NotFound):
        await service.delete(img.id)


async def test_delete_version(service):
    img = await service.create(ImageRecord(title="v1"))
    current = await service.read(img.id)
    current.title = "v2"
    v2 = await service.update(current)

    await service.delete_version(img.id, v2.version_id)
    assert (await service.read(img.id)).title == "v1"
    with pytest.raises(NotFound):
        await service.read_version(img.id, v2.version_id)


async def test_listing_and_keys(service, tmp_path, png_bytes):
    a = await service.create(ImageRecord(title="a", tags=["cat"]))
    b = await service.create(ImageRecord(title="b", tags=["cat", "dog"], source_file_name=write_file(tmp_path, "b.png", png_bytes)))
    c = await service.create(ImageRecord(title="c"))

    assert [i.id for i in await service.list_images()] == [a.id, b.id, c.id]
    assert [i.id for i in await service.list_images(reverse=True, limit=2)] == [c.id, b.id]
    assert [i.id for i in await service.list_images(offset=a.id)] == [b.id, c.id]
    assert [i.id for i in await service.list_images(tag="cat")] == [a.id, b.id]
    assert [i.id for i in await service.list_images(status="COMPLETE")] == [b.id]
    assert await service.read_all_tags() == ["cat", "dog"]
    assert await service.read_all_statuses() == ["COMPLETE", "PENDING"]
    assert await service.read_all_image_hashes() == [(b.id, b.phash)]
    assert (a.id, "a") in await service.read_all_image_labels()

    with pytest.raises(ValidationError):
        await service.list_images(status="COMPLETE", tag="cat")
    with pytest.raises(ValidationError):
        await service.list_images(status="DONE")


async def test_find_similar(service, tmp_path, picture, encode):
    original = picture(seed=10)
    a = await service.create(ImageRecord(title="jpeg", source_file_name=write_file(tmp_path, "a.jpg", encode(original, "JPEG", quality=95))))
    b = await service.create(ImageRecord(title="png", source_file_name=write_file(tmp_path, "b.png", encode(original, "PNG"))))
    c = await service.create(ImageRecord(title="other", source_file_name=write_file(tmp_path, "c.png", encode(picture(seed=11), "PNG"))))

    results = await service.find_similar_to_image(a.id, 32, 10)
    assert [r.id for r in results] == [a.id, b.id]
    assert results[0].distance == 0
    assert results[0].label == "jpeg"

    results = await service.find_similar_images(c.phash, 256, 3)
    assert results[0].id == c.id
    assert len(results) == 3


async def test_find_similar_validates(service):
    with pytest.raises(ValidationError):
        await service.find_similar_images("", 10, 10)
    with pytest.raises(ValidationError):
        await service.find_similar_images("1:2:3:4", 10, 101)


async def test_find_similar_to_unanalyzed_image(service):
    img = await service.create(ImageRecord(title="pending"))
    with pytest.raises(NotFound):
        await service.find_similar_to_image(img.id, 10, 10)


async def test_file_blob_falls_back_to_source(service, tmp_path, png_bytes):
    path = write_file(tmp_path, "a.png", png_bytes)
    img = await service.create(ImageRecord(title="pending"))
    img.source_file_name = path
    assert await service.file_blob(img) == png_bytes
    assert await service.file_blob(ImageRecord(id=img.id, file_name=img.id + ".png")) == b""


async def test_failed_store_on_create_is_error_and_unindexed(store, tmp_path, png_bytes):
    service = ImageService(store, BrokenStorage())
    path = write_file(tmp_path, "a.png", png_bytes)
    with pytest.raises(StorageError) as info:
        await service.create(ImageRecord(title="Unstored", source_file_name=path))

    failed = info.value.image
    assert failed.status == ImageStatus.ERROR
    assert (failed.file_size, failed.content_hash, failed.phash) == (0, "", "")
    persisted = await store.read(failed.id)
    assert persisted.status == ImageStatus.ERROR
    assert persisted.phash == ""
    assert await service.read_all_image_hashes() == []
    assert await service.find_similar_images("0:0:0:0", 256, 10) == []


async def test_failed_store_on_update_is_error_and_unindexed(store, tmp_path, png_bytes):
    service = ImageService(store, BrokenStorage())
    img = await service.create(ImageRecord(title="Later"))
    img.source_file_name = write_file(tmp_path, "a.png", png_bytes)

    with pytest.raises(StorageError) as info:
        await service.update(img)
    assert info.value.image.status == ImageStatus.ERROR
    assert (await store.read(img.id)).status == ImageStatus.ERROR
    assert await service.read_all_image_hashes() == []


async def test_status_filter_ignores_case(service, tmp_path, png_bytes):
    img = await service.create(ImageRecord(source_file_name=write_file(tmp_path, "a.png", png_bytes)))
    assert [i.id for i in await service.list_images(status="complete")] == [img.id]


async def test_image_labels(service):
    a = await service.create(ImageRecord(title="Red Barn at Dusk"))
    b = await service.create(ImageRecord(title="blue barn"))
    c = await service.create(ImageRecord(title="Apple orchard"))

    assert await service.read_all_image_labels() == [(a.id, "Red Barn at Dusk"), (b.id, "blue barn"), (c.id, "Apple orchard")]
    assert [k for k, _ in await service.read_all_image_labels(sort_by_value=True)] == [c.id, a.id, b.id]
    assert await service.read_image_labels(limit=2) == [(a.id, "Red Barn at Dusk"), (b.id, "blue barn")]
    assert await service.read_image_labels(reverse=True, limit=1, offset=c.id) == [(b.id, "blue barn")]

    assert await service.filter_image_labels("BARN red") == [(a.id, "Red Barn at Dusk")]
    assert await service.filter_image_labels("barn red", any_match=True) == [(a.id, "Red Barn at Dusk"), (b.id, "blue barn")]
    assert await service.filter_image_labels("orchard dusk", any_match=True) == [(c.id, "Apple orchard"), (a.id, "Red Barn at Dusk")]
    assert await service.filter_image_labels("pear") == []
    with pytest.raises(ValidationError):
        await service.filter_image_labels("   ")
