"""
Image service: drives Image records through analysis, storage and search.

State machine:
    PENDING  -> created, nothing stored or analyzed yet
    UPLOADED -> raw bytes stored, analysis pending (see upload())
    COMPLETE -> analyzed, and the file is confirmed present in storage
    ERROR    -> a fetch, decode, hash or upload step failed; the record is
                kept so it can be re-submitted through update()
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from imagevault.errors import ImageError, NotFound, StorageError, ValidationError
from imagevault.schemas.image import ImageDistance, ImageRecord, ImageStatus
from imagevault.services import analyzer, similarity
from imagevault.services.hydrator import DEFAULT_BATCH_SIZE, read_image_map
from imagevault.services.metrics import record_analysis
from imagevault.services.source import SourceFetcher
from imagevault.services.store import HASH_INDEX, LABEL_INDEX, STATUS_INDEX, TAG_INDEX
from imagevault.utils import tuid

logger = logging.getLogger(__name__)


class ImageService:
    entity_type = "Image"

    def __init__(
        self,
        store,
        storage,
        fetcher: Optional[SourceFetcher] = None,
        hydrate_batch_size: int = DEFAULT_BATCH_SIZE,
        max_limit: int = similarity.MAX_LIMIT,
    ):
        self.store = store
        self.storage = storage
        self.fetcher = fetcher or SourceFetcher()
        self.hydrate_batch_size = hydrate_batch_size
        self.max_limit = max_limit

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def fetch_source(self, img: ImageRecord) -> bytes:
        """Bytes from the record's source URI, else its source file, else empty."""
        if img.source_uri:
            return await self.fetcher.fetch_uri(img.source_uri)
        if img.source_file_name:
            return await self.fetcher.fetch_file(img.source_file_name)
        return b""

    async def fetch_image_file(self, file_name: str) -> bytes:
        if not file_name:
            raise NotFound("error fetching image: no file name provided")
        return await self.storage.get(file_name)

    async def file_blob(self, img: ImageRecord) -> bytes:
        """Best-effort image bytes: storage, then source URI, then source file."""
        if img.file_name:
            try:
                return await self.storage.get(img.file_name)
            except (NotFound, StorageError) as e:
                logger.debug("No stored file for %s: %s", img.id, e)
        for fetch, source in ((self.fetcher.fetch_uri, img.source_uri), (self.fetcher.fetch_file, img.source_file_name)):
            if not source:
                continue
            try:
                return await fetch(source)
            except ImageError as e:
                logger.debug("Source %s unavailable for %s: %s", source, img.id, e)
        return b""

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _fail(self, img: ImageRecord, err: ImageError) -> None:
        """
        Mark the record ERROR, persist it, and attach it to the error. The
        fingerprint is cleared so an ERROR record never enters the hash index.
        """
        img.status = ImageStatus.ERROR
        img.file_size, img.content_hash, img.phash = 0, "", ""
        err.image = img
        record_analysis("error")
        logger.warning("%s %s failed: %s", self.entity_type, img.id, err)
        try:
            await self.store.write(img)
        except Exception as e:
            logger.error("Could not persist ERROR status for %s %s: %s", self.entity_type, img.id, e)

    async def _process(self, img: ImageRecord, blob: bytes, stored: bool) -> ImageRecord:
        """Analyze bytes, store them if not already stored, and mark COMPLETE."""
        try:
            analyzed = analyzer.analyze(img, blob)
            if not stored:
                await self.storage.put(analyzed.file_name, blob, analyzed.media_type.value)
        except ImageError as e:
            await self._fail(img, e)
            raise
        img = analyzed
        img.status = ImageStatus.COMPLETE
        record_analysis("complete")
        logger.info("Analyzed %s: %s", img, img.phash)
        return img

    @staticmethod
    def _stamp(img: ImageRecord) -> None:
        version = tuid.new_id()
        img.version_id = version
        img.updated_at = tuid.id_time(version)

    def _validate(self, img: ImageRecord, action: str) -> None:
        problems = img.problems()
        if problems:
            raise ValidationError(
                f"error {action} {self.entity_type} {img.id}: invalid field(s): {', '.join(problems)}",
                problems,
            )

    # ------------------------------------------------------------------
    # Image versions
    # ------------------------------------------------------------------

    async def create(self, img: ImageRecord) -> ImageRecord:
        """
        Create an Image. If a source is provided, it is fetched, analyzed and
        stored, and the Image is COMPLETE; otherwise it stays PENDING.
        """
        img = img.model_copy(deep=True)
        img.id = tuid.new_id()
        img.created_at = tuid.id_time(img.id)
        img.version_id = img.id
        img.updated_at = img.created_at
        img.file_name = img.expected_file_name()
        img.status = ImageStatus.PENDING
        img.file_size, img.content_hash, img.phash = 0, "", ""
        self._validate(img, "creating")

        try:
            blob = await self.fetch_source(img)
        except ImageError as e:
            await self._fail(img, e)
            raise
        if blob:
            img = await self._process(img, blob, stored=False)
        await self.store.write(img)
        return img

    async def upload(self, image_id: str, blob: bytes) -> ImageRecord:
        """Store raw bytes for an existing Image; analysis waits for update()."""
        if not blob:
            raise ValidationError(f"error uploading {self.entity_type} {image_id}: empty file", ["file is empty"])
        img = await self.store.read(image_id)
        media_type = analyzer.sniff_media_type(blob)
        self._stamp(img)
        old_file_name = img.file_name
        img.media_type = media_type
        img.file_name = img.expected_file_name()
        img.file_size, img.content_hash, img.phash = 0, "", ""
        try:
            await self.storage.put(img.file_name, blob, media_type.value)
        except StorageError as e:
            await self._fail(img, e)
            raise
        if old_file_name and old_file_name != img.file_name:
            await self.storage.delete(old_file_name)
        img.status = ImageStatus.UPLOADED
        await self.store.write(img)
        logger.info("Uploaded %s (%d bytes)", img, len(blob))
        return img

    async def update(self, img: ImageRecord) -> ImageRecord:
        """
        Update an existing Image. Anything short of COMPLETE (or a zero file
        size) is re-analyzed, from the stored file when it exists, otherwise
        from the source, and the file is stored if it was missing.
        """
        current = await self.store.read(img.id)
        img = img.model_copy(deep=True)
        img.created_at = current.created_at
        self._stamp(img)
        if img.status != ImageStatus.COMPLETE or img.file_size == 0:
            img.file_name = img.expected_file_name()
            img.file_size, img.content_hash, img.phash = 0, "", ""
            if img.status == ImageStatus.COMPLETE:
                img.status = ImageStatus.PENDING
        self._validate(img, "updating")

        if img.status != ImageStatus.COMPLETE:
            stored = bool(img.media_type) and await self.storage.exists(img.file_name)
            try:
                blob = await self.storage.get(img.file_name) if stored else await self.fetch_source(img)
            except NotFound as e:
                err = StorageError(f"stored file {img.file_name} disappeared")
                await self._fail(img, err)
                raise err from e
            except ImageError as e:
                await self._fail(img, e)
                raise
            if blob:
                img = await self._process(img, blob, stored=stored)
                if current.file_name and current.file_name != img.file_name:
                    await self.storage.delete(current.file_name)
        await self.store.write(img)
        return img

    async def write(self, img: ImageRecord) -> ImageRecord:
        """Write an Image as-is, refreshing its index rows."""
        self._validate(img, "writing")
        await self.store.write(img)
        return img

    async def delete(self, image_id: str) -> ImageRecord:
        """Delete an Image and its stored file, returning the deleted Image."""
        img = await self.store.delete(image_id)
        if img.file_name:
            await self.storage.delete(img.file_name)
        return img

    async def delete_version(self, image_id: str, version_id: str) -> ImageRecord:
        """Delete one version of an Image. The stored file is left alone."""
        return await self.store.delete_version(image_id, version_id)

    async def read(self, image_id: str) -> ImageRecord:
        return await self.store.read(image_id)

    async def exists(self, image_id: str) -> bool:
        return await self.store.exists(image_id)

    async def read_versions(self, image_id: str, reverse: bool = False, limit: int = 100, offset: str = "") -> List[ImageRecord]:
        return await self.store.read_versions(image_id, reverse, limit, offset)

    async def read_version(self, image_id: str, version_id: str) -> ImageRecord:
        return await self.store.read_version(image_id, version_id)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def read_image_map(self, ids: Sequence[str]) -> Dict[str, ImageRecord]:
        """Best-effort parallel read of Images, keyed by id."""
        return await read_image_map(self.store.read, ids, self.hydrate_batch_size)

    async def _ordered(self, ids: List[str]) -> List[ImageRecord]:
        images = await self.read_image_map(ids)
        return [images[i] for i in ids if i in images]

    async def list_images(
        self,
        status: Optional[str] = None,
        tag: Optional[str] = None,
        reverse: bool = False,
        limit: int = 100,
        offset: str = "",
    ) -> List[ImageRecord]:
        """Paginated Images, optionally by status or tag. Offset is the last id returned."""
        if status and tag:
            raise ValidationError("list images: filter by status or tag, not both")
        if status:
            status = status.upper()
            if status not in ImageStatus.__members__:
                raise ValidationError(f"list images: unknown status {status}")
            ids = await self.store.read_ids_by(STATUS_INDEX, status, reverse, limit, offset)
        elif tag:
            ids = await self.store.read_ids_by(TAG_INDEX, tag, reverse, limit, offset)
        else:
            ids = await self.store.read_ids(reverse, limit, offset)
        return await self._ordered(ids)

    async def read_all_tags(self) -> List[str]:
        return await self.store.read_keys(TAG_INDEX)

    async def read_all_statuses(self) -> List[str]:
        return await self.store.read_keys(STATUS_INDEX)

    async def read_image_labels(self, reverse: bool = False, limit: int = 100, offset: str = "") -> List[Tuple[str, str]]:
        """Paginated (id, label) pairs in id order. Offset is the last id returned."""
        return await self.store.read_labels(reverse, limit, offset)

    async def read_all_image_labels(self, sort_by_value: bool = False) -> List[Tuple[str, str]]:
        """All (id, label) pairs, sorted by id, or by label when sort_by_value is set."""
        labels = await self.store.read_all(LABEL_INDEX)
        if sort_by_value:
            labels.sort(key=lambda kv: (kv[1], kv[0]))
        return labels

    async def filter_image_labels(self, contains: str, any_match: bool = False) -> List[Tuple[str, str]]:
        """
        Labels matching a search. The search is split into words; a label
        matches if it contains all of them, or any of them when any_match is
        set. Matching ignores case. Results are sorted by label.
        """
        terms = contains.lower().split()
        if not terms:
            raise ValidationError("filter image labels: empty search", ["search is empty"])
        match = any if any_match else all
        labels = [(k, v) for k, v in await self.store.read_all(LABEL_INDEX) if match(t in v.lower() for t in terms)]
        labels.sort(key=lambda kv: (kv[1], kv[0]))
        return labels

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    async def read_all_image_hashes(self) -> List[Tuple[str, str]]:
        """The complete (id, phash) fingerprint index."""
        return await self.store.read_all(HASH_INDEX)

    async def find_similar_images(self, phash: str, max_distance: int, limit: int) -> List[ImageDistance]:
        """Images within max_distance of phash, closest first, at most limit."""
        return await similarity.find_similar(
            self.read_all_image_hashes,
            self.read_image_map,
            phash,
            max_distance,
            limit,
            self.max_limit,
        )

    async def find_similar_to_image(self, image_id: str, max_distance: int, limit: int) -> List[ImageDistance]:
        img = await self.store.read(image_id)
        if not img.phash:
            raise NotFound(f"{self.entity_type} {image_id} has no perceptual hash")
        return await self.find_similar_images(img.phash, max_distance, limit)
