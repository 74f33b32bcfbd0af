# imagevault/routers/images.py

from typing import List

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile

from imagevault.config import settings
from imagevault.errors import NotFound
from imagevault.schemas.image import (
    ImageCreate,
    ImageDistance,
    ImageRecord,
    ImageUpdate,
    TextValue,
)
from imagevault.services.images import ImageService

router = APIRouter(prefix="/images", tags=["images"])


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service


@router.post("", response_model=ImageRecord, status_code=201)
async def create_image(body: ImageCreate, service: ImageService = Depends(get_image_service)):
    """Create an Image; a source URI or file is fetched and analyzed right away."""
    return await service.create(ImageRecord(**body.model_dump()))


@router.get("", response_model=List[ImageRecord])
async def list_images(
    status: str | None = None,
    tag: str | None = None,
    reverse: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    offset: str = "",
    service: ImageService = Depends(get_image_service),
):
    """List Images, paging with reverse, limit and offset. Optionally filter by status or tag."""
    return await service.list_images(status=status, tag=tag, reverse=reverse, limit=limit, offset=offset)


@router.get("/tags", response_model=List[str])
async def read_image_tags(service: ImageService = Depends(get_image_service)):
    return await service.read_all_tags()


@router.get("/statuses", response_model=List[str])
async def read_image_statuses(service: ImageService = Depends(get_image_service)):
    return await service.read_all_statuses()


@router.get("/labels", response_model=List[TextValue])
async def read_image_labels(
    search: str = "",
    any_match: bool = Query(False, alias="any"),
    sort_by_value: bool = Query(False, alias="sorted"),
    reverse: bool = False,
    limit: int | None = Query(None, ge=1, le=1000),
    offset: str = "",
    service: ImageService = Depends(get_image_service),
):
    """
    Image IDs with their labels.

    With search, only labels containing all of its words (any=true: any of
    them) are returned, sorted by label. Without a limit, or with sorted=true,
    the complete list is returned; otherwise a page in ID order.
    """
    if search:
        labels = await service.filter_image_labels(search, any_match=any_match)
    elif sort_by_value or limit is None:
        labels = await service.read_all_image_labels(sort_by_value=sort_by_value)
    else:
        labels = await service.read_image_labels(reverse=reverse, limit=limit, offset=offset)
    return [TextValue(key=k, value=v) for k, v in labels]


@router.get("/hashes", response_model=List[TextValue])
async def read_image_hashes(service: ImageService = Depends(get_image_service)):
    """The complete perceptual hash index: Image IDs and their pHash values."""
    return [TextValue(key=k, value=v) for k, v in await service.read_all_image_hashes()]


@router.get("/similar", response_model=List[ImageDistance])
async def find_similar_images(
    phash: str = "",
    max_distance: int = settings.SIMILAR_DEFAULT_DISTANCE,
    limit: int = settings.SIMILAR_DEFAULT_LIMIT,
    service: ImageService = Depends(get_image_service),
):
    """Images whose perceptual hash is within max_distance (0-256) of phash."""
    return await service.find_similar_images(phash, max_distance, limit)


@router.get("/{image_id}", response_model=ImageRecord)
async def read_image(image_id: str, service: ImageService = Depends(get_image_service)):
    return await service.read(image_id)


@router.head("/{image_id}")
async def exists_image(image_id: str, service: ImageService = Depends(get_image_service)):
    if not await service.exists(image_id):
        raise NotFound(f"Image {image_id} not found")
    return Response(status_code=200)


@router.put("/{image_id}", response_model=ImageRecord)
async def update_image(image_id: str, body: ImageUpdate, service: ImageService = Depends(get_image_service)):
    """Update Image metadata; reanalyze=true forces the file to be analyzed again."""
    current = await service.read(image_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"reanalyze"})
    img = ImageRecord.model_validate({**current.model_dump(), **changes})
    if body.reanalyze:
        img.file_size = 0
    return await service.update(img)


@router.put("/{image_id}/file", response_model=ImageRecord)
async def upload_image_file(
    image_id: str,
    file: UploadFile = File(...),
    service: ImageService = Depends(get_image_service),
):
    """Store the image file for an Image. It is analyzed by the next update."""
    content = await file.read()
    return await service.upload(image_id, content)


@router.get("/{image_id}/file")
async def download_image_file(image_id: str, service: ImageService = Depends(get_image_service)):
    """The stored image file, served with its media type."""
    img = await service.read(image_id)
    if img.media_type is None:
        raise NotFound(f"{img} has no stored file")
    content = await service.fetch_image_file(img.file_name)
    return Response(content=content, media_type=img.media_type.value)


@router.get("/{image_id}/versions", response_model=List[ImageRecord])
async def read_image_versions(
    image_id: str,
    reverse: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    offset: str = "",
    service: ImageService = Depends(get_image_service),
):
    return await service.read_versions(image_id, reverse=reverse, limit=limit, offset=offset)


@router.get("/{image_id}/versions/{version_id}", response_model=ImageRecord)
async def read_image_version(image_id: str, version_id: str, service: ImageService = Depends(get_image_service)):
    return await service.read_version(image_id, version_id)


@router.get("/{image_id}/similar", response_model=List[ImageDistance])
async def read_similar_images(
    image_id: str,
    max_distance: int = settings.SIMILAR_DEFAULT_DISTANCE,
    limit: int = settings.SIMILAR_DEFAULT_LIMIT,
    service: ImageService = Depends(get_image_service),
):
    """Images similar to the specified Image, closest first."""
    return await service.find_similar_to_image(image_id, max_distance, limit)


@router.delete("/{image_id}", response_model=ImageRecord)
async def delete_image(image_id: str, service: ImageService = Depends(get_image_service)):
    """Delete an Image and its stored file; the deleted Image is returned."""
    return await service.delete(image_id)


@router.delete("/{image_id}/versions/{version_id}", response_model=ImageRecord)
async def delete_image_version(image_id: str, version_id: str, service: ImageService = Depends(get_image_service)):
    return await service.delete_version(image_id, version_id)
