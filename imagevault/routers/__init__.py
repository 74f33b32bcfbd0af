import logging

from fastapi import APIRouter

from .health import router as health_router
from .images import router as images_router


def build_router() -> APIRouter:
    router = APIRouter()
    log = logging.getLogger("routers")
    router.include_router(health_router)
    log.info("Loaded router: health")
    router.include_router(images_router)
    log.info("Loaded router: images")
    return router


router = build_router()
