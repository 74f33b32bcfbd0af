import os
import time

import psutil
from fastapi import APIRouter
from tortoise import connections
from tortoise.exceptions import BaseORMException

from imagevault.config import settings

router = APIRouter(prefix="/ops", tags=["ops"])

# Store startup time for uptime calculation
startup_time = time.time()


@router.get("/db-health")
async def db_health():
    """Database health check; the memory store is always healthy."""
    if settings.STORE_DRIVER != "tortoise":
        return {"db_ok": True, "driver": settings.STORE_DRIVER}
    try:
        await connections.get("default").execute_query("SELECT 1")
        return {"db_ok": True, "driver": settings.STORE_DRIVER}
    except (BaseORMException, KeyError, OSError) as e:
        return {"db_ok": False, "driver": settings.STORE_DRIVER, "error": str(e)}


@router.get("/metrics")
async def get_metrics():
    """Basic process metrics for monitoring"""
    memory_info = psutil.virtual_memory()
    return {
        "status": "healthy",
        "uptime_seconds": round(time.time() - startup_time, 2),
        "memory_usage_percent": memory_info.percent,
        "memory_available_mb": round(memory_info.available / 1024 / 1024, 2),
        "process_id": os.getpid(),
        "timestamp": time.time(),
    }
