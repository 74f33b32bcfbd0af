import asyncio
import logging
from typing import Optional

from tortoise import Tortoise

from imagevault.config import settings

_logger = logging.getLogger("db")

MODELS = [
    "imagevault.models.image",
]


def _tortoise_url(url: Optional[str] = None) -> str:
    """Normalize the database URL for Tortoise ORM."""
    url = (url or settings.DATABASE_URL).strip().strip('"').strip("'")
    # Normalize to tortoise "postgres://" style
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgres://", 1)
    if not (url.startswith("postgres://") or url.startswith("sqlite://")):
        raise ValueError("Unsupported DATABASE_URL. Use postgres://... or sqlite://...")
    return url


def build_tortoise_config(url: Optional[str] = None) -> dict:
    return {
        "connections": {"default": _tortoise_url(url)},
        "apps": {
            "models": {
                "models": MODELS,
                "default_connection": "default",
            }
        },
        "use_tz": True,
        "timezone": "UTC",
    }


async def init_db(url: Optional[str] = None, max_retries: int = 3, delay_seconds: float = 0.5) -> None:
    """Initialize the database with retries in the current event loop."""
    config = build_tortoise_config(url)
    for attempt in range(1, max_retries + 1):
        try:
            await Tortoise.init(config=config)
            await Tortoise.generate_schemas(safe=True)
            _logger.info("Database initialized successfully")
            return
        except Exception as exc:
            if attempt == max_retries:
                _logger.error("Database unavailable after %s attempts. Error: %s", attempt, exc)
                raise
            _logger.info(
                "DB init failed (attempt %s/%s): %s; retrying in %.1fs",
                attempt,
                max_retries,
                exc,
                delay_seconds,
            )
            await asyncio.sleep(delay_seconds)


async def close_db() -> None:
    """Close database connections in the current event loop."""
    await Tortoise.close_connections()
