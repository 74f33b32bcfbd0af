from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

load_dotenv()


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Metadata store
    STORE_DRIVER: str = "tortoise"
    DATABASE_URL: str = "sqlite://./imagevault.db"

    # Object storage
    STORAGE_DRIVER: str = "local"
    STORAGE_DIR: str = "./storage"

    # Source fetch
    SOURCE_FETCH_TIMEOUT: float = 30.0

    # Similarity search
    HYDRATE_BATCH_SIZE: int = 10
    SIMILAR_DEFAULT_DISTANCE: int = 16
    SIMILAR_DEFAULT_LIMIT: int = 20
    SIMILAR_MAX_LIMIT: int = 100

    # Observability
    METRICS_ENABLED: bool = False
    SENTRY_DSN: str = ""

    @field_validator("STORE_DRIVER", "STORAGE_DRIVER", mode="before")
    @classmethod
    def normalize_driver(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("HYDRATE_BATCH_SIZE", "SIMILAR_MAX_LIMIT")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    # Pydantic v2 config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
