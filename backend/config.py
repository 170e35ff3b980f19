import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

# Load environment variables if present
load_dotenv()


@dataclass(frozen=True)
class Settings:
    store_backend: str
    database_url: str
    database_name: str
    gemini_api_key: str
    gemini_model: str
    gemini_timeout: float
    max_upload_mb: int
    cors_origins: List[str]
    log_level: str

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "snapgraph"),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-flash-latest"),
        gemini_timeout=float(os.getenv("GEMINI_TIMEOUT", "30")),
        max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "50")),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
