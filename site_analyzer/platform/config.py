from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Site Analyzer"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = False

    # ── Database ────────────────────────────────
    # Only needed when the SQLAlchemy repository is used
    DATABASE_URL: Optional[str] = None

    # ── Logging ─────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    # ── Analysis ────────────────────────────────
    FRESHNESS_WINDOW_HOURS: float = 24
    ANALYSIS_TIMEOUT_SECONDS: float = 30
    BULK_TIMEOUT_SECONDS: float = 60
    MAX_CONCURRENT_ANALYSES: int = 3
    # Kept under half of ANALYSIS_TIMEOUT_SECONDS
    PROBE_TIMEOUT_SECONDS: float = 14

    # ── Crawler ─────────────────────────────────
    CRAWL_TIMEOUT_SECONDS: float = 60
    CRAWL_PAGE_TIMEOUT_SECONDS: float = 30
    CRAWL_USER_AGENT: str = "Mozilla/5.0 (compatible; SiteAnalyzer/1.0)"

    # ── Browser sessions ────────────────────────
    BROWSER_POOL_SIZE: int = 3
    BROWSER_ACQUIRE_TIMEOUT_SECONDS: float = 15
    CHROMEDRIVER_PATH: Optional[str] = None

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
