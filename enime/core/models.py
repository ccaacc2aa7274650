from typing import List, Optional

from databases import Database
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    FASTAPI_HOST: Optional[str] = "0.0.0.0"
    FASTAPI_PORT: Optional[int] = 3000
    LOG_LEVEL: Optional[str] = "DEBUG"
    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_URL: Optional[str] = "username:password@hostname:port"
    DATABASE_PATH: Optional[str] = "data/enime.db"
    DETERMINISTIC_TIME_MODE: Optional[bool] = False

    ANILIST_URL: Optional[str] = "https://graphql.anilist.co"
    ANILIST_PAGE_SIZE: Optional[int] = 50
    SCRAPE_GOGOANIME: Optional[bool] = True
    GOGOANIME_URL: Optional[str] = "https://anitaku.to"
    SCRAPE_ZORO: Optional[bool] = True
    ZORO_URL: Optional[str] = "https://hianime.to"
    SCRAPE_KITSU: Optional[bool] = False
    KITSU_URL: Optional[str] = "https://kitsu.io/api/edge"
    TITLE_MATCH_THRESHOLD: Optional[float] = 0.85

    PROXY_URLS: List[str] = []
    PROXY_ETHOS: Optional[str] = "on_failure"  # "always", "on_failure" or "never"
    PROXY_FAILURE_COOLDOWN: Optional[int] = 300
    HTTP_TIMEOUT: Optional[int] = 30
    RATELIMIT_MAX_RETRIES: Optional[int] = 3
    RATELIMIT_RETRY_BASE_DELAY: Optional[float] = 1.0

    BATCH_SIZE: Optional[int] = 50
    WORKER_TIMEOUT: Optional[int] = 3600
    QUEUE_CONCURRENCY: Optional[int] = 1
    QUEUE_POLL_INTERVAL: Optional[float] = 5.0
    QUEUE_MAX_ATTEMPTS: Optional[int] = 3
    QUEUE_LEASE_TTL: Optional[int] = 7200

    SCHEDULER_ENABLED: Optional[bool] = True
    REFETCH_INTERVAL: Optional[int] = 300  # 5 minutes
    RESYNC_INTERVAL: Optional[int] = 43200  # 12 hours
    RELEASING_CHECK_INTERVAL: Optional[int] = 600  # 10 minutes
    MISSING_EPISODES_CHECK_INTERVAL: Optional[int] = 600  # 10 minutes
    FINISHED_CHECK_INTERVAL: Optional[int] = 86400  # 1 day
    RELATION_REFRESH_INTERVAL: Optional[int] = 43200  # 12 hours
    FULL_SCRAPE_INTERVAL: Optional[int] = 604800  # 1 week
    EPISODE_INFO_REFRESH_ENABLED: Optional[bool] = False
    EPISODE_INFO_REFRESH_INTERVAL: Optional[int] = 3600  # 1 hour

    @field_validator(
        "ANILIST_URL",
        "GOGOANIME_URL",
        "ZORO_URL",
        "KITSU_URL",
    )
    def remove_trailing_slash(cls, v):
        if v and v.endswith("/"):
            return v[:-1]
        return v

    @field_validator("PROXY_URLS")
    def proxy_urls_normalization(cls, v):
        return [url.strip() for url in v if url and url.strip()]

    @field_validator("PROXY_ETHOS")
    def proxy_ethos_normalization(cls, v):
        v = (v or "never").lower()
        if v not in ("always", "on_failure", "never"):
            return "never"
        return v

    @field_validator("BATCH_SIZE")
    def batch_size_ceiling(cls, v):
        # Jobs never carry more than 50 ids
        if v is None or v <= 0:
            return 50
        return min(v, 50)

    @model_validator(mode="after")
    def lease_outlives_worker(self):
        # A lease shorter than the worker timeout hands a running job to a second consumer
        if (
            self.WORKER_TIMEOUT is not None
            and self.QUEUE_LEASE_TTL is not None
            and self.QUEUE_LEASE_TTL <= self.WORKER_TIMEOUT
        ):
            raise ValueError(
                f"QUEUE_LEASE_TTL ({self.QUEUE_LEASE_TTL}) must be greater than WORKER_TIMEOUT ({self.WORKER_TIMEOUT})"
            )
        return self


settings = AppSettings()

database_url = (
    settings.DATABASE_PATH
    if settings.DATABASE_TYPE == "sqlite"
    else settings.DATABASE_URL
)
database = Database(
    f"{'sqlite' if settings.DATABASE_TYPE == 'sqlite' else 'postgresql+asyncpg'}://{'/' if settings.DATABASE_TYPE == 'sqlite' else ''}{database_url}"
)
