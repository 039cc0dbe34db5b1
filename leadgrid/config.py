from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "postgresql://postgres@localhost:5432/leadgrid"
    REDIS_URL: str = "redis://localhost:6379/0"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # QUEUE SETTINGS
    # =================================================================
    QUEUE_PREFIX: str = "leadgrid"
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = 1800  # a grid crawl point can take minutes
    QUEUE_POLL_TIMEOUT_SECONDS: int = 5
    MAX_JOB_ATTEMPTS: int = 3

    CRAWL_CONCURRENCY: int = 1
    RATING_CONCURRENCY: int = 2
    RATING_RATE_PER_SECOND: float = 10.0
    ENRICH_CONCURRENCY: int = 2
    ENRICH_RATE_PER_SECOND: float = 30.0
    CRM_CONCURRENCY: int = 2
    CRM_RATE_PER_SECOND: float = 20.0

    # =================================================================
    # CRAWL SETTINGS
    # =================================================================
    CRAWL_INTER_POINT_DELAY_SECONDS: float = 2.0
    CRAWL_DEFAULT_STEP: float = 0.01
    CRAWL_DEFAULT_LIMIT: int = 99
    CRAWL_SOURCE: str = "google_maps"

    # External collaborators
    EXTRACTOR_URL: str | None = None
    EXTRACTOR_TIMEOUT_SECONDS: float = 300.0

    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    SCORING_TIMEOUT_SECONDS: float = 120.0
    SCORING_RULES_PATH: str | None = None

    ENRICHMENT_API_URL: str | None = None
    ENRICHMENT_API_KEY: str | None = None
    CRM_API_URL: str | None = None
    CRM_API_KEY: str | None = None
    EXTERNAL_HTTP_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 5,
                    "timeout": 15.0,
                }
            )

        return config

    def queue_options(self, name: str) -> dict:
        """Concurrency and rate limit for a named consumer queue."""
        options = {
            "crawl": {"concurrency": self.CRAWL_CONCURRENCY, "rate_per_second": None},
            "rating": {
                "concurrency": self.RATING_CONCURRENCY,
                "rate_per_second": self.RATING_RATE_PER_SECOND,
            },
            "enrich": {
                "concurrency": self.ENRICH_CONCURRENCY,
                "rate_per_second": self.ENRICH_RATE_PER_SECOND,
            },
            "crm": {
                "concurrency": self.CRM_CONCURRENCY,
                "rate_per_second": self.CRM_RATE_PER_SECOND,
            },
        }
        if name not in options:
            raise ValueError(f"Unknown queue '{name}'")
        return options[name]


settings = Settings()
