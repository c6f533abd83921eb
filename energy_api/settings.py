import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from energy_api import __version__

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Upstream API
    upstream_base_url: str = Field(
        default="https://api.energidataservice.dk/dataset", alias="UPSTREAM_BASE_URL"
    )
    upstream_timeout: float = Field(default=10.0, alias="UPSTREAM_TIMEOUT")
    upstream_user_agent: str = Field(
        default=f"energy-api/{__version__}", alias="UPSTREAM_USER_AGENT"
    )

    # Retry policy
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")
    retry_jitter: float = Field(default=0.1, alias="RETRY_JITTER")

    # Coalescing
    coalesce_grace_period: float = Field(default=0.1, alias="COALESCE_GRACE_PERIOD")

    # Cache tiers
    local_cache_max_entries: int = Field(default=100, alias="LOCAL_CACHE_MAX_ENTRIES")
    shared_cache_url: str = Field(default="", alias="SHARED_CACHE_URL")
    shared_cache_prefix: str = Field(default="energy:", alias="SHARED_CACHE_PREFIX")
    shared_cache_timeout: float = Field(default=2.0, alias="SHARED_CACHE_TIMEOUT")
    cache_sweep_interval: int = Field(default=60, alias="CACHE_SWEEP_INTERVAL")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # HTTP server
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


def load_settings() -> Settings:
    """Build settings from the process environment (after .env is loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
