from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "torbox-index"
    app_env: str = "dev"
    log_level: str = "INFO"

    api_base_url: str = "https://api.torbox.app/v1/api"
    list_page_size: int = 1000
    request_timeout_seconds: float = 12.0
    retry_budget: int = 2
    retry_base_delay_seconds: float = 0.15
    retry_max_delay_seconds: float = 1.0
    retry_on_rate_limit: bool = False

    cache_enabled: bool = True
    cache_ttl_seconds: float = 15.0
    cache_soft_max: int = 2000

    rate_limit_window_seconds: float = 60.0
    rate_limit_per_ip: int = 240
    rate_limit_per_ip_key: int = 240
    rate_limit_max_keys_per_ip: int = 3
    rate_limit_soft_max: int = 10_000
    client_ip_header: str = "cf-connecting-ip"

    filter_mode: Literal["pattern", "terms"] = "pattern"
    filter_timeout_seconds: float = 0.25
    default_limit: int = 2000
    max_limit: int = 10_000

    model_config = SettingsConfigDict(env_file=".env", env_prefix="TBI_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
