from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Strategy ordering
    optimize_for: Literal["cost", "speed"] = "cost"
    strategy_config_path: str = ""  # overrides the scratch-dir default

    # Scraping backends (a backend without credentials is simply not configured)
    native_timeout_ms: int = 30000
    native_user_agent: str = "AdaptiveFetch/1.0"
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    brightdata_api_key: str = ""
    brightdata_zone: str = "web_unlocker1"
    brightdata_base_url: str = "https://api.brightdata.com"

    # Resource cache
    resource_storage: Literal["memory", "filesystem"] = "memory"
    resource_storage_root: str = ""  # filesystem only; empty = temp dir

    # LLM extraction (optional capability)
    llm_provider: str = ""  # anthropic | openai | openai-compatible
    llm_api_key: str = ""
    llm_model: str = ""
    llm_api_base_url: str = ""  # required for openai-compatible

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = ""  # empty = console only

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def extraction_configured(self) -> bool:
        return bool(self.llm_provider.strip() and self.llm_api_key.strip())


settings = Settings()
