"""Application settings loaded from environment or .env."""
from __future__ import annotations

from functools import lru_cache
from typing import Iterable, List, Optional

from pydantic_settings import BaseSettings


def parse_list(value: str) -> List[str]:
    return [item.strip() for item in (value or "").replace(";", ",").replace("\n", ",").split(",") if item.strip()]


class Settings(BaseSettings):
    # Crawling
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    max_depth: int = 2
    max_pages: int = 80
    crawl_poll_interval: float = 3.0
    crawl_delay: float = 2.0
    # No timeout on collaborator calls unless explicitly configured.
    http_timeout_seconds: Optional[float] = None

    # LLM
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_escalation_model: str = "gpt-4o"
    azure_openai_endpoint: str = ""
    azure_openai_key: str = ""
    azure_openai_api_version: str = "2024-08-01-preview"
    mock_llm: bool = False

    # Google Sheets
    google_application_credentials: str = ""
    sheet_id: str = ""
    sheet_name: str = "Leads"
    sheet_share_with: str = ""
    sheet_folder_id: str = ""

    # Pipeline
    page_concurrency: int = 6
    domain_concurrency: int = 1
    max_prioritized_pages: int = 12
    max_businesses: int = 25
    default_phone_region: str = "US"
    dry_run: bool = False

    # State
    database_url: str = "sqlite:///./leadscout.db"
    state_backend: str = "sql"  # sql|memory

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def get_share_with(self) -> List[str]:
        return parse_list(self.sheet_share_with)

    @property
    def uses_sql_state(self) -> bool:
        return (self.state_backend or "sql").strip().lower() != "memory"

    @property
    def has_llm_credentials(self) -> bool:
        if self.mock_llm:
            return True
        return bool(self.openai_api_key or (self.azure_openai_endpoint and self.azure_openai_key))

    def missing(self, names: Iterable[str]) -> List[str]:
        """Return the env-style names of required settings that are empty."""
        missing = []
        for name in names:
            if name == "openai_api_key":
                if not self.has_llm_credentials:
                    missing.append(name.upper())
                continue
            if not getattr(self, name, None):
                missing.append(name.upper())
        return missing


@lru_cache
def get_settings() -> Settings:
    return Settings()
