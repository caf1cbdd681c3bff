"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "openai"  # openai | anthropic | zhipu | moonshot | deepseek | custom
    llm_api_key: str = ""
    llm_api_url: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 30.0
    llm_temperature: float = 0.3
    llm_max_tokens: int = 2000

    # ── Query bounds ─────────────────────────────────────
    default_limit: int = 100
    max_limit: int = 10_000
    sql_dialect: str = "generic"  # generic | sqlite | postgres | mysql

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key and self.llm_provider)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
