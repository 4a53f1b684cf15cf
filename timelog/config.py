"""
Timelog Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from timelog/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str
    LLM_MAX_TOKENS: int = 1024

    # SQLite
    DATABASE_PATH: str = "data/timelog.db"

    # "Today" for the diary and /today
    TIMEZONE: str = "UTC"

    # Direct entry: quiet window before edits are saved
    DEBOUNCE_MS: int = 700

    # Diary: follow-up rounds allowed per user message
    MAX_TOOL_ROUNDS: int = 8

    @field_validator("LLM_MAX_TOKENS", "DEBOUNCE_MS", "MAX_TOOL_ROUNDS", mode="before")
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be a positive integer, got {v!r}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        LLM_MAX_TOKENS=os.getenv("LLM_MAX_TOKENS", "1024"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/timelog.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEBOUNCE_MS=os.getenv("DEBOUNCE_MS", "700"),
        MAX_TOOL_ROUNDS=os.getenv("MAX_TOOL_ROUNDS", "8"),
    )


# Singleton, imported by all other modules as:
#   from timelog.config import settings
settings = _load_settings()
