from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here. Tests build their own
    instance and inject it through ``app.dependency_overrides``.
    """

    app_env: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    gemini_api_key: Optional[str] = field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))
    pro_password: Optional[str] = field(default_factory=lambda: os.getenv("PRO_PASSWORD"))
    gemini_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    )
    gemini_pro_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_PRO_MODEL", "gemini-2.5-pro")
    )
    gemini_api_base: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )
    )
    temperature: float = field(
        default_factory=lambda: float(os.getenv("MODEL_TEMPERATURE", "0.7"))
    )
    top_p: float = field(default_factory=lambda: float(os.getenv("MODEL_TOP_P", "0.95")))
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("GEMINI_TIMEOUT", "60"))
    )
    memory_token_budget: int = field(
        default_factory=lambda: int(os.getenv("MEMORY_TOKEN_BUDGET", "1000"))
    )
    memory_selection: str = field(
        default_factory=lambda: os.getenv("MEMORY_SELECTION", "flat")
    )
    memory_recency_bonus: bool = field(
        default_factory=lambda: _env_flag("MEMORY_RECENCY_BONUS", "true")
    )
    enable_topic_ranking: bool = field(
        default_factory=lambda: _env_flag("ENABLE_TOPIC_RANKING")
    )
    enable_canvas_extraction: bool = field(
        default_factory=lambda: _env_flag("ENABLE_CANVAS_EXTRACTION")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def model_for(self, is_pro: bool) -> str:
        return self.gemini_pro_model if is_pro else self.gemini_model


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
