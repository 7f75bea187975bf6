# kb_assistant/core/config.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Configuration
------------------------------------
Central configuration for the assistant server, including:

- app metadata
- API host/port
- filesystem paths (prompts, saved chats)
- the streaming language-model backend (OpenAI-compatible),
- the article similarity-search backend,
- the rewrite (style transfer) backend,
- basic limits (user text size, chat title length).

"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

# This file is: kb_assistant/core/config.py
PACKAGE_DIR: Path = Path(__file__).resolve().parents[1]   # .../kb_assistant
ROOT_DIR: Path = PACKAGE_DIR.parent                        # project root

PROMPTS_DIR: Path = PACKAGE_DIR / "prompts"
DATA_DIR: Path = ROOT_DIR / "data"


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """
    Global configuration for the assistant server.

    Instantiated once at import time as `settings`. Every field can be
    overridden through the environment or a `.env` file at the project root,
    e.g. MODEL_API_KEY=sk-..., SEARCH_URL=https://..., DEBUG=false.
    """

    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # model_* fields describe the language model, not pydantic internals.
        protected_namespaces=("settings_",),
    )

    # --- App / server basics -----------------------------------------------
    app_name: str = "KB Article Assistant"
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # --- Filesystem paths ---------------------------------------------------
    prompts_dir: Path = PROMPTS_DIR
    data_dir: Path = DATA_DIR

    # Saved chats live under data_dir / "chats" (see core.persistence).
    persist_chats: bool = True

    # --- Language model backend (streaming, tool calling) -------------------
    model_base_url: str = "https://api.openai.com/v1/chat/completions"

    # ENV: MODEL_API_KEY=sk-...
    model_api_key: str | None = Field(
        default=None,
        description="Bearer key for the chat model backend (env: MODEL_API_KEY).",
    )
    model_name: str = "gpt-3.5-turbo"
    model_temperature: float = 0.3
    model_timeout_s: float = 60.0

    # --- Similarity search backend -----------------------------------------
    #
    # POST {"query": "..."} -> [{"id", "title", "content"}, ...]
    #
    search_url: str | None = Field(
        default=None,
        description="Article similarity-search endpoint (env: SEARCH_URL).",
    )
    search_api_key: str | None = Field(
        default=None,
        description="Bearer token for the search endpoint (env: SEARCH_API_KEY).",
    )
    search_timeout_s: float = 15.0

    # --- Rewrite backend ----------------------------------------------------
    # URL and key fall back to the model backend when unset.
    rewrite_base_url: str | None = None
    rewrite_api_key: str | None = None
    rewrite_model: str = "gpt-3.5-turbo"
    rewrite_temperature: float = 0.2
    rewrite_timeout_s: float = 60.0

    # --- Limits -------------------------------------------------------------
    max_user_chars: int = 20000     # Hard cap on one user message
    title_max_chars: int = 100      # Saved chat title = first message prefix

    @property
    def chats_dir(self) -> Path:
        return self.data_dir / "chats"

    @property
    def effective_rewrite_url(self) -> str:
        return self.rewrite_base_url or self.model_base_url

    @property
    def effective_rewrite_key(self) -> str | None:
        return self.rewrite_api_key or self.model_api_key


# Single global settings instance used by the rest of the app.
settings = Settings()
