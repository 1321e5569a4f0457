"""Application configuration via Pydantic Settings.

Loads from .env file and environment variables (prefix ``HEROVAULT_``).
File locations are resolved relative to ``db_root``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_SOURCE_URL_PATTERN = r"^https://game8\.co/games/fire-emblem-heroes/archives/\d+$"


class Settings(BaseSettings):
    """HeroVault reconciliation settings."""

    model_config = SettingsConfigDict(
        env_prefix="HEROVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Data lake ---
    db_root: Path = Path("db")
    index_file: str = "index.json"
    alias_file: str = "hero_aliases.json"
    unresolved_file: str = "unresolved.json"
    units_dir: str = "units"
    name_map_file: str = "fandom-name-map.json"

    # --- Identity policy ---
    source_url_pattern: str = DEFAULT_SOURCE_URL_PATTERN
    placeholder_tags: Annotated[list[str], NoDecode] = Field(
        default=["Old Hero", "Legacy ID Snipe", "legacy", "unverified"],
    )
    default_tag: str = "Old Hero"
    unresolved_sample_size: int = 10

    # --- Archive fetches ---
    http_timeout: float = 30.0
    http_max_attempts: int = 3
    http_retry_wait: float = 1.2
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # --- App ---
    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("placeholder_tags", mode="before")
    @classmethod
    def parse_placeholder_tags(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return v

    @property
    def index_path(self) -> Path:
        return self.db_root / self.index_file

    @property
    def alias_path(self) -> Path:
        return self.db_root / self.alias_file

    @property
    def unresolved_path(self) -> Path:
        return self.db_root / self.unresolved_file

    @property
    def units_path(self) -> Path:
        return self.db_root / self.units_dir

    @property
    def name_map_path(self) -> Path:
        return self.db_root / self.name_map_file


settings = Settings()
