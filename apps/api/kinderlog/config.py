"""Service settings: an optional config.json plus KINDERLOG_* environment overrides."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

_ENV_PREFIX = "KINDERLOG_"


class AppConfig(BaseModel):
    """Typed settings, read once at import into ``CONFIG``."""

    database_path: str = Field(default="./data/kinderlog.db")
    jwt_secret: str = Field(default="dev-only-secret-change-me-before-deploying")
    jwt_audience: Optional[str] = Field(default="authenticated")
    jwks_url: Optional[str] = Field(default=None, description="RS256 key set; HS256 secret is used when unset")
    timezone: str = Field(default="UTC", description="IANA zone used for day buckets and summary times")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    @property
    def resolved_database_path(self) -> Path:
        """SQLite file location, relative paths anchored at apps/api."""
        return (Path(__file__).resolve().parents[1] / self.database_path).resolve()

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in AppConfig.model_fields:
        raw = os.getenv(f"{_ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        if name == "cors_origins":
            overrides[name] = [origin.strip() for origin in raw.split(",") if origin.strip()]
        else:
            overrides[name] = raw
    return overrides


def load_config() -> AppConfig:
    """Load configuration from config.json (optional) plus KINDERLOG_* overrides."""

    contents: Dict[str, Any] = {}
    config_file = _config_path()
    if config_file.exists():
        contents = json.loads(config_file.read_text())
    contents.update(_env_overrides())
    return AppConfig(**contents)


CONFIG = load_config()
