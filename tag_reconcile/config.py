from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class ProviderSettings(BaseModel):
    acoustid_api_key: Optional[str] = None
    musicbrainz_useragent: str = "tag-reconcile/0.1 (unknown@example.com)"
    discogs_token: Optional[str] = None
    discogs_useragent: str = "tag-reconcile/0.1 +https://example.com"
    fpcalc_path: Optional[Path] = None
    request_timeout_seconds: float = 10.0
    fpcalc_timeout_seconds: float = 60.0
    network_retries: int = 1
    network_retry_backoff_seconds: float = 0.5
    cover_art_useragent: str = "tag-reconcile/0.1"
    cover_art_sources: List[str] = Field(default_factory=lambda: ["itunes", "deezer"])

    @field_validator("fpcalc_path", mode="before")
    @classmethod
    def _expand_fpcalc(cls, value: Optional[str | Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser()

    @field_validator("cover_art_sources", mode="before")
    @classmethod
    def _lower_sources(cls, value: Optional[List[str]]) -> List[str]:
        if value is None:
            return []
        return [str(item).strip().lower() for item in value if str(item).strip()]


class RateLimitSettings(BaseModel):
    """Minimum seconds between two successive calls to the same source."""

    catalog_seconds: float = 1.1
    marketplace_seconds: float = 0.25
    fingerprint_seconds: float = 0.5


class MatchingSettings(BaseModel):
    raw_limit: int = 5
    keep_per_file: int = 3
    auto_apply_threshold: float = 0.70

    @field_validator("auto_apply_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("auto_apply_threshold must be within [0, 1]")
        return value


class LoaderSettings(BaseModel):
    max_concurrent_operations: int = 4
    progress_interval_seconds: float = 0.05
    include_extensions: List[str] = Field(default_factory=lambda: [".mp3", ".flac", ".m4a", ".ogg"])


class Settings(BaseModel):
    providers: ProviderSettings = ProviderSettings()
    rate_limits: RateLimitSettings = RateLimitSettings()
    matching: MatchingSettings = MatchingSettings()
    loader: LoaderSettings = LoaderSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})


def find_config(explicit_path: Optional[Path]) -> Optional[Path]:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    return None
