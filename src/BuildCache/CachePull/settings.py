# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.settings",
#   "purpose": "Environment-backed settings for the cache pull step",
#   "sections": [
#     {"id": "enums", "name": "Strategy Enums", "anchor": "ENM", "kind": "api"},
#     {"id": "settings", "name": "CachePullSettings", "anchor": "SET", "kind": "api"},
#     {"id": "factory", "name": "get_settings", "anchor": "GET", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Environment-backed settings for the cache pull step.

The step is driven by CI inputs that arrive as environment variables.  The
step input names (``cache_api_url``, ``is_debug_mode``, ``allow_fallback``,
``extract_to_relative_path`` and the runner-provided ``BITRISEIO_STACK_ID``)
are accepted alongside ``CACHE_PULL_*`` aliases.  Settings are loaded once,
frozen, and threaded explicitly into every component; nothing reads ambient
process state after start-up.
"""

from __future__ import annotations

import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "CachePullSettings",
    "ExtractorKind",
    "LogFormat",
    "SourceKind",
    "DEFAULT_EXPORT_KEY",
    "get_settings",
]

DEFAULT_EXPORT_KEY = "BITRISE_CACHE_INFO_PATH"


class SourceKind(str, Enum):
    """How ``cache_source`` should be interpreted."""

    AUTO = "auto"
    DIRECT = "direct"
    API = "api"


class ExtractorKind(str, Enum):
    """Extraction strategy selector."""

    AUTO = "auto"
    TAR = "tar"
    MANUAL = "manual"


class LogFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


def _default_info_dir() -> Path:
    return Path(tempfile.gettempdir()) / "cache-pull"


class CachePullSettings(BaseSettings):
    """Immutable configuration consumed by the pull pipeline."""

    cache_source: str = Field(
        default="",
        validation_alias=AliasChoices("cache_api_url", "CACHE_PULL_SOURCE"),
        description="Direct archive URL or cache API endpoint; empty means nothing to restore",
    )
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_debug_mode", "CACHE_PULL_DEBUG"),
    )
    allow_fallback: bool = Field(
        default=False,
        validation_alias=AliasChoices("allow_fallback", "CACHE_PULL_ALLOW_FALLBACK"),
        description="Restore even when the cache was produced on a different stack",
    )
    extract_relative: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "extract_to_relative_path", "CACHE_PULL_EXTRACT_RELATIVE"
        ),
        description="Re-root absolute archive paths under the working directory",
    )
    stack_id: str = Field(
        default="",
        validation_alias=AliasChoices("BITRISEIO_STACK_ID", "CACHE_PULL_STACK_ID"),
    )
    source_kind: SourceKind = Field(
        default=SourceKind.AUTO,
        validation_alias=AliasChoices("CACHE_PULL_SOURCE_KIND"),
    )
    extractor: ExtractorKind = Field(
        default=ExtractorKind.AUTO,
        validation_alias=AliasChoices("CACHE_PULL_EXTRACTOR"),
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0.0,
        le=3600.0,
        validation_alias=AliasChoices("CACHE_PULL_HTTP_TIMEOUT"),
    )
    retry_wait_seconds: float = Field(
        default=3.0,
        ge=0.0,
        le=60.0,
        validation_alias=AliasChoices("CACHE_PULL_RETRY_WAIT"),
    )
    export_key: str = Field(
        default=DEFAULT_EXPORT_KEY,
        min_length=1,
        validation_alias=AliasChoices("CACHE_PULL_EXPORT_KEY"),
    )
    info_dir: Path = Field(
        default_factory=_default_info_dir,
        validation_alias=AliasChoices("CACHE_PULL_INFO_DIR"),
        description="Directory receiving the recovered manifest after a successful restore",
    )
    log_format: LogFormat = Field(
        default=LogFormat.TEXT,
        validation_alias=AliasChoices("CACHE_PULL_LOG_FORMAT"),
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    @field_validator("cache_source", "stack_id", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("source_kind", "extractor", "log_format", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


def get_settings(**overrides: Any) -> CachePullSettings:
    """Load settings from the environment, applying non-``None`` ``overrides``.

    Raises:
        ConfigurationError: If any value fails validation.
    """

    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return CachePullSettings(**explicit)
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            messages.append(f"{location}: {error.get('msg')}")
        raise ConfigurationError("Invalid cache pull settings: " + "; ".join(messages)) from exc
