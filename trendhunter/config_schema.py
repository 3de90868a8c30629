from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

KNOWN_PROVIDERS = ("birdeye", "dexscreener", "helius", "solscan")


class ConfigModel(BaseModel):
    """Schema for TrendHunter configuration files."""

    model_config = ConfigDict(extra="allow")

    database_url: str = "sqlite:///trendhunter.db"
    birdeye_api_key: str = ""
    helius_api_key: str = ""
    solscan_api_key: str = ""

    ingest_interval: float = 30.0
    refresh_interval: float = 1.0
    refresh_per_tick: int = 4
    listing_window_hours: float = 6.0
    ingest_batch_limit: int = 40

    min_cluster_size: int = 3
    literal_threshold: float = 0.55
    phonetic_threshold: float = 0.60

    cache_ttl: float = 1.0
    provider_timeout: float = 10.0
    provider_retry_delay: float = 2.0
    batch_pause: float = 0.1
    provider_rotation: List[str] = ["birdeye", "dexscreener", "helius", "solscan"]
    provider_fallback: List[str] = ["dexscreener", "birdeye", "solscan", "helius"]
    provider_basic_order: List[str] = ["dexscreener", "birdeye"]

    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("database_url")
    @classmethod
    def _url_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("database_url must not be empty")
        return value.strip()

    @field_validator(
        "ingest_interval", "refresh_interval", "provider_timeout", "listing_window_hours"
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("cache_ttl", "provider_retry_delay", "batch_pause")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("refresh_per_tick", "ingest_batch_limit", "min_cluster_size")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("literal_threshold", "phonetic_threshold")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        return value

    @field_validator(
        "provider_rotation", "provider_fallback", "provider_basic_order", mode="before"
    )
    @classmethod
    def _provider_names(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = value.split(",")
        names = [str(v).strip().lower() for v in value or [] if str(v).strip()]
        unknown = [n for n in names if n not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(f"unknown provider(s): {', '.join(unknown)}")
        return names

    @field_validator("log_level")
    @classmethod
    def _level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _rotation_not_empty(self) -> "ConfigModel":
        if not self.provider_rotation:
            raise ValueError("provider_rotation must name at least one provider")
        return self


def validate_config(data: Dict[str, object]) -> Dict[str, object]:
    """Validate ``data`` against :class:`ConfigModel`.

    Returns the validated data with type normalization applied.
    Raises ``ValueError`` on validation errors.
    """
    try:
        model = ConfigModel(**data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc
    return model.model_dump()


__all__ = ["ConfigModel", "KNOWN_PROVIDERS", "validate_config"]
