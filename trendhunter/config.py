from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from .config_schema import ConfigModel, validate_config

logger = logging.getLogger(__name__)

CONFIG_ENV = "TRENDHUNTER_CONFIG"

# Environment variable consulted for each setting.
ENV_VARS: dict[str, str] = {
    "database_url": "TRENDHUNTER_DATABASE_URL",
    "birdeye_api_key": "BIRDEYE_API_KEY",
    "helius_api_key": "HELIUS_API_KEY",
    "solscan_api_key": "SOLSCAN_API_KEY",
    "ingest_interval": "INGEST_INTERVAL",
    "refresh_interval": "REFRESH_INTERVAL",
    "refresh_per_tick": "REFRESH_PER_TICK",
    "listing_window_hours": "LISTING_WINDOW_HOURS",
    "ingest_batch_limit": "INGEST_BATCH_LIMIT",
    "min_cluster_size": "MIN_CLUSTER_SIZE",
    "literal_threshold": "LITERAL_THRESHOLD",
    "phonetic_threshold": "PHONETIC_THRESHOLD",
    "cache_ttl": "CACHE_TTL",
    "provider_timeout": "PROVIDER_TIMEOUT",
    "provider_retry_delay": "PROVIDER_RETRY_DELAY",
    "batch_pause": "BATCH_PAUSE",
    "provider_rotation": "PROVIDER_ROTATION",
    "provider_fallback": "PROVIDER_FALLBACK",
    "provider_basic_order": "PROVIDER_BASIC_ORDER",
    "log_level": "LOG_LEVEL",
    "log_json": "LOG_JSON",
}


@dataclass
class Config:
    """Runtime settings; every field can come from env, a TOML file or the default."""

    database_url: str
    birdeye_api_key: str = field(default="", repr=False)
    helius_api_key: str = field(default="", repr=False)
    solscan_api_key: str = field(default="", repr=False)
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
    provider_rotation: list[str] = field(default_factory=list)
    provider_fallback: list[str] = field(default_factory=list)
    provider_basic_order: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, cfg: Mapping[str, Any] | None = None) -> "Config":
        """Create a Config instance using environment variables and optional dict.

        Environment variables win over ``cfg``, which wins over the schema
        defaults. The merged result is validated as a whole.
        """
        cfg = dict(cfg or {})
        env = os.getenv
        merged: dict[str, Any] = {}
        for name in ConfigModel.model_fields:
            raw = env(ENV_VARS.get(name, name.upper()))
            if raw is not None and raw != "":
                merged[name] = raw
            elif name in cfg and cfg[name] is not None:
                merged[name] = cfg[name]
        data = validate_config(merged)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def api_key_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_key", "") or ""


def load_toml(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a TOML file; settings may sit at the top level or under ``[trendhunter]``."""
    with open(path, "rb") as fh:
        data = tomllib.load(fh)
    section = data.get("trendhunter")
    if isinstance(section, dict):
        return section
    return data


def load_config(path: str | os.PathLike[str] | None = None) -> Config:
    """Build the runtime :class:`Config` from *path* (or ``$TRENDHUNTER_CONFIG``) and env."""
    path = path or os.getenv(CONFIG_ENV)
    cfg: dict[str, Any] = {}
    if path:
        p = Path(path)
        if not p.is_file():
            raise FileNotFoundError(f"config file {p} does not exist")
        cfg = load_toml(p)
        logger.info("Loaded configuration from %s", p)
    return Config.from_env(cfg)


__all__ = ["CONFIG_ENV", "ENV_VARS", "Config", "load_config", "load_toml"]
