"""
Durable Actors — Environment Config Loader

Three-tier configuration loading:
  1. Base file (actor_config.yaml)
  2. Per-environment overlay (config/{DA_ENV}.yaml merged over base)
  3. Environment variable overrides (DA_ prefixed)

Usage:
    from runtime.config import get_settings, load_config

    settings = get_settings()
    settings.retry_max_attempts      # 5 unless overridden

Environment variables:
    DA_ENV                      — active profile (dev, staging, prod)
    DA_CONFIG_DIR               — directory for overlay files (default: config/)
    DA_CONFIG_PATH              — base config path (default: actor_config.yaml)
    DA_SECTION__KEY=value       — nested override, e.g. DA_RETRY__MAX_ATTEMPTS=3
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("durable_actors.config")

_META_VARS = {
    "DA_ENV", "DA_CONFIG_DIR", "DA_CONFIG_PATH", "DA_VERSION",
    "DA_DB_BACKEND", "DA_DB_DSN", "DA_PUMP_MODE", "DA_SECRETS_CACHE_TTL",
    "DA_MAX_WORKERS", "DA_JOB_TIMEOUT",
}


def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def _load_overlay_file(env: str = "", config_dir: str = "") -> dict[str, Any]:
    env = env or os.environ.get("DA_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("DA_CONFIG_DIR", "config")
    for path in (Path(config_dir) / f"{env}.yaml", Path(config_dir) / f"{env}.yml"):
        if path.exists():
            with open(path) as f:
                overlay = yaml.safe_load(f) or {}
            logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
            return overlay

    logger.debug("No config overlay found for env=%s", env)
    return {}


def _load_env_overrides(prefix: str = "DA_") -> dict[str, Any]:
    """
    DA_RETRY__MAX_ATTEMPTS=3 → {"retry": {"max_attempts": 3}}

    Values are YAML-parsed so numbers and booleans keep their type.
    """
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in _META_VARS:
            continue
        path = [p for p in key[len(prefix):].lower().split("__") if p]
        if not path:
            continue
        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError:
            parsed = value
        _set_nested(overrides, path, parsed)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


def load_config(
    base_path: str = "",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins): env vars → overlay file → base file.
    """
    base_path = base_path or os.environ.get("DA_CONFIG_PATH", "actor_config.yaml")
    config: dict[str, Any] = {}
    if os.path.exists(base_path):
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("DA_ENV", "default")
    config["_config_source"] = base_path
    return config


def get_config_value(path: str, config: dict[str, Any], default: Any = None) -> Any:
    """Get a nested config value by dotted path."""
    current: Any = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


# ═══════════════════════════════════════════════════════════════════
# Typed Settings
# ═══════════════════════════════════════════════════════════════════

@dataclass
class ActorSettings:
    """Resolved runtime policy."""
    db_path: str = "actors.db"
    retry_max_attempts: int = 5
    retry_base_delay_seconds: int = 10
    retry_initial_delay_seconds: int = 1
    follow_up_delay_seconds: int = 3600
    intervention_ttl_seconds: int = 3600
    intervention_base_url: str = "http://localhost:8080"
    scheduler_poll_seconds: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> ActorSettings:
        d = cls()
        return cls(
            db_path=str(get_config_value("storage.db_path", cfg, d.db_path)),
            retry_max_attempts=int(get_config_value("retry.max_attempts", cfg, d.retry_max_attempts)),
            retry_base_delay_seconds=int(get_config_value(
                "retry.base_delay_seconds", cfg, d.retry_base_delay_seconds)),
            retry_initial_delay_seconds=int(get_config_value(
                "retry.initial_delay_seconds", cfg, d.retry_initial_delay_seconds)),
            follow_up_delay_seconds=int(get_config_value(
                "follow_up.delay_seconds", cfg, d.follow_up_delay_seconds)),
            intervention_ttl_seconds=int(get_config_value(
                "intervention.ttl_seconds", cfg, d.intervention_ttl_seconds)),
            intervention_base_url=str(get_config_value(
                "intervention.base_url", cfg, d.intervention_base_url)).rstrip("/"),
            scheduler_poll_seconds=float(get_config_value(
                "scheduler.poll_seconds", cfg, d.scheduler_poll_seconds)),
            log_level=str(get_config_value("logging.level", cfg, d.log_level)),
        )


def get_settings(**load_kwargs: Any) -> ActorSettings:
    return ActorSettings.from_config(load_config(**load_kwargs))
