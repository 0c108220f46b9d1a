"""Configuration centrale Inframon.

Ordre de résolution :
1. Variables d'environnement (préfixe IFM_, plus les anciens noms
   IS_MASTER / MASTER_URL / NODE_PORT / FRONTEND_PORT)
2. config.yaml (répertoire courant puis ~/.config/inframon/)
3. Valeurs par défaut ci-dessous
"""
from __future__ import annotations
import os
import yaml
from pathlib import Path
from functools import lru_cache

from inframon.logger import get_logger

log = get_logger("config")

DEFAULTS = {
    "is_master": False,
    "master_url": None,
    "node_port": 3800,
    "registry_port": 3899,
    "discovery_port": 3898,
    "frontend_port": 3869,
    "history_length": 3600,
    "sample_interval": 1.0,
    "active_window": 60.0,
    "heartbeat_timeout": 25.0,
    "reap_after": 300.0,
    "register_retry_delay": 5.0,
    "discovery_attempts": 5,
    "discovery_concurrency": 50,
    "discovery_timeout": 1.0,
    "discovery_retry_delay": 2.0,
    "frontend_dir": "dist",
    "log_level": "INFO",
    "log_dir": None,
    "metrics_port": None,
}

# Types des clés dont le défaut est None
_TYPES = {
    "master_url": str,
    "log_dir": str,
    "metrics_port": int,
}

LEGACY_ENV = {
    "is_master": "IS_MASTER",
    "master_url": "MASTER_URL",
    "node_port": "NODE_PORT",
    "frontend_port": "FRONTEND_PORT",
}

CONFIG_PATHS = [Path("config.yaml"), Path.home() / ".config" / "inframon" / "config.yaml"]

_TRUE = {"1", "true", "yes", "on"}


def _coerce(key: str, value):
    if value is None:
        return None
    default = DEFAULTS.get(key)
    kind = type(default) if default is not None else _TYPES.get(key, str)
    if kind is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE
    try:
        return kind(value)
    except (TypeError, ValueError):
        log.warning("Valeur invalide pour %s: %r (défaut conservé)", key, value)
        return default


def _load_yaml() -> dict:
    for p in CONFIG_PATHS:
        if p.exists():
            try:
                with p.open("r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                log.warning("config.yaml illisible (%s): %s", p, e)
                continue
            if isinstance(data, dict):
                return data
    return {}


def _env_overrides() -> dict:
    overrides = {}
    prefix = "IFM_"
    for k in DEFAULTS.keys():
        env_key = prefix + k.upper()
        if k == "log_level":
            env_key = "IFM_LOG"
        if env_key in os.environ:
            overrides[k] = os.environ[env_key]
        elif k in LEGACY_ENV and LEGACY_ENV[k] in os.environ:
            overrides[k] = os.environ[LEGACY_ENV[k]]
    return overrides


@lru_cache
def get_config() -> dict:
    cfg = DEFAULTS.copy()
    yaml_cfg = _load_yaml()
    cfg.update({k: _coerce(k, v) for k, v in yaml_cfg.items() if k in DEFAULTS and v is not None})
    cfg.update({k: _coerce(k, v) for k, v in _env_overrides().items()})
    return cfg


def reload_config() -> dict:
    get_config.cache_clear()
    return get_config()

__all__ = ["DEFAULTS", "get_config", "reload_config"]
