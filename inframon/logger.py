"""Logger unifié pour Inframon.

Fournit :
- configuration centralisée (racine ``inframon``)
- niveaux (DEBUG/INFO/WARNING/ERROR)
- format structuré (timestamp + module + niveau), JSON si ``IFM_LOG_JSON=1``
- capture fichier optionnelle ``inframon.out.log`` / ``inframon.err.log``
"""
from __future__ import annotations
import logging
import os
import json
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Any, Dict

_LOGGER: Optional[logging.Logger] = None
_LOG_DIR: Optional[Path] = None

OUT_LOG = "inframon.out.log"
ERR_LOG = "inframon.err.log"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _formatter() -> logging.Formatter:
    if os.environ.get("IFM_LOG_JSON", "0") in {"1", "true", "TRUE"}:
        return JsonFormatter()
    return logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")


def get_logger(name: str = "inframon", level: str = None) -> logging.Logger:
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER.getChild(name)

    base = logging.getLogger("inframon")
    lvl = (level or os.environ.get("IFM_LOG", "INFO")).upper()
    base.setLevel(getattr(logging, lvl, logging.INFO))
    if not base.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(_formatter())
        base.addHandler(handler)
    base.propagate = False
    _LOGGER = base
    log_dir = os.environ.get("IFM_LOG_DIR")
    if log_dir:
        attach_file_handlers(log_dir)
    return base.getChild(name)


def set_level(level: str) -> None:
    base = logging.getLogger("inframon")
    base.setLevel(getattr(logging, level.upper(), logging.INFO))


def attach_file_handlers(log_dir) -> Path:
    """Ajoute les journaux fichier (sortie complète + erreurs seules)."""
    global _LOG_DIR
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    base = logging.getLogger("inframon")
    if _LOG_DIR == path:
        return path
    out_handler = logging.FileHandler(path / OUT_LOG, encoding="utf-8")
    out_handler.setFormatter(_formatter())
    err_handler = logging.FileHandler(path / ERR_LOG, encoding="utf-8")
    err_handler.setLevel(logging.ERROR)
    err_handler.setFormatter(_formatter())
    base.addHandler(out_handler)
    base.addHandler(err_handler)
    _LOG_DIR = path
    return path


def read_recent_logs(lines: int = 100) -> str:
    """Dernières lignes de ``inframon.out.log`` (chaîne vide sans capture fichier)."""
    if _LOG_DIR is None:
        return ""
    target = _LOG_DIR / OUT_LOG
    if not target.exists():
        return ""
    with target.open("r", encoding="utf-8", errors="replace") as f:
        return "".join(deque(f, maxlen=lines))


class LoggerAdapter:
    def __init__(self, component: str, level: str = None):
        self._log = get_logger(component, level)

    def debug(self, msg: str, *a, **kw):
        self._log.debug(msg, *a, **kw)
    def info(self, msg: str, *a, **kw):
        self._log.info(msg, *a, **kw)
    def warning(self, msg: str, *a, **kw):
        self._log.warning(msg, *a, **kw)
    def error(self, msg: str, *a, **kw):
        self._log.error(msg, *a, **kw)
    def exception(self, msg: str, *a, **kw):
        self._log.exception(msg, *a, **kw)

__all__ = ["get_logger", "set_level", "attach_file_handlers", "read_recent_logs", "LoggerAdapter"]
