from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


def parse_level(value: Any, default: int = logging.INFO) -> int:
    """Brief: Map a level name such as "warn" to a logging constant.

    Unknown names fall back to *default*.
    """
    return _LEVELS.get(str(value).strip().lower(), default)


class SyslogFormatter(logging.Formatter):
    """Syslog line format; the syslog daemon supplies the timestamp."""

    def __init__(self, tag: str = "signpost") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Bracketed lowercase level tags with UTC ISO-8601 timestamps."""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def init_logging(
    cfg: Optional[Dict[str, Any]], *, level_override: Optional[str] = None
) -> None:
    """
    Configure the root logger from the ``logging`` section of config.yaml.

    Args:
        cfg: Mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to
            - syslog: True, or a dict with address / facility / tag
        level_override: Level name from the command line; wins over cfg.

    Example config:
        {
            "level": "debug",
            "stderr": True,
            "file": "./signpost.log",
            "syslog": {"address": "/dev/log", "facility": "daemon"}
        }
    """
    cfg = cfg or {}

    level = parse_level(level_override or cfg.get("level", "info"))
    formatter = BracketLevelFormatter(
        fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s"
    )

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
        address = opts.get("address", "/dev/log")
        if isinstance(address, (list, tuple)):
            address = (str(address[0]), int(address[1]))
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(opts.get('facility', 'user')).upper()}",
            logging.handlers.SysLogHandler.LOG_USER,
        )
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
        except (OSError, ValueError) as e:  # pragma: no cover - host dependent
            root.warning("Failed to configure syslog: %s", e)
        else:
            syslog_handler.setFormatter(SyslogFormatter(opts.get("tag", "signpost")))
            root.addHandler(syslog_handler)

    logging.captureWarnings(True)
