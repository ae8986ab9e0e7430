from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Marks handlers installed by configure_logging.
_OWNED = "_rosterd_owned"


def _parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default

    if text == "WARN":
        text = "WARNING"
    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    if not s.strip():
        return None
    return s


def _build_handlers(cfg: HubRuntimeConfig, override_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if bool(cfg.log_console):
        handlers.append(logging.StreamHandler())

    log_file = _clean_optional(override_file) if override_file is not None else None
    if log_file is None:
        log_file = _clean_optional(cfg.log_file)

    if log_file:
        p = Path(os.path.expanduser(log_file))
        p.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(p, encoding="utf-8")
        try:
            os.chmod(p, 0o600)
        except OSError:
            pass
        handlers.append(file_handler)

    for h in handlers:
        setattr(h, _OWNED, True)
    return handlers


def owned_handlers(logger: logging.Logger | None = None) -> list[logging.Handler]:
    """Handlers on ``logger`` (default: root) that configure_logging installed."""
    logger = logger or logging.getLogger()
    return [h for h in logger.handlers if getattr(h, _OWNED, False)]


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for rosterd.

    Handlers installed by an earlier call are removed and closed first, so
    reconfiguring does not duplicate output or leak log files. Handlers
    someone else put on the root logger are left alone.
    """

    level = _parse_level(override_level or cfg.log_level, logging.INFO)
    rns_level = _parse_level(cfg.log_rns_level, logging.WARNING)

    handlers = _build_handlers(cfg, override_file)

    fmt = _clean_optional(cfg.log_format) or _DEFAULT_FORMAT
    formatter = logging.Formatter(fmt=fmt, datefmt=_clean_optional(cfg.log_datefmt))
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in owned_handlers(root):
        root.removeHandler(h)
        h.close()

    for h in handlers:
        root.addHandler(h)

    root.setLevel(level)

    # Library loggers
    logging.getLogger("RNS").setLevel(rns_level)

    logging.captureWarnings(True)
