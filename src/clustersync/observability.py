"""Logging for clustersync.

One ``clustersync`` logger writes to a rotating per-session file and to
stderr (warnings and above). Messages carry structured fields as a compact
JSON suffix; ``log_action`` lines are pure JSON so cycle and peer timings can
be grepped and parsed.

Environment:

- ``CLUSTERSYNC_LOG_DIR``: log directory (default ``~/.clustersync/logs``)
- ``CLUSTERSYNC_LOG_LEVEL``: DEBUG, INFO, WARNING or ERROR (default INFO)
- ``CLUSTERSYNC_LOG_MAX_BYTES`` / ``CLUSTERSYNC_LOG_BACKUP_COUNT``: rotation
- ``CLUSTERSYNC_LOG_DISABLE_FILE=1``: stderr only
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


LOGGER_NAME = "clustersync"

ENV_LOG_DIR = "CLUSTERSYNC_LOG_DIR"
ENV_LOG_LEVEL = "CLUSTERSYNC_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "CLUSTERSYNC_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "CLUSTERSYNC_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "CLUSTERSYNC_LOG_DISABLE_FILE"

DEFAULT_LOG_DIR = Path.home() / ".clustersync" / "logs"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

_FORMAT = "[%(levelname)s %(asctime)s %(threadName)s] %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_logger_initialized = False
_session_start: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True, default=str)


def _get_log_level() -> int:
    name = os.getenv(ENV_LOG_LEVEL, "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _get_log_file_path() -> Optional[Path]:
    """Session log file, or None when file logging is switched off."""
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None
    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")
    log_dir = Path(os.getenv(ENV_LOG_DIR) or DEFAULT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"clustersync_{_session_start}.log"


def _build_handlers(level: int) -> List[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    handlers: List[logging.Handler] = []

    log_file = _get_log_file_path()
    if log_file is not None:
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES)),
            backupCount=int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT)),
        )
        file_handler.setLevel(level)
        handlers.append(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(max(level, logging.WARNING))
    handlers.append(stream_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _get_logger() -> logging.Logger:
    """The clustersync logger, configured from the environment on first use."""
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)
    if not _logger_initialized:
        _logger_initialized = True
        level = _get_log_level()
        logger.setLevel(level)
        logger.handlers.clear()
        for handler in _build_handlers(level):
            logger.addHandler(handler)
    return logger


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    return f"{message} {_to_json(fields)}" if fields else message


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> None:
    """Emit one JSON line describing a finished action.

    Args:
        action: Dotted action name, e.g. "global_repo.cycle" or "peer.sync"
        outcome: "ok", "error", "skipped", ...
        duration_ms: Elapsed time, rounded to two decimals
        **fields: Extra keys merged into the record
    """
    record: Dict[str, Any] = {
        "ts": _utcnow().isoformat().replace("+00:00", "Z"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 2)
    record.update(fields)
    _get_logger().info(_to_json(record))


def log_debug(message: str, **fields: Any) -> None:
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_info(message: str, **fields: Any) -> None:
    _get_logger().info(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(action: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Time the block and log it through ``log_action``.

    The yielded dict collects extra fields; an "outcome" key in it replaces
    the default "ok". If the block raises, the outcome is "error" and the
    exception propagates.
    """
    start = time.perf_counter()
    extra: Dict[str, Any] = {}
    try:
        yield extra
    except Exception:
        log_action(action, outcome="error", duration_ms=(time.perf_counter() - start) * 1000.0, **fields)
        raise
    outcome = extra.pop("outcome", "ok")
    log_action(action, outcome=outcome, duration_ms=(time.perf_counter() - start) * 1000.0, **fields, **extra)
