# src/peerly/utils/logging_config.py
"""
File logging for Peerly.

Module code logs through ``logging.getLogger(__name__)``. This module adds the
per-concern log files (resolver, search, store, errors) with a trace id on every
line, so the lines of one lookup can be correlated across files.

Usage:
    from peerly.utils.logging_config import Logger, LogFiles

    Logger.info("Resolved 10.1038/x", file=LogFiles.RESOLVER)
    Logger.error("Store write failed", file=LogFiles.ERROR)

Configuration via environment variables:
    PEERLY_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    PEERLY_LOG_DIR: Base directory for log files (default: logs/)
    PEERLY_LOG_MAX_BYTES: Max size per log file in bytes (default: 10MB)
    PEERLY_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
"""

from __future__ import annotations

import inspect
import os
import uuid
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import yaml

_trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "peerly.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_FORMAT = "{timestamp} [{level}] [{trace_id}] {filename}:{lineno} - {message}"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_CONFIG_FILE = Path(__file__).parent / "log_config.yaml"

_DEFAULT_FILES = {
    "resolver": "resolver/resolver.log",
    "search": "search/search.log",
    "store": "store/store.log",
    "api": "api/api.log",
    "error": "errors/error.log",
}


class _LogFilesMeta(type):
    """Allows attribute access like ``LogFiles.RESOLVER``."""

    def __getattr__(cls, name: str) -> str:
        files = cls._load()
        key = name if name in files else name.lower()
        if key in files:
            return files[key]
        raise AttributeError(f"Log file '{name}' not found in config")


class LogFiles(metaclass=_LogFilesMeta):
    """
    Log file paths from ``log_config.yaml`` (``files`` section), over built-in defaults.

    Add a file by adding an entry to the yaml; it is then available as
    ``LogFiles.<NAME>``.
    """

    _files: Optional[Dict[str, str]] = None

    @classmethod
    def _load(cls) -> Dict[str, str]:
        if cls._files is not None:
            return cls._files
        files = dict(_DEFAULT_FILES)
        if LOG_CONFIG_FILE.exists():
            try:
                with open(LOG_CONFIG_FILE, "r", encoding="utf-8") as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError):
                config = {}
            if isinstance(config, dict) and isinstance(config.get("files"), dict):
                files.update({str(k): str(v) for k, v in config["files"].items()})
        cls._files = files
        return files

    @classmethod
    def get(cls, name: str) -> str:
        files = cls._load()
        return files.get(name) or files.get(name.lower()) or f"{name}/{name}.log"


LOG_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}

_config: Dict[str, object] = {}
_file_handlers: Dict[str, RotatingFileHandler] = {}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _get_config() -> Dict[str, object]:
    return {
        "level": os.environ.get("PEERLY_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        "base_dir": os.environ.get("PEERLY_LOG_DIR", DEFAULT_LOG_DIR),
        "max_bytes": _env_int("PEERLY_LOG_MAX_BYTES", DEFAULT_MAX_BYTES),
        "backup_count": _env_int("PEERLY_LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT),
    }


def _get_file_handler(file_path: str) -> RotatingFileHandler:
    handler = _file_handlers.get(file_path)
    if handler is None:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=int(_config.get("max_bytes", DEFAULT_MAX_BYTES)),
            backupCount=int(_config.get("backup_count", DEFAULT_BACKUP_COUNT)),
            encoding="utf-8",
        )
        _file_handlers[file_path] = handler
    return handler


def _resolve_file_path(file: Optional[str]) -> str:
    base_dir = str(_config.get("base_dir", DEFAULT_LOG_DIR))
    return str(Path(base_dir) / (file or DEFAULT_LOG_FILE))


def _should_log(level: str) -> bool:
    current_level = str(_config.get("level", DEFAULT_LOG_LEVEL))
    return LOG_LEVELS.get(level, 0) >= LOG_LEVELS.get(current_level, LOG_LEVELS[DEFAULT_LOG_LEVEL])


def _write_log(level: str, message: str, file: Optional[str] = None) -> None:
    if not _config:
        Logger.init()
    if not _should_log(level):
        return

    # skip _write_log and the public Logger method
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame and frame.f_back else None
    filename = os.path.basename(caller.f_code.co_filename) if caller else "unknown"
    lineno = caller.f_lineno if caller else 0

    line = DEFAULT_FORMAT.format(
        timestamp=datetime.now().strftime(DEFAULT_DATE_FORMAT),
        level=level,
        trace_id=_trace_id_var.get() or "-",
        filename=filename,
        lineno=lineno,
        message=message,
    )
    handler = _get_file_handler(_resolve_file_path(file))
    # RotatingFileHandler.emit is bypassed, so rotate by hand
    if handler.maxBytes and handler.stream.tell() + len(line) + 1 >= handler.maxBytes:
        handler.doRollover()
    handler.stream.write(line + "\n")
    handler.stream.flush()


class Logger:
    """Static logger writing to named files under the log directory."""

    @staticmethod
    def init(
        level: Optional[str] = None,
        base_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        """Read env configuration once; explicit arguments override it."""
        if _config:
            return
        _config.update(_get_config())
        if level:
            _config["level"] = level.upper()
        if base_dir:
            _config["base_dir"] = base_dir
        if max_bytes:
            _config["max_bytes"] = max_bytes
        if backup_count:
            _config["backup_count"] = backup_count

    @staticmethod
    def debug(message: str, file: Optional[str] = None) -> None:
        _write_log("DEBUG", message, file)

    @staticmethod
    def info(message: str, file: Optional[str] = None) -> None:
        _write_log("INFO", message, file)

    @staticmethod
    def warning(message: str, file: Optional[str] = None) -> None:
        _write_log("WARNING", message, file)

    @staticmethod
    def error(message: str, file: Optional[str] = None) -> None:
        _write_log("ERROR", message, file)

    @staticmethod
    def set_level(level: str) -> None:
        if not _config:
            Logger.init()
        _config["level"] = level.upper()

    @staticmethod
    def close() -> None:
        """Close all file handlers and forget the configuration."""
        for handler in _file_handlers.values():
            handler.close()
        _file_handlers.clear()
        _config.clear()


def generate_trace_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Set (or generate) the trace id for the current context and return it."""
    tid = trace_id or generate_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> Optional[str]:
    return _trace_id_var.get()


def clear_trace_id() -> None:
    _trace_id_var.set(None)
