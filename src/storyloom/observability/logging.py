"""Structured logging for storyloom.

Every module logs through ``get_logger(__name__)`` with snake_case event
names and keyword context. Records go to:

- the console (rich, on stderr), at WARNING / INFO / DEBUG for -v counts 0 / 1 / 2+
- ``{project}/logs/debug.jsonl`` when the CLI runs with ``--log``

While a story is being grown, ``story_context`` binds its id so every event
of the run (engine, provider, planner) carries ``story_id`` without each
call site passing it.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from collections.abc import Iterator

    from structlog.typing import Processor

DEBUG_LOG_NAME = "debug.jsonl"

_configured = False
_file_handler: JSONLFileHandler | None = None
_logs_dir: Path | None = None

# Transport and SDK loggers that drown out growth events at DEBUG
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "langchain",
    "langchain_core",
    "asyncio",
)

_RESERVED_KEYS = ("level", "timestamp")


class JSONLFileHandler(logging.FileHandler):
    """Write each record as one JSON line.

    structlog passes its event dict through as ``record.msg``; its keys are
    flattened into the line next to ``timestamp``, ``level`` and ``logger``.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_record_to_entry(record), default=str, ensure_ascii=False)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def _record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if not isinstance(record.msg, dict):
        entry["event"] = record.getMessage()
        return entry

    fields = {k: v for k, v in record.msg.items() if k not in _RESERVED_KEYS}
    entry["event"] = fields.pop("event", "")
    entry.update(fields)
    return entry


def _console_level(verbosity: int) -> int:
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def _console_handler(verbosity: int) -> RichHandler:
    return RichHandler(
        console=Console(stderr=True),
        level=_console_level(verbosity),
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
    )


def _open_debug_log(project_path: Path) -> JSONLFileHandler:
    global _file_handler, _logs_dir

    _logs_dir = project_path / "logs"
    _logs_dir.mkdir(parents=True, exist_ok=True)
    _file_handler = JSONLFileHandler(str(_logs_dir / DEBUG_LOG_NAME), mode="a", encoding="utf-8")
    _file_handler.setLevel(logging.DEBUG)
    return _file_handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    project_path: Path | None = None,
) -> None:
    """Set up console and optional JSONL logging.

    Calling it again replaces the previous configuration, closing any open
    debug log first.

    Args:
        verbosity: Number of -v flags given on the command line.
        log_to_file: Also append every record to ``{project_path}/logs/debug.jsonl``.
        project_path: Project directory. Required with ``log_to_file``.

    Raises:
        ValueError: If ``log_to_file`` is set without a ``project_path``.
    """
    global _configured

    if log_to_file and project_path is None:
        raise ValueError("project_path is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and project_path is not None:
        handlers.append(_open_debug_log(project_path))

    # The root passes everything the most verbose handler may want
    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a module logger, applying the default configuration on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def story_context(story_id: str) -> Iterator[None]:
    """Bind ``story_id`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(story_id=story_id):
        yield


def current_story_id() -> str | None:
    """Story id bound by an enclosing ``story_context``, if any."""
    story_id = structlog.contextvars.get_contextvars().get("story_id")
    return story_id if isinstance(story_id, str) else None


def get_logs_dir() -> Path | None:
    """Directory of the active debug log, or None when file logging is off."""
    return _logs_dir if _file_handler is not None else None


def close_file_logging() -> None:
    """Flush and close the debug log. Safe to call when none is open."""
    global _file_handler

    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
