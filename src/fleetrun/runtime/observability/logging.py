"""Structured logging with context binding.

Human-readable console output for interactive use, JSON lines for log
aggregation. Components bind the identifiers they work on (batch id,
attempt number, circuit state) so every entry carries them.

Quick Start:
    >>> from fleetrun.runtime.observability import get_logger, configure_logging
    >>> configure_logging(format="console", level="DEBUG")
    >>> log = get_logger("fleetrun.poller").bind_batch("batch-123")
    >>> log.info("tick", status="processing")
    # => 10:30:45.120 [info] tick batch_id="batch-123" logger="fleetrun.poller" status="processing"
"""

from __future__ import annotations

import logging
import sys
import time
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partialmethod
from typing import TYPE_CHECKING, Protocol, TextIO, runtime_checkable

import orjson

from fleetrun.foundation.errors import JsonDict, JsonValue

if TYPE_CHECKING:
    from fleetrun.foundation.config import LoggingSettings

# fields added by log_context(); copied into child tasks with the context
_scoped_fields: ContextVar[JsonDict] = ContextVar("fleetrun_log_fields", default={})


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: float
    level: str
    event: str
    context: JsonDict

    def as_record(self) -> JsonDict:
        """Flat mapping used by the JSON renderer."""
        when = datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat()
        return {"timestamp": when, "level": self.level, "event": self.event, **self.context}


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


@dataclass(slots=True)
class _Config:
    renderer: LogRenderer
    threshold: int


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


@dataclass(slots=True)
class BoundLogger:
    """Logger carrying bound fields. ``bind()`` returns a new logger; this one is unchanged.

    Field precedence on each entry: call kwargs over bound fields over
    ``log_context()`` fields.
    """

    context: JsonDict = field(default_factory=dict)

    def bind(self, **fields: JsonValue) -> BoundLogger:
        return BoundLogger({**self.context, **fields})

    def bind_batch(self, batch_id: str, **fields: JsonValue) -> BoundLogger:
        """Bind the batch being submitted or polled."""
        return self.bind(batch_id=batch_id, **fields)

    def unbind(self, *keys: str) -> BoundLogger:
        return BoundLogger({k: v for k, v in self.context.items() if k not in keys})

    def is_enabled_for(self, level: int) -> bool:
        return level >= _config.threshold

    def log(self, level: int, event: str, **fields: JsonValue) -> None:
        if level < _config.threshold:
            return
        entry = LogEntry(time.time(), logging.getLevelName(level).lower(), event,
                         {**_scoped_fields.get(), **self.context, **fields})
        _config.renderer.render(entry)

    debug = partialmethod(log, logging.DEBUG)
    info = partialmethod(log, logging.INFO)
    warning = partialmethod(log, logging.WARNING)
    error = partialmethod(log, logging.ERROR)

    def exception(self, event: str, **fields: JsonValue) -> None:
        """Error entry with the traceback being handled under ``exc_info``."""
        self.log(logging.ERROR, event, exc_info="".join(traceback.format_exception(*sys.exc_info())), **fields)


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────

_ANSI = {"reset": "0", "bold": "1", "dim": "2", "red": "31", "green": "32", "yellow": "33", "cyan": "36"}
_LEVEL_STYLE = {"debug": "dim", "info": "green", "warning": "yellow", "error": "red", "critical": "red"}


def _display(value: object) -> str:
    match value:
        case str():
            return f'"{value}"'
        case bool():
            return "true" if value else "false"
        case None:
            return "null"
        case int() | float():
            return str(value)
        case list() | tuple():
            return f"[{len(value)} items]"
        case dict():
            return f"{{{len(value)} items}}"
        case _:
            return repr(value)


@dataclass(slots=True)
class ConsoleRenderer:
    """One line per entry: ``HH:MM:SS.mmm [level] event key=value ...`` (keys sorted)."""

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None  # None: colour when output is a terminal
    show_timestamp: bool = True

    def __post_init__(self) -> None:
        if self.colors is None:
            isatty = getattr(self.output, "isatty", None)
            self.colors = bool(isatty and isatty())

    def _paint(self, text: str, style: str | None) -> str:
        if not self.colors or style is None:
            return text
        return f"\033[{_ANSI[style]}m{text}\033[0m"

    def render(self, entry: LogEntry) -> None:
        fields = dict(entry.context)
        trace = fields.pop("exc_info", None)
        words = []
        if self.show_timestamp:
            stamp = datetime.fromtimestamp(entry.timestamp, tz=UTC).strftime("%H:%M:%S.%f")[:-3]
            words.append(self._paint(stamp, "dim"))
        words.append(self._paint(f"[{entry.level}]", _LEVEL_STYLE.get(entry.level)))
        words.append(self._paint(entry.event, "bold"))
        words.extend(f"{self._paint(key, 'cyan')}={_display(fields[key])}" for key in sorted(fields))
        self.output.write(" ".join(words) + "\n")
        if trace is not None:
            self.output.write(self._paint(str(trace), "red") + "\n")


@dataclass(slots=True)
class JsonRenderer:
    """JSON Lines via orjson; values orjson cannot encode fall back to ``str()``."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        self.output.write(orjson.dumps(entry.as_record(), default=str, option=orjson.OPT_APPEND_NEWLINE).decode())


@dataclass(slots=True)
class NoOpRenderer:
    def render(self, entry: LogEntry) -> None:
        return None


@dataclass(slots=True)
class CollectingRenderer:
    """Keeps entries in memory; tests assert on what was logged."""

    entries: list[LogEntry] = field(default_factory=list)

    def render(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def events(self) -> list[str]:
        return [e.event for e in self.entries]


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide configuration
# ─────────────────────────────────────────────────────────────────────────────

_config = _Config(renderer=ConsoleRenderer(), threshold=logging.INFO)


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Select the renderer ("console", "json" or "none") and minimum level for the process."""
    renderer: LogRenderer
    if format == "console":
        renderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
    elif format == "json":
        renderer = JsonRenderer(output=output or sys.stdout)
    elif format == "none":
        renderer = NoOpRenderer()
    else:
        raise ValueError(f"Unknown format: {format!r}; expected 'console', 'json' or 'none'")
    use_renderer(renderer, level)
    return renderer


def configure_from_settings(settings: LoggingSettings, *, debug: bool = False) -> LogRenderer:
    """Apply LoggingSettings; ``debug`` forces DEBUG level."""
    return configure_logging(settings.format, "DEBUG" if debug else settings.level)


def use_renderer(renderer: LogRenderer, level: str | int = logging.DEBUG) -> None:
    """Install a renderer directly (tests, embedding applications)."""
    _config.renderer = renderer
    _config.threshold = _parse_level(level)


def get_logger(name: str | None = None, **fields: JsonValue) -> BoundLogger:
    """Logger for a component; ``name`` is recorded as the ``logger`` field."""
    if name:
        fields["logger"] = name
    return BoundLogger(fields)


@contextmanager
def log_context(**fields: JsonValue) -> Iterator[None]:
    """Add fields to every entry logged inside the block, across awaits."""
    token = _scoped_fields.set({**_scoped_fields.get(), **fields})
    try:
        yield
    finally:
        _scoped_fields.reset(token)
