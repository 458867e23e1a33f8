import logging
import sys
from collections.abc import Callable
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any

from loguru import logger

# Records carry the user and generation they belong to; "-" outside of one.
_CONTEXT_DEFAULTS = {"user": "-", "generation": "-"}

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<7}</level> "
    "<magenta>[{extra[user]}/{extra[generation]}]</magenta> {message}"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | user={extra[user]} gen={extra[generation]} | "
    "{name}:{line} - {message}"
)

# Long polling would otherwise log every HTTP request.
_LIBRARY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")

_DEFAULT_SINKS: list[dict[str, Any]] = [
    {"type": "console"},
    {"type": "file", "path": "bot.log"},
]


def _add_console(level: str, options: dict[str, Any]) -> str:
    logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)
    return f"console (stderr, {level})"


def _add_file(level: str, options: dict[str, Any]) -> str:
    path = options.get("path", "bot.log")
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        level=level,
        format=_FILE_FORMAT,
        rotation=options.get("rotation", "10 MB"),
        retention=options.get("retention", 3),
        enqueue=True,
    )
    return f"file ({path}, {level})"


def _add_json(level: str, options: dict[str, Any]) -> str:
    """One JSON object per line, with ``user``/``generation`` under ``record.extra``."""
    path = options.get("path", "bot.jsonl")
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        level=level,
        serialize=True,
        rotation=options.get("rotation", "10 MB"),
        retention=options.get("retention", 3),
        enqueue=True,
    )
    return f"json ({path}, {level})"


_SINK_TYPES: dict[str, Callable[[str, dict[str, Any]], str]] = {
    "console": _add_console,
    "file": _add_file,
    "json": _add_json,
}


def conversation_context(user_id: str, generation_id: str | None = None) -> AbstractContextManager:
    """Tag every record logged inside the block (and tasks started there) with the user."""
    if generation_id is None:
        return logger.contextualize(user=user_id)
    return logger.contextualize(user=user_id, generation=generation_id)


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Install the configured sinks (``LogConsumers``) and return a description of each."""
    logger.remove()
    logger.configure(extra=_CONTEXT_DEFAULTS)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    descriptions: list[str] = []
    for sink in _DEFAULT_SINKS if consumers is None else consumers:
        kind = sink.get("type", "")
        add = _SINK_TYPES.get(kind)
        if add is None:
            logger.warning(f"Unknown log consumer type: {kind!r}")
            continue
        descriptions.append(add(sink.get("level", level), sink))
    return descriptions
