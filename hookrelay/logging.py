"""Logging configuration for the relay.

Structured fields passed to loguru (``logger.info("...", endpoint=url)``)
are rendered as trailing ``key=value`` pairs.
"""

import sys
from typing import TYPE_CHECKING, Any

from loguru import logger


if TYPE_CHECKING:
    from loguru import Record


def _field_value(value: Any) -> str:
    # Bare words stay unquoted so endpoints and names read naturally.
    if isinstance(value, str) and value and not any(c.isspace() for c in value):
        return value
    return repr(value)


def _render_fields(fields: dict[str, Any]) -> str:
    """Render structured fields, escaped for use inside a loguru format."""
    rendered = " ".join(f"{key}={_field_value(value)}" for key, value in fields.items())
    return rendered.replace("{", "{{").replace("}", "}}").replace("<", r"\<")


def _format_record(record: "Record") -> str:
    line = (
        "<dim>{time:YYYY-MM-DD HH:mm:ss.SSS}</dim> "
        "<level>{level: <7}</level> "
        "<cyan>{name}</cyan> {message}"
    )
    if record["extra"]:
        line += f" <dim>{_render_fields(record['extra'])}</dim>"
    line += "\n"
    if record["exception"]:
        line += "{exception}\n"
    return line


def configure_logging(level: str = "INFO") -> None:
    """Send relay logs to stderr at ``level`` and above.

    Replaces loguru's default handler, so calling it again reconfigures
    rather than duplicates output.

    Args:
        level: Minimum level name, case-insensitive (e.g. "debug", "INFO").
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_format_record, colorize=True)
