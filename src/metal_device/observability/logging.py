"""Structured logging for the device engine.

Events go through structlog into stdlib logging, one line per event.
Engine operations bind ``operation`` and ``device_id`` with
``structlog.contextvars``; every event also carries ``service``.

Device documents hold credentials (``root_password``, the API token,
``userdata`` scripts). Values under those keys are masked before
rendering, wherever in the event they appear.

Usage::

    from metal_device.observability.logging import configure_logging, get_logger

    configure_logging(level="INFO")
    logger = get_logger(__name__)
    logger.info("device_active", device_id="abc", hostname="web-1")
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

SERVICE_NAME = "metal_device"
REDACTED = "***"

SECRET_KEYS = frozenset({
    "auth_token",
    "x-auth-token",
    "root_password",
    "user_data",
    "userdata",
})

_NOISY_LOGGERS = ("httpx", "httpcore")

_configured = False


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SECRET_KEYS and v else _mask(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_mask(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_mask(v) for v in value)
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask credential values, including inside nested payload dicts."""
    return _mask(event_dict)


def _add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    force: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Install the engine's structlog pipeline on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: JSON lines when True, console rendering otherwise.
        force: Reconfigure even if logging was already configured.
        stream: Output stream. Defaults to stdout.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        redact_secrets,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Request-level chatter from the HTTP stack; the client logs retries itself.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
