"""structlog setup for the pipeline.

JSON lines for long-running callers, coloured console output for the CLI.
Events are dotted names (``generator.cache_hit``) with key/value context;
``agent_context`` binds the agent id to every event emitted inside a
generation, including those from the connectors and the decision engine.

Vendor API keys and other credentials are masked before rendering.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import Iterator

import structlog

_CONFIGURED = False

_SECRET_KEYS = frozenset({
    "api_key", "apikey", "secret", "password", "token", "authorization",
    "openai_api_key", "anthropic_api_key", "grok_api_key",
    "google_ai_api_key", "deepseek_api_key", "qwen_api_key", "news_api_key",
})


def _mask_secrets(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key in event_dict:
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = "***REDACTED***"
    return event_dict


def _handlers(level: int, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(path)))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    log_file: str | None = None,
) -> None:
    """Route structlog through stdlib logging.  Only the first call applies."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _mask_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if fmt == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)
    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in _handlers(log_level, log_file):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Bound logger; configures from LOG_LEVEL / LOG_FORMAT on first use."""
    if not _CONFIGURED:
        configure_logging(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            fmt=os.environ.get("LOG_FORMAT", "console"),
        )
    return structlog.get_logger(name)


@contextlib.contextmanager
def agent_context(agent_id: str) -> Iterator[None]:
    """Attach ``agent_id`` to every event logged in this task."""
    with structlog.contextvars.bound_contextvars(agent_id=agent_id):
        yield
