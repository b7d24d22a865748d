"""structlog configuration for the service, the CLI and the tests.

One processor chain feeds two renderers: ``ConsoleRenderer`` while
developing and ``JSONRenderer`` in production (``APP_ENV=production`` or
``json_output=True``).  Log lines go to stderr so that CLI results on
stdout stay machine-readable.

Stdlib ``logging`` records (uvicorn, httpx, the LLM SDKs) are routed
through the same chain.  The SDK loggers are held at WARNING; at INFO
they log every HTTP request the embedding client retries.

Every line emitted during one ``resolve`` call carries the ``request_id``
bound by :func:`bind_request_context`.
"""

import logging
import os
import sys
import uuid

import structlog

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "aiosqlite")

_REQUEST_ID_KEY = "request_id"


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output or os.environ.get("APP_ENV", "development") == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Render JSON regardless of ``APP_ENV``.

    Returns:
        A bound logger using the new configuration.
    """
    level = logging.getLevelName(log_level.upper())
    shared = _shared_processors()
    renderer = _renderer(json_output)

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Named logger; configures defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


def bind_request_context(request_id: str | None = None) -> str:
    """Bind a ``request_id`` into the structlog context for the current task.

    Returns the id that was bound (12 hex characters when none is given).
    Pair with :func:`clear_request_context` in a ``finally`` block.
    """
    rid = request_id or uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(**{_REQUEST_ID_KEY: rid})
    return rid


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars(_REQUEST_ID_KEY)
