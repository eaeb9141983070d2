"""Structured logging for the QUIC harness.

Harness events are emitted through structlog; hypercorn and aioquic log through
the standard library and are rendered by the same ``ProcessorFormatter``, so a
test run produces one stream in one format (console locally, JSON in CI).

Two threads log concurrently: the test thread (lifecycle hooks, assertions)
and the server thread (hypercorn, endpoint handlers). Every record carries the
emitting thread's name, and the test thread binds ``test_id`` for the duration
of each test. aioquic logs per-packet detail at INFO and DEBUG, so transport
loggers have their own, quieter, level.

Environment Variables:
    QUIC_HARNESS_LOG_FORMAT: "json" or "console" (default)
    QUIC_HARNESS_LOG_LEVEL: Level for harness loggers (default INFO)
    QUIC_HARNESS_TRANSPORT_LOG_LEVEL: Level for hypercorn/aioquic (default WARNING)
    QUIC_HARNESS_SERVICE_NAME: Service name included in every record

Example:
    >>> from quic_harness.observability.logging import configure_logging, get_logger
    >>> configure_logging(log_format="json", log_level="DEBUG")
    >>> logger = get_logger("quic_harness.server")
    >>> logger.info("quic.server.started", port="4433")
"""

import logging
import os
import sys
from typing import Any

import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder
from structlog.typing import Processor

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_TRANSPORT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_FORMAT = "console"
DEFAULT_SERVICE_NAME = "quic-harness"

ENV_LOG_FORMAT = "QUIC_HARNESS_LOG_FORMAT"
ENV_LOG_LEVEL = "QUIC_HARNESS_LOG_LEVEL"
ENV_TRANSPORT_LOG_LEVEL = "QUIC_HARNESS_TRANSPORT_LOG_LEVEL"
ENV_SERVICE_NAME = "QUIC_HARNESS_SERVICE_NAME"

# stdlib loggers of the HTTP/3 stack
TRANSPORT_LOGGERS = ("hypercorn.error", "hypercorn.access", "quic", "aioquic")

_logging_configured = False


def _env_level(name: str, default: str) -> str:
    return os.environ.get(name, default).upper()


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        CallsiteParameterAdder([CallsiteParameter.THREAD_NAME]),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    service_name: str | None = None,
    force: bool = False,
    transport_log_level: str | None = None,
) -> None:
    """Configure structlog and route stdlib records through it.

    Args:
        log_format: "json" or "console". Defaults to env var or "console"
        log_level: Minimum level for harness loggers. Defaults to env var or "INFO"
        service_name: Bound as ``service`` on every record
        force: Reconfigure even if already configured
        transport_log_level: Minimum level for TRANSPORT_LOGGERS. Defaults to env
            var or "WARNING"
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    log_format = (log_format or os.environ.get(ENV_LOG_FORMAT, DEFAULT_LOG_FORMAT)).lower()
    log_level = (log_level or _env_level(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)).upper()
    transport_log_level = (
        transport_log_level or _env_level(ENV_TRANSPORT_LOG_LEVEL, DEFAULT_TRANSPORT_LOG_LEVEL)
    ).upper()
    service_name = service_name or os.environ.get(ENV_SERVICE_NAME, DEFAULT_SERVICE_NAME)

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level))
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(getattr(logging, transport_log_level))

    structlog.contextvars.bind_contextvars(service=service_name)
    _logging_configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for ``name``; configures defaults on first use."""
    if not _logging_configured:
        configure_logging()
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind values into every record the calling thread emits from now on.

    Example:
        >>> bind_context(test_id="tests/test_e2e.py::TestGreeting::test_hello")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
