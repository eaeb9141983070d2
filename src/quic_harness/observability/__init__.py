"""Observability module for the QUIC harness.

Structured logging shared by the server thread, the lifecycle hooks and the
pytest plugin.

Example:
    >>> from quic_harness.observability import get_logger
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info("quic.scratch.created", path="/tmp/quic-upload-dest1234")
"""

from quic_harness.observability.logging import (
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    "bind_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
