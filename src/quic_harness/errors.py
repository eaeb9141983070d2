"""QUIC Harness Error Taxonomy.

This module defines the error hierarchy for the harness. Every error carries
a code following the ``quic:<area>/<reason>`` pattern, a human-readable
message, optional details and the HTTP status used when the error is raised
inside an endpoint handler.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base exception for all harness errors.

    Attributes:
        code: Error code following the quic:... pattern
        message: Human-readable error message
        details: Optional additional error context
        status_code: HTTP status returned when raised inside a handler
    """

    status_code = 500

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class FatalHarnessError(HarnessError):
    """Raised for conditions the suite must not continue past.

    The pytest plugin converts these into ``pytest.exit`` instead of a
    regular test failure.
    """


class HarnessStateError(HarnessError):
    """Raised when a lifecycle operation is called out of order."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="quic:session/invalid_state", message=message, details=details)


class ServerBindError(FatalHarnessError):
    """Raised when the datagram socket cannot be bound or its port resolved."""

    def __init__(self, host: str, reason: str) -> None:
        super().__init__(
            code="quic:server/bind_failed",
            message=f"Could not bind UDP socket on {host}: {reason}",
            details={"host": host, "reason": reason},
        )
        self.host = host


class ServerShutdownError(HarnessError):
    """Raised when the server fails to shut down cleanly within its timeout."""

    def __init__(self, reason: str, timeout: float, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="quic:server/shutdown_failed",
            message=f"Server shutdown failed: {reason}",
            details={"reason": reason, "timeout": timeout, **(details or {})},
        )
        self.timeout = timeout


class ServerCrashedError(HarnessError):
    """Raised when the background serving task has stopped unexpectedly."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            code="quic:server/crashed",
            message=f"Server task stopped unexpectedly: {reason}",
            details={"reason": reason},
        )


class ScratchAreaError(HarnessError):
    """Raised when a per-test scratch directory cannot be created."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="quic:scratch/create_failed",
            message=f"Could not create scratch area: {reason}",
            details=details,
        )


class ScratchRemovalError(HarnessError):
    """Raised when a scratch directory cannot be removed at test teardown."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            code="quic:scratch/remove_failed",
            message=f"Could not remove scratch area {path}: {reason}",
            details={"path": path, "reason": reason},
        )
        self.path = path


class UnsafeScratchPathError(FatalHarnessError):
    """Raised when a scratch path looks too shallow to delete recursively."""

    def __init__(self, path: str, min_length: int) -> None:
        super().__init__(
            code="quic:scratch/unsafe_path",
            message=f"Refusing to remove scratch path {path!r}: shorter than {min_length} chars",
            details={"path": path, "min_length": min_length},
        )
        self.path = path


class NoScratchAreaError(HarnessError):
    """Raised when an upload arrives while no test owns a scratch area."""

    status_code = 409

    def __init__(self) -> None:
        super().__init__(
            code="quic:scratch/not_active",
            message="No scratch area is active; uploads require a running test",
        )


class InvalidQueryParameterError(HarnessError):
    """Raised when a required query parameter is missing or malformed."""

    status_code = 400

    def __init__(self, name: str, value: str | None, reason: str) -> None:
        super().__init__(
            code="quic:request/invalid_query",
            message=f"Invalid query parameter {name!r}: {reason}",
            details={"name": name, "value": value},
        )
        self.name = name
        self.value = value


class EmptyPayloadError(HarnessError):
    """Raised when the data manager has no payload to serve."""

    def __init__(self) -> None:
        super().__init__(
            code="quic:data/empty_payload",
            message="Data manager returned an empty payload; call prepare_data() first",
        )


class UploadTooLargeError(HarnessError):
    """Raised when a multipart body exceeds the configured ceiling."""

    status_code = 413

    def __init__(self, size: int, max_size: int) -> None:
        super().__init__(
            code="quic:upload/too_large",
            message=f"Upload of {size} bytes exceeds the {max_size} byte limit",
            details={"size": size, "max_size": max_size},
        )


class InvalidUploadError(HarnessError):
    """Raised when an uploaded file declares a name that is not a plain filename."""

    status_code = 400

    def __init__(self, field: str, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="quic:upload/invalid_file",
            message=f"Invalid upload in field {field!r}: {reason}",
            details={"field": field, **(details or {})},
        )


class NoUploadedFilesError(HarnessError):
    """Raised when an upload request carries no sequential file fields."""

    status_code = 400

    def __init__(self, first_field: str) -> None:
        super().__init__(
            code="quic:upload/no_files",
            message=f"Upload contained no files (expected field {first_field!r})",
            details={"first_field": first_field},
        )


class TransferError(HarnessError):
    """Raised when copying request or response bytes fails."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            code="quic:transfer/io_error",
            message=f"I/O error during {operation}: {reason}",
            details={"operation": operation, "reason": reason},
        )


class HandlerFailureError(HarnessError):
    """Raised at test teardown when handlers recorded failures during the test.

    Attributes:
        failures: The handler errors in the order they were recorded
    """

    def __init__(self, failures: list[HarnessError]) -> None:
        summary = "; ".join(f"{f.code}: {f.message}" for f in failures)
        super().__init__(
            code="quic:handler/failed",
            message=f"{len(failures)} handler failure(s) during test: {summary}",
            details={"failures": [f.to_dict() for f in failures]},
        )
        self.failures = failures
