"""Test-session lifecycle for the QUIC harness.

A HarnessSession is the explicit context shared by the server, the endpoint
handlers and the test framework hooks:

- suite_setup(): build the endpoint app once, obtain TLS credentials, start
  the HTTP/3 server on an ephemeral UDP port
- test_setup(): fresh scratch area, external client path, clean failure list
- test_teardown(): guarded recursive removal of the scratch area, verifier
  cleanup, then report handler failures recorded during the test
- suite_teardown(): bounded server shutdown

Tests must run sequentially: the current scratch area lives on the session
and is read by the server thread.

Example:
    >>> session = HarnessSession(HarnessConfig(download_dir="/tmp/downloads"))
    >>> session.suite_setup()
    >>> session.test_setup()
    >>> session.url("/hello")
    'https://127.0.0.1:53124/hello'
    >>> session.test_teardown()
    >>> session.suite_teardown()
"""

from __future__ import annotations

import os
import platform
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

from quic_harness.config import HarnessConfig
from quic_harness.data import DataManager
from quic_harness.errors import (
    HandlerFailureError,
    HarnessError,
    HarnessStateError,
    ScratchAreaError,
    ScratchRemovalError,
    UnsafeScratchPathError,
)
from quic_harness.handlers import create_app
from quic_harness.observability import bind_context, get_logger, unbind_context
from quic_harness.server import ServerHandle, start_server
from quic_harness.tls import TLSCredentials, generate_self_signed, load_credentials
from quic_harness.verifier import DownloadVerifier

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = get_logger(__name__)

# Scratch paths shorter than this are never removed recursively
MIN_SCRATCH_PATH_LENGTH = 20
SCRATCH_DIR_MODE = 0o777

_OS_NAMES = {"darwin": "darwin", "linux": "linux", "windows": "windows"}


@dataclass(frozen=True)
class ScratchArea:
    """Per-test directory that receives uploaded files."""

    path: Path

    def files(self) -> list[str]:
        return sorted(p.name for p in self.path.iterdir() if p.is_file())


def create_scratch_area(prefix: str, root: Path | None = None) -> ScratchArea:
    """Create a new, empty, world-writable directory under ``root`` (or the temp root).

    Raises:
        ScratchAreaError: If the directory cannot be created.
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=root)).resolve()
        # mkdtemp creates 0o700; the external client writes through the server
        os.chmod(path, SCRATCH_DIR_MODE)
    except OSError as exc:
        raise ScratchAreaError(str(exc), {"prefix": prefix, "root": str(root)}) from exc
    return ScratchArea(path=path)


def remove_scratch_area(scratch: ScratchArea) -> None:
    """Recursively remove a scratch area after checking its path is not shallow.

    Raises:
        UnsafeScratchPathError: If the path is shorter than MIN_SCRATCH_PATH_LENGTH.
        ScratchRemovalError: If the directory cannot be removed completely.
    """
    path = str(scratch.path)
    if len(path) < MIN_SCRATCH_PATH_LENGTH:
        raise UnsafeScratchPathError(path, MIN_SCRATCH_PATH_LENGTH)
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise ScratchRemovalError(path, str(exc)) from exc
    if os.path.lexists(path):
        raise ScratchRemovalError(path, "directory still exists after removal")


def client_binary_name(system: str | None = None) -> str:
    """Name of the external client binary for ``system`` (default: this OS)."""
    system = (system or platform.system()).lower()
    return f"client-{_OS_NAMES.get(system, system)}-debug"


def resolve_client_path(client_dir: Path, system: str | None = None) -> Path:
    return (client_dir / client_binary_name(system)).resolve()


class HarnessSession:
    """Suite-scoped harness state.

    Attributes:
        config: Harness configuration
        data_manager: Payload source for /data
        verifier: Checks artifacts downloaded by the external client
        server: Running server handle (after suite_setup)
        port: Resolved UDP port as a string (after suite_setup)
        scratch: Scratch area of the running test, or None between tests
        client_path: External client binary resolved for the running test
        test_id: Identifier of the running test, used in log events
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        data_manager: DataManager | None = None,
        verifier: DownloadVerifier | None = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.data_manager = data_manager or DataManager()
        self.verifier = verifier or DownloadVerifier(self.config.download_dir)
        self.app: FastAPI | None = None
        self.server: ServerHandle | None = None
        self.port: str | None = None
        self.scratch: ScratchArea | None = None
        self.client_path: Path | None = None
        self.test_id: str | None = None
        self._credentials: TLSCredentials | None = None
        self._failures: list[HarnessError] = []
        self._failures_lock = Lock()

    # Suite lifecycle

    def suite_setup(self) -> None:
        """Register the endpoints and start the server.

        Raises:
            HarnessStateError: If called twice.
            ServerBindError: If the UDP socket cannot be bound.
        """
        if self.app is not None:
            raise HarnessStateError("suite_setup() already ran for this session")
        self.app = create_app(self)
        self._credentials = self._load_credentials()
        try:
            self.server = start_server(
                self.app,
                self._credentials,
                bind_host=self.config.bind_host,
                connect_host=self.config.connect_host,
            )
        except HarnessError:
            self._credentials.cleanup()
            raise
        self.port = self.server.port
        logger.info("quic.suite.started", port=self.port, bind_host=self.config.bind_host)

    def _load_credentials(self) -> TLSCredentials:
        if self.config.certfile is not None and self.config.keyfile is not None:
            return load_credentials(self.config.certfile, self.config.keyfile)
        return generate_self_signed()

    def suite_teardown(self) -> None:
        """Shut the server down within config.shutdown_timeout.

        Raises:
            ServerShutdownError: If shutdown fails or times out.
        """
        server, self.server = self.server, None
        try:
            if server is not None:
                server.shutdown(self.config.shutdown_timeout)
        finally:
            if self._credentials is not None:
                self._credentials.cleanup()
            logger.info("quic.suite.stopped", port=self.port)

    # Test lifecycle

    def test_setup(self, test_id: str | None = None) -> ScratchArea:
        """Prepare a fresh scratch area and client path for one test.

        Raises:
            ServerCrashedError: If the server stopped since the last test.
            ScratchAreaError: If the scratch directory cannot be created.
        """
        if self.server is not None:
            self.server.raise_if_failed()
        with self._failures_lock:
            self._failures.clear()
        self.test_id = test_id
        if test_id is not None:
            bind_context(test_id=test_id)
        self.scratch = create_scratch_area(self.config.scratch_prefix, self.config.scratch_root)
        self.client_path = resolve_client_path(self.config.client_dir)
        logger.debug(
            "quic.scratch.created",
            path=str(self.scratch.path),
            client_path=str(self.client_path),
        )
        return self.scratch

    def test_teardown(self) -> None:
        """Remove the scratch area, clean verifier state and report handler failures.

        Raises:
            UnsafeScratchPathError: If the scratch path fails the length guard.
            ScratchRemovalError: If the scratch area cannot be removed.
            HandlerFailureError: If any handler failed during the test.
        """
        scratch, self.scratch = self.scratch, None
        if scratch is not None:
            remove_scratch_area(scratch)
            logger.debug("quic.scratch.removed", path=str(scratch.path))

        if self.config.remove_downloads:
            self.verifier.remove_download_data()
        else:
            self.verifier.reset()

        self.test_id = None
        self.client_path = None
        unbind_context("test_id")

        with self._failures_lock:
            failures, self._failures = self._failures, []
        if failures:
            raise HandlerFailureError(failures)

    # Handler support

    def record_failure(self, error: HarnessError) -> None:
        """Remember a handler failure; it fails the current test at teardown."""
        with self._failures_lock:
            self._failures.append(error)

    @property
    def failures(self) -> list[HarnessError]:
        with self._failures_lock:
            return list(self._failures)

    def take_failures(self) -> list[HarnessError]:
        """Return and forget recorded failures, for tests that expect a handler to fail."""
        with self._failures_lock:
            failures, self._failures = self._failures, []
        return failures

    def url(self, path: str = "/") -> str:
        if self.server is None:
            raise HarnessStateError("server is not running; call suite_setup() first")
        return self.server.url(path)
