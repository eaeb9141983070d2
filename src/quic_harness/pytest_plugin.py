"""Pytest plugin for the QUIC harness.

Provides:
- Fixtures: harness_config, quic_session (session scope), quic_harness
  (function scope), small_payload, large_payload
- Marker: @pytest.mark.quic_integration

Enable it with ``pytest_plugins = ["quic_harness.pytest_plugin"]`` in a
conftest.py. Tests that use these fixtures must not run in parallel.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from quic_harness.config import ENV_PREFIX, HarnessConfig
from quic_harness.data import DATA_LEN, DATA_LONG_LEN
from quic_harness.errors import FatalHarnessError
from quic_harness.observability import get_logger
from quic_harness.session import HarnessSession

logger = get_logger(__name__)

MARKER_NAME = "quic_integration"
MARKER_HELP = "Marks a test as an HTTP/3 transport integration test."

# pytest.exit return code for unrecoverable harness conditions
EXIT_FATAL = 3


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for the harness."""
    group = parser.getgroup("quic-harness", description="QUIC harness options")
    group.addoption(
        "--quic-download-dir",
        action="store",
        dest="quic_download_dir",
        default=os.environ.get(f"{ENV_PREFIX}DOWNLOAD_DIR"),
        help="Directory the external client downloads into (default: ~/Downloads)",
    )
    group.addoption(
        "--quic-client-dir",
        action="store",
        dest="quic_client_dir",
        default=os.environ.get(f"{ENV_PREFIX}CLIENT_DIR"),
        help="Directory holding client-<os>-debug binaries",
    )
    group.addoption(
        "--quic-shutdown-timeout",
        action="store",
        type=float,
        dest="quic_shutdown_timeout",
        default=10.0,
        help="Seconds to wait for server shutdown at the end of the suite (default: 10.0)",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register the quic_integration marker."""
    config.addinivalue_line("markers", f"{MARKER_NAME}: {MARKER_HELP}")


@pytest.fixture(scope="session")
def harness_config(request: pytest.FixtureRequest) -> HarnessConfig:
    """HarnessConfig from environment, overridden by the --quic-* options."""
    config = HarnessConfig.from_env()
    overrides: dict[str, object] = {
        "shutdown_timeout": request.config.getoption("quic_shutdown_timeout", default=10.0),
    }
    download_dir = request.config.getoption("quic_download_dir", default=None)
    if download_dir:
        overrides["download_dir"] = Path(download_dir)
    client_dir = request.config.getoption("quic_client_dir", default=None)
    if client_dir:
        overrides["client_dir"] = Path(client_dir)
    return config.model_copy(update=overrides)


@pytest.fixture(scope="session")
def quic_session(harness_config: HarnessConfig) -> Iterator[HarnessSession]:
    """One running HTTP/3 server for the whole test session.

    Bootstrap failures abort the run; shutdown failures are reported as an
    error of the last test using the fixture.
    """
    session = HarnessSession(harness_config)
    try:
        session.suite_setup()
    except FatalHarnessError as exc:
        pytest.exit(f"QUIC harness bootstrap failed: {exc.message}", returncode=EXIT_FATAL)
    yield session
    session.suite_teardown()


@pytest.fixture
def quic_harness(
    quic_session: HarnessSession, request: pytest.FixtureRequest
) -> Iterator[HarnessSession]:
    """Per-test scratch area on the shared session.

    Yields the session with ``scratch`` and ``client_path`` set. After the
    test the scratch area is removed and handler failures fail the test.
    """
    quic_session.test_setup(test_id=request.node.nodeid)
    yield quic_session
    try:
        quic_session.test_teardown()
    except FatalHarnessError as exc:
        logger.critical("quic.harness.fatal", code=exc.code, error=exc.message)
        pytest.exit(f"QUIC harness stopped: {exc.message}", returncode=EXIT_FATAL)


@pytest.fixture
def small_payload(quic_session: HarnessSession) -> bytes:
    """Prepare and return the small (500 KiB) payload served at /data."""
    quic_session.data_manager.prepare_data(DATA_LEN)
    return quic_session.data_manager.get_data()


@pytest.fixture
def large_payload(quic_session: HarnessSession) -> bytes:
    """Prepare and return the large (50 MiB) payload served at /data."""
    quic_session.data_manager.prepare_data(DATA_LONG_LEN)
    return quic_session.data_manager.get_data()
