"""Shared pytest fixtures for QUIC harness tests.

Unit tests build their own HarnessSession against temporary directories;
end-to-end tests use the plugin's session-wide server (quic_session /
quic_harness) with the download directory redirected to a temp dir.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from quic_harness.client import H3Client
from quic_harness.config import HarnessConfig
from quic_harness.handlers import create_app
from quic_harness.session import HarnessSession, remove_scratch_area

pytest_plugins = ["quic_harness.pytest_plugin"]

E2E_TIMEOUT = 120.0


@pytest.fixture(scope="session")
def harness_config(tmp_path_factory: pytest.TempPathFactory) -> HarnessConfig:
    """Session config for end-to-end tests; never touches ~/Downloads."""
    base = tmp_path_factory.mktemp("quic-harness")
    return HarnessConfig(
        download_dir=base / "downloads",
        client_dir=base / "clients",
        shutdown_timeout=10.0,
    )


@pytest.fixture
def local_config(tmp_path: Path) -> HarnessConfig:
    download_dir = tmp_path / "downloads"
    download_dir.mkdir()
    return HarnessConfig(
        download_dir=download_dir,
        client_dir=tmp_path / "clients",
        shutdown_timeout=5.0,
    )


@pytest.fixture
def local_session(local_config: HarnessConfig) -> Iterator[HarnessSession]:
    """A session with an active scratch area but no running server."""
    session = HarnessSession(local_config)
    session.test_setup(test_id="unit")
    yield session
    if session.scratch is not None:
        remove_scratch_area(session.scratch)


@pytest.fixture
def app_client(local_session: HarnessSession) -> Iterator[TestClient]:
    """In-process client for the endpoint app bound to local_session."""
    with TestClient(create_app(local_session)) as client:
        yield client


@pytest.fixture
async def h3_client(quic_harness: HarnessSession) -> AsyncIterator[H3Client]:
    """HTTP/3 connection to the session-wide server."""
    assert quic_harness.port is not None
    async with H3Client(
        quic_harness.config.connect_host, quic_harness.port, timeout=E2E_TIMEOUT
    ) as client:
        yield client
