"""Tests for the pytest plugin's registration and per-test fixture."""

import pytest

from quic_harness.session import HarnessSession, client_binary_name


def test_marker_registered(request: pytest.FixtureRequest) -> None:
    markers = request.config.getini("markers")
    assert any(marker.startswith("quic_integration:") for marker in markers)


def test_options_registered(request: pytest.FixtureRequest) -> None:
    assert request.config.getoption("quic_shutdown_timeout") == 10.0


@pytest.mark.quic_integration
class TestQuicHarnessFixture:
    def test_scratch_and_client_path(self, quic_harness: HarnessSession) -> None:
        assert quic_harness.scratch is not None
        assert quic_harness.scratch.path.is_dir()
        assert quic_harness.client_path is not None
        assert quic_harness.client_path.name == client_binary_name()
        assert quic_harness.port is not None

    def test_test_id_is_node_id(
        self, quic_harness: HarnessSession, request: pytest.FixtureRequest
    ) -> None:
        assert quic_harness.test_id == request.node.nodeid

    def test_payload_fixture(self, quic_harness: HarnessSession, small_payload: bytes) -> None:
        assert len(small_payload) == 500 * 1024
        assert quic_harness.data_manager.get_data() == small_payload
