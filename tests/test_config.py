"""Tests for HarnessConfig."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from quic_harness.config import MAX_UPLOAD_SIZE, PROJECT_ROOT, HarnessConfig

_ENV_NAMES = (
    "BIND_HOST",
    "CONNECT_HOST",
    "SHUTDOWN_TIMEOUT",
    "DOWNLOAD_DIR",
    "CLIENT_DIR",
    "CERTFILE",
    "KEYFILE",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_NAMES:
        monkeypatch.delenv(f"QUIC_HARNESS_{name}", raising=False)
    return monkeypatch


class TestDefaults:
    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        config = HarnessConfig.from_env()
        assert config.bind_host == "0.0.0.0"
        assert config.connect_host == "127.0.0.1"
        assert config.shutdown_timeout == 10.0
        assert config.scratch_prefix == "quic-upload-dest"
        assert config.download_dir == Path.home() / "Downloads"
        assert config.client_dir == PROJECT_ROOT / "quic-clients"
        assert config.max_upload_size == MAX_UPLOAD_SIZE
        assert config.remove_downloads is True
        assert config.certfile is None

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            HarnessConfig(shutdown_timeout=0)


class TestFromEnv:
    def test_reads_prefixed_variables(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        clean_env.setenv("QUIC_HARNESS_DOWNLOAD_DIR", str(tmp_path / "dl"))
        clean_env.setenv("QUIC_HARNESS_SHUTDOWN_TIMEOUT", "2.5")
        clean_env.setenv("QUIC_HARNESS_BIND_HOST", "::")
        config = HarnessConfig.from_env()
        assert config.download_dir == tmp_path / "dl"
        assert config.shutdown_timeout == 2.5
        assert config.bind_host == "::"

    def test_empty_values_are_ignored(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("QUIC_HARNESS_CONNECT_HOST", "")
        assert HarnessConfig.from_env().connect_host == "127.0.0.1"

    def test_invalid_value(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("QUIC_HARNESS_SHUTDOWN_TIMEOUT", "soon")
        with pytest.raises(ValidationError):
            HarnessConfig.from_env()
