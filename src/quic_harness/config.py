"""Configuration for the QUIC harness."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

ENV_PREFIX = "QUIC_HARNESS_"

PROJECT_ROOT = Path(__file__).resolve().parents[2]

MAX_UPLOAD_SIZE = 100 * (1 << 20)


class HarnessConfig(BaseModel):
    bind_host: str = Field(default="0.0.0.0", description="Interface the UDP socket binds to")
    connect_host: str = Field(
        default="127.0.0.1", description="Host clients use to reach the server"
    )
    shutdown_timeout: float = Field(
        default=10.0, gt=0, description="Seconds suite teardown waits for server shutdown"
    )
    scratch_prefix: str = Field(
        default="quic-upload-dest", min_length=1, description="Name prefix for scratch dirs"
    )
    scratch_root: Path | None = Field(
        default=None, description="Parent of scratch dirs (default: system temp root)"
    )
    download_dir: Path = Field(
        default_factory=lambda: Path.home() / "Downloads",
        description="Directory the external client deposits downloads into",
    )
    remove_downloads: bool = Field(
        default=True, description="Delete checked downloads at test teardown"
    )
    client_dir: Path = Field(
        default=PROJECT_ROOT / "quic-clients",
        description="Directory holding client-<os>-debug binaries",
    )
    max_upload_size: int = Field(default=MAX_UPLOAD_SIZE, gt=0)
    certfile: Path | None = Field(default=None, description="PEM certificate for the server")
    keyfile: Path | None = Field(default=None, description="PEM private key for the server")

    @classmethod
    def from_env(cls) -> HarnessConfig:
        """Build a config from QUIC_HARNESS_* environment variables."""
        values: dict[str, str] = {}
        for name in (
            "bind_host",
            "connect_host",
            "shutdown_timeout",
            "download_dir",
            "client_dir",
            "certfile",
            "keyfile",
        ):
            raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw:
                values[name] = raw
        return cls.model_validate(values)
