"""Tests for the session lifecycle (scratch areas, client path, failure reporting)."""

import shutil
import stat
from pathlib import Path

import pytest

from quic_harness.config import HarnessConfig
from quic_harness.errors import (
    EmptyPayloadError,
    HandlerFailureError,
    HarnessStateError,
    ScratchAreaError,
    ScratchRemovalError,
    UnsafeScratchPathError,
)
from quic_harness.session import (
    MIN_SCRATCH_PATH_LENGTH,
    HarnessSession,
    ScratchArea,
    client_binary_name,
    create_scratch_area,
    remove_scratch_area,
    resolve_client_path,
)


class TestScratchArea:
    """Tests for scratch directory creation and guarded removal."""

    def test_created_empty_and_world_writable(self, tmp_path: Path) -> None:
        scratch = create_scratch_area("quic-upload-dest", tmp_path)
        assert scratch.path.is_dir()
        assert scratch.path.is_absolute()
        assert scratch.path.name.startswith("quic-upload-dest")
        assert list(scratch.path.iterdir()) == []
        assert stat.S_IMODE(scratch.path.stat().st_mode) == 0o777

    def test_names_are_unique(self, tmp_path: Path) -> None:
        first = create_scratch_area("quic-upload-dest", tmp_path)
        second = create_scratch_area("quic-upload-dest", tmp_path)
        assert first.path != second.path

    def test_creation_failure(self, tmp_path: Path) -> None:
        missing_root = tmp_path / "missing" / "root"
        with pytest.raises(ScratchAreaError):
            create_scratch_area("quic-upload-dest", missing_root)

    def test_remove_is_recursive(self, tmp_path: Path) -> None:
        scratch = create_scratch_area("quic-upload-dest", tmp_path)
        (scratch.path / "sub").mkdir()
        (scratch.path / "sub" / "f.txt").write_text("x")
        (scratch.path / "a.bin").write_bytes(b"\x00")
        remove_scratch_area(scratch)
        assert not scratch.path.exists()

    @pytest.mark.parametrize("path", ["/", "/tmp", "/tmp/quic", "/home/user/x"])
    def test_shallow_path_is_never_removed(self, path: str) -> None:
        assert len(path) < MIN_SCRATCH_PATH_LENGTH
        with pytest.raises(UnsafeScratchPathError) as exc_info:
            remove_scratch_area(ScratchArea(path=Path(path)))
        assert exc_info.value.path == path

    def test_files_lists_regular_files(self, tmp_path: Path) -> None:
        scratch = create_scratch_area("quic-upload-dest", tmp_path)
        (scratch.path / "b.txt").write_text("b")
        (scratch.path / "a.txt").write_text("a")
        (scratch.path / "dir").mkdir()
        assert scratch.files() == ["a.txt", "b.txt"]

    def test_removal_failure_is_reported(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        scratch = create_scratch_area("quic-upload-dest", tmp_path)

        def failing_rmtree(path: str, *args: object, **kwargs: object) -> None:
            raise PermissionError(13, "Permission denied", path)

        monkeypatch.setattr(shutil, "rmtree", failing_rmtree)
        with pytest.raises(ScratchRemovalError) as exc_info:
            remove_scratch_area(scratch)
        assert exc_info.value.path == str(scratch.path)

    def test_already_removed_is_fine(self, tmp_path: Path) -> None:
        scratch = create_scratch_area("quic-upload-dest", tmp_path)
        scratch.path.rmdir()
        remove_scratch_area(scratch)


class TestClientPath:
    @pytest.mark.parametrize(
        ("system", "name"),
        [
            ("Linux", "client-linux-debug"),
            ("Darwin", "client-darwin-debug"),
            ("Windows", "client-windows-debug"),
            ("FreeBSD", "client-freebsd-debug"),
        ],
    )
    def test_binary_name_per_os(self, system: str, name: str) -> None:
        assert client_binary_name(system) == name

    def test_resolved_under_client_dir(self, tmp_path: Path) -> None:
        path = resolve_client_path(tmp_path, "Linux")
        assert path == (tmp_path / "client-linux-debug").resolve()


class TestTestLifecycle:
    """Tests for test_setup / test_teardown on a session without a server."""

    def test_setup_creates_scratch_and_client_path(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        scratch = session.test_setup(test_id="t1")
        try:
            assert session.scratch == scratch
            assert scratch.path.is_dir()
            assert session.test_id == "t1"
            assert session.client_path is not None
            assert session.client_path.parent == local_config.client_dir.resolve()
            assert session.client_path.name == client_binary_name()
        finally:
            session.test_teardown()

    def test_teardown_removes_scratch(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        scratch = session.test_setup()
        (scratch.path / "upload.txt").write_text("x")
        session.test_teardown()
        assert not scratch.path.exists()
        assert session.scratch is None
        assert session.client_path is None
        assert session.test_id is None

    def test_each_test_gets_a_fresh_area(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        first = session.test_setup()
        session.test_teardown()
        second = session.test_setup()
        try:
            assert first.path != second.path
            assert list(second.path.iterdir()) == []
        finally:
            session.test_teardown()

    def test_teardown_refuses_unsafe_path(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        session.scratch = ScratchArea(path=Path("/tmp"))
        with pytest.raises(UnsafeScratchPathError):
            session.test_teardown()
        assert Path("/tmp").exists()

    def test_teardown_fails_when_scratch_survives(
        self, local_config: HarnessConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        session = HarnessSession(local_config)
        scratch = session.test_setup()
        monkeypatch.setattr(shutil, "rmtree", lambda path, *args, **kwargs: None)
        with pytest.raises(ScratchRemovalError, match="still exists"):
            session.test_teardown()
        monkeypatch.undo()
        remove_scratch_area(scratch)

    def test_teardown_reports_handler_failures(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        scratch = session.test_setup()
        session.record_failure(EmptyPayloadError())
        with pytest.raises(HandlerFailureError) as exc_info:
            session.test_teardown()
        assert [f.code for f in exc_info.value.failures] == ["quic:data/empty_payload"]
        assert not scratch.path.exists()
        assert session.failures == []

    def test_setup_clears_stale_failures(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        session.record_failure(EmptyPayloadError())
        session.test_setup()
        assert session.failures == []
        session.test_teardown()

    def test_take_failures(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        session.test_setup()
        session.record_failure(EmptyPayloadError())
        assert len(session.take_failures()) == 1
        session.test_teardown()

    def test_teardown_removes_checked_downloads(self, local_config: HarnessConfig) -> None:
        session = HarnessSession(local_config)
        session.test_setup()
        artifact = local_config.download_dir / "payload.bin"
        artifact.write_bytes(b"downloaded")
        assert session.verifier.get_download_size("payload.bin") == 10
        session.test_teardown()
        assert not artifact.exists()

    def test_downloads_kept_when_disabled(self, local_config: HarnessConfig) -> None:
        config = local_config.model_copy(update={"remove_downloads": False})
        session = HarnessSession(config)
        session.test_setup()
        artifact = config.download_dir / "payload.bin"
        artifact.write_bytes(b"downloaded")
        session.verifier.get_download_size("payload.bin")
        session.test_teardown()
        assert artifact.exists()

    def test_url_requires_running_server(self, local_config: HarnessConfig) -> None:
        with pytest.raises(HarnessStateError):
            HarnessSession(local_config).url("/hello")

    def test_scratch_root_from_config(self, local_config: HarnessConfig, tmp_path: Path) -> None:
        root = tmp_path / "scratch-root"
        root.mkdir()
        session = HarnessSession(local_config.model_copy(update={"scratch_root": root}))
        scratch = session.test_setup()
        try:
            assert scratch.path.parent == root.resolve()
        finally:
            session.test_teardown()
