"""Checks on artifacts downloaded by the external client.

The download directory belongs to the client process. The verifier only reads
from it, except for ``remove_download_data`` which deletes the artifacts a test
asked about so the next test starts from a clean directory.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from threading import RLock

from quic_harness.observability import get_logger

logger = get_logger(__name__)

_READ_CHUNK = 1 << 20


def is_plain_name(filename: str) -> bool:
    """True if ``filename`` names an entry directly inside a directory."""
    if not filename or filename in (".", "..") or "\x00" in filename:
        return False
    return Path(filename).name == filename and "\\" not in filename


class DownloadVerifier:
    """Report size and MD5 of files in a download directory.

    Attributes:
        download_dir: Directory the external client writes downloads into
    """

    def __init__(self, download_dir: str | Path) -> None:
        self.download_dir = Path(download_dir)
        self._checked: set[str] = set()
        self._lock = RLock()

    def _path(self, filename: str) -> Path:
        # Only plain names directly inside download_dir are eligible for removal
        if is_plain_name(filename):
            with self._lock:
                self._checked.add(filename)
        return self.download_dir / filename

    def get_download_size(self, filename: str) -> int:
        """Size in bytes of a downloaded file, or 0 if it does not exist."""
        try:
            return self._path(filename).stat().st_size
        except OSError:
            return 0

    def get_download_md5(self, filename: str) -> bytes | None:
        """MD5 digest of a downloaded file, or None if it cannot be read."""
        md5 = hashlib.md5()
        try:
            with self._path(filename).open("rb") as f:
                for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                    md5.update(chunk)
        except OSError:
            return None
        return md5.digest()

    def remove_download_data(self) -> None:
        """Delete every artifact checked since the last call and forget them."""
        with self._lock:
            checked, self._checked = self._checked, set()
        root = self.download_dir.resolve()
        for filename in sorted(checked):
            path = self.download_dir / filename
            if path.resolve().parent != root:
                logger.warning(
                    "quic.download.skipped", path=str(path), reason="outside download dir"
                )
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            logger.debug("quic.download.removed", path=str(path))

    def reset(self) -> None:
        """Forget checked artifacts without touching the download directory."""
        with self._lock:
            self._checked.clear()
