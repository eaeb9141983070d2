"""Reusable payloads for bulk download tests.

The DataManager hands the same bytes to every request for ``/data`` until the
payload is prepared again with a different length or cleared, so a copy
downloaded by an external client can be compared against ``get_md5()``.

Example:
    >>> manager = DataManager()
    >>> manager.prepare_data(DATA_LEN)
    >>> len(manager.get_data())
    512000
"""

from __future__ import annotations

import hashlib
import random
from threading import RLock

from quic_harness.observability import get_logger

logger = get_logger(__name__)

DATA_LEN = 500 * 1024  # 500 KiB
DATA_LONG_LEN = 50 * 1024 * 1024  # 50 MiB

DEFAULT_SEED = 0x5155_4943


class DataManager:
    """Thread-safe holder for the generated payload.

    The payload is produced from a seeded PRNG, so two managers with the same
    seed prepare identical bytes for the same length.
    """

    def __init__(self, seed: int = DEFAULT_SEED) -> None:
        self._seed = seed
        self._data = b""
        self._md5 = b""
        self._lock = RLock()

    def prepare_data(self, length: int) -> None:
        if length <= 0:
            raise ValueError(f"Payload length must be positive, got {length}")
        with self._lock:
            if len(self._data) == length:
                return
            data = random.Random(self._seed).randbytes(length)
            self._data = data
            self._md5 = hashlib.md5(data).digest()
        logger.debug("quic.data.prepared", length=length)

    def get_data(self) -> bytes:
        """Return the current payload (empty until prepare_data is called)."""
        with self._lock:
            return self._data

    def get_md5(self) -> bytes:
        with self._lock:
            return self._md5

    def clear(self) -> None:
        with self._lock:
            self._data = b""
            self._md5 = b""
