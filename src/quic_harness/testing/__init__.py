"""Testing utilities for HTTP/3 round-trip tests.

Modules:
    assertions: Custom assertions (assert_download_matches, assert_uploaded_file,
              assert_upload_form).

Example:
    >>> from quic_harness.testing import assert_uploaded_file
    >>> assert_uploaded_file(session.scratch.path, "a.txt", b"hello")
"""

from quic_harness.testing.assertions import (
    assert_download_matches,
    assert_upload_form,
    assert_uploaded_file,
)

__all__ = [
    "assert_download_matches",
    "assert_upload_form",
    "assert_uploaded_file",
]
