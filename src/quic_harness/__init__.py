"""QUIC Harness - HTTP/3 transport exercise suite.

Stands up one HTTP/3 server per test session, gives every test an isolated
scratch directory and serves a fixed set of endpoints (greeting, bulk data,
echo, upload form, upload ingestion) used to prove that payloads survive
transit byte for byte.
"""

__version__ = "0.3.0"
