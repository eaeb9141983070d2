"""TLS credentials for the QUIC handshake.

QUIC always runs over TLS 1.3, so the server needs a certificate even in
tests. Operators can supply PEM files; otherwise a short-lived self-signed
ECDSA certificate for ``localhost`` is generated into a private directory.
"""

from __future__ import annotations

import ipaddress
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from quic_harness.observability import get_logger

logger = get_logger(__name__)

DEFAULT_HOSTNAME = "localhost"
CERT_VALIDITY_DAYS = 7
# Owner read/write only for the generated private key.
KEY_FILE_MODE = 0o600


@dataclass
class TLSCredentials:
    cert_file: Path
    key_file: Path
    generated_dir: Path | None = None

    def cleanup(self) -> None:
        """Remove generated material; supplied files are left alone."""
        if self.generated_dir is not None:
            shutil.rmtree(self.generated_dir, ignore_errors=True)
            self.generated_dir = None


def load_credentials(cert_file: str | Path, key_file: str | Path) -> TLSCredentials:
    cert_path = Path(cert_file)
    key_path = Path(key_file)
    if not cert_path.exists():
        raise FileNotFoundError(f"Certificate file not found: {cert_path}")
    if not key_path.exists():
        raise FileNotFoundError(f"Key file not found: {key_path}")
    return TLSCredentials(cert_file=cert_path, key_file=key_path)


def generate_self_signed(hostname: str = DEFAULT_HOSTNAME) -> TLSCredentials:
    """Write a self-signed certificate and key (PEM) to a new temp directory."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=CERT_VALIDITY_DAYS))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName(hostname),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                    x509.IPAddress(ipaddress.ip_address("::1")),
                ]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    directory = Path(tempfile.mkdtemp(prefix="quic-harness-tls-"))
    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    key_path.chmod(KEY_FILE_MODE)
    logger.debug("quic.tls.generated", hostname=hostname, directory=str(directory))
    return TLSCredentials(cert_file=cert_path, key_file=key_path, generated_dir=directory)
