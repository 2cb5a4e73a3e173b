"""TLS material loading for the secure listener.

Key and certificate are read once at startup. Provisioning certificates is
out of scope; point the configuration at existing PEM files.
"""

import hashlib
import logging
import ssl
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class TLSConfig:
    """TLS configuration for the secure listener."""

    cert_path: Path
    key_path: Path
    fingerprint: str

    @classmethod
    def from_paths(cls, cert_path: Path, key_path: Path) -> "TLSConfig":
        """Create config from existing certificate files.

        Args:
            cert_path: Path to PEM certificate file
            key_path: Path to PEM key file

        Returns:
            TLSConfig with computed fingerprint

        Raises:
            FileNotFoundError: If files don't exist
            ValueError: If the certificate is not valid PEM
        """
        cert_path = Path(cert_path)
        key_path = Path(key_path)
        if not cert_path.exists():
            raise FileNotFoundError(f"Certificate not found: {cert_path}")
        if not key_path.exists():
            raise FileNotFoundError(f"Key not found: {key_path}")

        fingerprint = get_cert_fingerprint(cert_path)
        return cls(cert_path=cert_path, key_path=key_path, fingerprint=fingerprint)

    def create_context(self) -> ssl.SSLContext:
        """Server-side SSL context with this key/cert pair loaded.

        Raises:
            ssl.SSLError: If key and certificate don't match or can't be parsed
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(
            certfile=str(self.cert_path),
            keyfile=str(self.key_path),
        )
        return context


def get_cert_fingerprint(cert_path: Path) -> str:
    """Get SHA256 fingerprint of a certificate.

    Args:
        cert_path: Path to PEM certificate file

    Returns:
        SHA256 fingerprint as hex string with colons (e.g., "AB:CD:EF:...")
    """
    der = ssl.PEM_cert_to_DER_cert(Path(cert_path).read_text(encoding="ascii"))
    digest = hashlib.sha256(der).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))
