"""
Identity Certificates

Self-signed X.509 certificates binding a social-network uid to an
overlay address. The DER bytes are the opaque blob exchanged through
the DHT; everything else is derived from them.

Features:
- Fingerprint derivation (SHA-1 of DER bytes under the "svpn:" namespace)
- Subject field extraction (uid, name, pcid, version, country)
- Overlay address carried as a SubjectAlternativeName URI
- Local certificate + Ed25519 key generation
"""

import base64
import hashlib
import os
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from socialvpn.exceptions import CertificateError

logger = logging.getLogger(__name__)


# Certificate constants
DHT_PREFIX = "svpn:"  # Namespace for certificate keys in the DHT
MIN_KEY_LENGTH = 45  # Prefix + 40 hex chars (SHA-1)
MIN_UID_LENGTH = 6  # Anything shorter is not a usable social identifier
CERT_FILENAME = "local.cert"
CERT_SUFFIX = ".cert"
VERSION = "SVPN_0.3.X"
CERT_VALIDITY_DAYS = 3650


def get_hash_string(data: bytes) -> str:
    """Uppercase hex SHA-1 digest of data."""
    return hashlib.sha1(data).hexdigest().upper()


def compute_fingerprint(cert_data: bytes) -> str:
    """
    Compute the fingerprint (and DHT key) of a certificate.

    Args:
        cert_data: DER-encoded certificate bytes

    Returns:
        "svpn:" followed by the SHA-1 hex digest
    """
    return DHT_PREFIX + get_hash_string(cert_data)


def is_valid_key(key) -> bool:
    """Check that a fingerprint is long enough to be a DHT key."""
    return isinstance(key, str) and len(key) >= MIN_KEY_LENGTH


def is_valid_uid(uid) -> bool:
    """Check that a social identifier is long enough to be real."""
    return isinstance(uid, str) and len(uid) >= MIN_UID_LENGTH


def generate_overlay_address() -> str:
    """Generate a random 160-bit overlay address."""
    return "brunet:node:" + base64.b32encode(os.urandom(20)).decode("ascii")


def _name_attr(name: x509.Name, oid) -> str:
    attrs = name.get_attributes_for_oid(oid)
    return attrs[0].value if attrs else ""


@dataclass(frozen=True)
class IdentityCertificate:
    """Parsed view of a certificate blob. Immutable once created."""

    data: bytes
    uid: str
    address: str
    fingerprint: str
    name: str = ""
    pcid: str = ""
    version: str = ""
    country: str = ""

    @classmethod
    def from_bytes(cls, data: bytes) -> "IdentityCertificate":
        """
        Parse DER certificate bytes.

        Args:
            data: DER-encoded X.509 certificate

        Returns:
            IdentityCertificate

        Raises:
            CertificateError: if the bytes are not a certificate or lack
                a uid or overlay address
        """
        data = bytes(data)
        try:
            cert = x509.load_der_x509_certificate(data)
        except (ValueError, TypeError) as e:
            raise CertificateError(f"Unparseable certificate: {e}") from e

        subject = cert.subject
        uid = _name_attr(subject, NameOID.USER_ID)
        if not uid:
            raise CertificateError("Certificate carries no user id")

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            uris = san.value.get_values_for_type(x509.UniformResourceIdentifier)
        except x509.ExtensionNotFound:
            uris = []
        if not uris:
            raise CertificateError(f"Certificate for {uid} carries no overlay address")

        return cls(
            data=data,
            uid=uid,
            address=uris[0],
            fingerprint=compute_fingerprint(data),
            name=_name_attr(subject, NameOID.COMMON_NAME),
            pcid=_name_attr(subject, NameOID.ORGANIZATIONAL_UNIT_NAME),
            version=_name_attr(subject, NameOID.ORGANIZATION_NAME),
            country=_name_attr(subject, NameOID.COUNTRY_NAME),
        )

    @classmethod
    def from_base64(cls, cert_b64: str) -> "IdentityCertificate":
        """Parse a base64 string (newlines tolerated)."""
        try:
            data = base64.b64decode(cert_b64.replace("\n", ""), validate=True)
        except (ValueError, TypeError) as e:
            raise CertificateError(f"Invalid base64 certificate: {e}") from e
        return cls.from_bytes(data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def build_certificate(
    uid: str,
    name: str,
    address: str,
    pcid: str = "",
    version: str = VERSION,
    country: str = "US",
    private_key: Optional[ed25519.Ed25519PrivateKey] = None
) -> Tuple[bytes, ed25519.Ed25519PrivateKey]:
    """
    Build and self-sign an identity certificate.

    Args:
        uid: Social-network identifier (e.g. "alice@example.org")
        name: Display name
        address: Overlay address of the peer
        pcid: PC identifier, distinguishes devices of the same user
        version: Software version recorded in the certificate
        country: Two-letter country code
        private_key: Existing Ed25519 key (generated if omitted)

    Returns:
        (DER bytes, private key)
    """
    if private_key is None:
        private_key = ed25519.Ed25519PrivateKey.generate()

    attributes = [x509.NameAttribute(NameOID.USER_ID, uid)]
    if name:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, name))
    if pcid:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, pcid))
    if version:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, version))
    if country:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, country))
    subject = x509.Name(attributes)

    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)  # Self-signed
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=CERT_VALIDITY_DAYS))
        .add_extension(
            x509.SubjectAlternativeName([x509.UniformResourceIdentifier(address)]),
            critical=False
        )
    )

    # Ed25519 signatures take no separate hash algorithm
    cert = builder.sign(private_key, algorithm=None)
    return cert.public_bytes(serialization.Encoding.DER), private_key


def create_certificate(
    uid: str,
    name: str,
    pcid: str,
    version: str,
    country: str,
    address: str,
    cert_dir: Path,
    key_path: Path
) -> IdentityCertificate:
    """
    Create the local certificate and private key on disk.

    Writes <cert_dir>/local.cert (DER) and key_path (PEM, PKCS8).

    Returns:
        Parsed local certificate
    """
    der, private_key = build_certificate(
        uid=uid,
        name=name,
        address=address,
        pcid=pcid,
        version=version,
        country=country
    )

    cert_dir = Path(cert_dir)
    key_path = Path(key_path)
    cert_dir.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)

    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    with open(key_path, "wb") as f:
        f.write(pem)

    with open(cert_dir / CERT_FILENAME, "wb") as f:
        f.write(der)

    cert = IdentityCertificate.from_bytes(der)
    logger.info(f"Created local certificate {cert.fingerprint[:16]}... for {uid}")
    return cert
