"""Persistence of the trust bundle to the canonical PKI layout.

Primary files under the PKI directory are the source of truth; failing to
write one fails the step. The CA certificate is also copied to convenience
paths other services read it from. Those copies are best effort: a failure
is logged and reported, and the dependent service surfaces it through its
own readiness probe.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509

from ..shared.logging import get_logger
from .issuer import ROLE_ADMIN, ROLE_API_SERVER, TrustBundle, private_key_pem, public_key_pem

logger = get_logger(__name__)

CERT_MODE = 0o644
KEY_MODE = 0o600


@dataclass(frozen=True)
class PkiLayout:
    """Canonical file names of the persisted trust material."""

    pki_dir: Path
    ca_copies: tuple[Path, ...] = ()

    @property
    def ca_cert(self) -> Path:
        return self.pki_dir / "ca.crt"

    @property
    def ca_key(self) -> Path:
        return self.pki_dir / "ca.key"

    @property
    def sa_key(self) -> Path:
        return self.pki_dir / "sa.key"

    @property
    def sa_pub(self) -> Path:
        return self.pki_dir / "sa.pub"

    @property
    def token_file(self) -> Path:
        return self.pki_dir / "token.csv"

    def cert(self, role: str) -> Path:
        return self.pki_dir / f"{role}.crt"

    def key(self, role: str) -> Path:
        return self.pki_dir / f"{role}.key"

    @property
    def admin_cert(self) -> Path:
        return self.cert(ROLE_ADMIN)

    @property
    def admin_key(self) -> Path:
        return self.key(ROLE_ADMIN)

    @property
    def apiserver_cert(self) -> Path:
        return self.cert(ROLE_API_SERVER)

    @property
    def apiserver_key(self) -> Path:
        return self.key(ROLE_API_SERVER)

    @classmethod
    def from_config(cls, config) -> PkiLayout:
        """Layout for an InstallerConfig: PKI dir plus the kubelet's CA paths."""
        return cls(
            pki_dir=config.pki_dir,
            ca_copies=(config.kubelet_pki_dir / "ca.crt", config.kubelet_dir / "ca.crt"),
        )


@dataclass
class PersistReport:
    """Files written by persist() and the fan-out copies that failed."""

    written: list[Path] = field(default_factory=list)
    failed_copies: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_copies


def write_file(path: Path, data: bytes, mode: int) -> None:
    """Write data to path with the given permission bits.

    The file is created with mode already applied so a private key is never
    readable by others, even briefly. Existing files are truncated and
    re-chmodded.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)
    os.chmod(path, mode)


def copy_to(data: bytes, destinations: Iterable[Path], mode: int = CERT_MODE) -> list[tuple[Path, str]]:
    """Write data to every destination, collecting failures instead of raising."""
    failures: list[tuple[Path, str]] = []
    for destination in destinations:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            write_file(destination, data, mode)
        except OSError as e:
            logger.warning("trust_copy_failed", destination=str(destination), error=str(e))
            failures.append((destination, str(e)))
    return failures


def persist(bundle: TrustBundle, layout: PkiLayout) -> PersistReport:
    """Write every certificate/key pair of bundle to layout.

    Certificates and public keys are world-readable, private keys owner-only.

    Raises:
        OSError: If a primary file under the PKI directory cannot be written
    """
    if not layout.pki_dir.is_dir():
        raise FileNotFoundError(
            f"PKI directory does not exist: {layout.pki_dir} (create directories first)"
        )

    report = PersistReport()

    def _write(path: Path, data: bytes, mode: int) -> None:
        write_file(path, data, mode)
        report.written.append(path)

    ca_pem = bundle.root.cert_pem()
    _write(layout.ca_cert, ca_pem, CERT_MODE)
    _write(layout.ca_key, bundle.root.key_pem(), KEY_MODE)

    for role, issued in bundle.leaves.items():
        _write(layout.cert(role), issued.cert_pem(), CERT_MODE)
        _write(layout.key(role), issued.key_pem(), KEY_MODE)

    if bundle.service_account is not None:
        _write(layout.sa_key, private_key_pem(bundle.service_account), KEY_MODE)
        _write(layout.sa_pub, public_key_pem(bundle.service_account), CERT_MODE)

    report.failed_copies = copy_to(ca_pem, layout.ca_copies)
    report.written.extend(p for p in layout.ca_copies if p not in dict(report.failed_copies))

    logger.info(
        "trust_bundle_persisted",
        pki_dir=str(layout.pki_dir),
        files=len(report.written),
        failed_copies=len(report.failed_copies),
    )
    return report


def load_certificate(path: Path) -> x509.Certificate:
    """Read a PEM certificate from disk."""
    return x509.load_pem_x509_certificate(path.read_bytes())
