"""Certificate issuance for the cluster trust chain.

One self-signed root authority signs every leaf. The chain is regenerated
from scratch on every install, so there is no rotation, revocation or
intermediate authority.
"""

from __future__ import annotations

import datetime
import ipaddress
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..errors import KeyGenerationError, SigningError
from ..shared.network import is_loopback

KEY_SIZE = 2048
ROOT_SERIAL = 1

ROOT_COMMON_NAME = "kubernetes-ca"
ROOT_ORGANIZATION = "Kubernetes"

# First address of the service cluster IP range; the in-cluster API endpoint.
SERVICE_CLUSTER_IP = "10.0.0.1"

API_SERVER_DNS_NAMES = (
    "kubernetes",
    "kubernetes.default",
    "kubernetes.default.svc",
    "kubernetes.default.svc.cluster.local",
    "localhost",
)

# Bundle role names
ROLE_ADMIN = "admin"
ROLE_API_SERVER = "apiserver"


class LeafRole(Enum):
    """Extended key usage a leaf certificate is issued for."""

    CLIENT = "client"
    SERVER = "server"


_EKU = {
    LeafRole.CLIENT: ExtendedKeyUsageOID.CLIENT_AUTH,
    LeafRole.SERVER: ExtendedKeyUsageOID.SERVER_AUTH,
}

_serial_lock = threading.Lock()
_last_serial = 0


def next_serial() -> int:
    """Serial number for a leaf, derived from issuance time.

    Strictly increasing within this process even when two leaves are issued
    in the same clock tick.
    """
    global _last_serial
    with _serial_lock:
        _last_serial = max(time.time_ns(), _last_serial + 1)
        return _last_serial


@dataclass(frozen=True)
class IssuedCertificate:
    """A certificate and the private key it certifies."""

    cert: x509.Certificate
    key: rsa.RSAPrivateKey

    @property
    def common_name(self) -> str:
        return self.cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value

    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)

    def key_pem(self) -> bytes:
        return private_key_pem(self.key)


@dataclass(frozen=True)
class TrustBundle:
    """Root authority, its leaves and the service-account signing key."""

    root: IssuedCertificate
    leaves: Mapping[str, IssuedCertificate] = field(default_factory=dict)
    service_account: rsa.RSAPrivateKey | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "leaves", MappingProxyType(dict(self.leaves)))

    def leaf(self, role: str) -> IssuedCertificate:
        return self.leaves[role]


def private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    """PKCS#1 PEM ("RSA PRIVATE KEY"), unencrypted."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    """SubjectPublicKeyInfo PEM ("PUBLIC KEY") of a private key."""
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def generate_key(key_size: int = KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Raises:
        KeyGenerationError: If the backend cannot produce a key.
    """
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except Exception as e:
        raise KeyGenerationError(message=f"Failed to generate {key_size}-bit RSA key: {e}") from e


def _name(common_name: str, organization: str | None = None) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    return x509.Name(attributes)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def issue_root(
    validity_days: int = 3650,
    common_name: str = ROOT_COMMON_NAME,
    organization: str = ROOT_ORGANIZATION,
) -> IssuedCertificate:
    """Generate a self-signed certificate authority.

    Args:
        validity_days: Lifetime of the root certificate
        common_name: Subject CN
        organization: Subject O

    Returns:
        IssuedCertificate for the root

    Raises:
        KeyGenerationError: If the key cannot be generated
        SigningError: If the certificate cannot be built
    """
    key = generate_key()
    subject = _name(common_name, organization)
    now = _now()

    try:
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(ROOT_SERIAL)
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(private_key=key, algorithm=hashes.SHA256())
        )
    except Exception as e:
        raise SigningError(message=f"Failed to self-sign root certificate: {e}") from e

    return IssuedCertificate(cert=cert, key=key)


def server_alt_names(host_ip: str | None = None) -> x509.SubjectAlternativeName:
    """SANs for the API endpoint: loopback, service IP, host IP, cluster DNS aliases."""
    ips = [ipaddress.ip_address("127.0.0.1"), ipaddress.ip_address(SERVICE_CLUSTER_IP)]
    if host_ip and not is_loopback(host_ip):
        try:
            address = ipaddress.ip_address(host_ip)
        except ValueError:
            address = None
        if address is not None and address not in ips:
            ips.append(address)

    general_names: list[x509.GeneralName] = [x509.IPAddress(ip) for ip in ips]
    general_names.extend(x509.DNSName(name) for name in API_SERVER_DNS_NAMES)
    return x509.SubjectAlternativeName(general_names)


def issue_leaf(
    root: IssuedCertificate,
    subject_name: str,
    roles: Iterable[LeafRole],
    validity_days: int = 365,
    organization: str | None = None,
    host_ip: str | None = None,
) -> IssuedCertificate:
    """Generate a leaf certificate signed by root.

    Args:
        root: Signing authority
        subject_name: Subject CN
        roles: Client and/or server usage; drives EKU and SANs
        validity_days: Lifetime of the leaf
        organization: Optional subject O (group membership for client certs)
        host_ip: Advertised host address added to server SANs

    Returns:
        IssuedCertificate for the leaf

    Raises:
        KeyGenerationError: If the key cannot be generated
        SigningError: If the certificate cannot be built or signed
    """
    roles = list(dict.fromkeys(roles))
    if not roles:
        raise SigningError(message=f"No roles requested for leaf '{subject_name}'")

    key = generate_key()
    now = _now()

    try:
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(subject_name, organization))
            .issuer_name(root.cert.subject)
            .public_key(key.public_key())
            .serial_number(next_serial())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([_EKU[role] for role in roles]), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(root.key.public_key()),
                critical=False,
            )
        )
        if LeafRole.SERVER in roles:
            builder = builder.add_extension(server_alt_names(host_ip), critical=False)
        cert = builder.sign(private_key=root.key, algorithm=hashes.SHA256())
    except Exception as e:
        raise SigningError(message=f"Failed to sign certificate for '{subject_name}': {e}") from e

    return IssuedCertificate(cert=cert, key=key)


def issue_bundle(
    host_ip: str | None = None,
    ca_validity_days: int = 3650,
    leaf_validity_days: int = 365,
) -> TrustBundle:
    """Issue the complete trust bundle for a single-node cluster.

    Roles: root authority, admin client (system:masters), API server
    endpoint (server + client), service-account signing key.
    """
    root = issue_root(validity_days=ca_validity_days)
    admin = issue_leaf(
        root,
        "admin",
        [LeafRole.CLIENT],
        validity_days=leaf_validity_days,
        organization="system:masters",
    )
    api_server = issue_leaf(
        root,
        "kube-apiserver",
        [LeafRole.SERVER, LeafRole.CLIENT],
        validity_days=leaf_validity_days,
        host_ip=host_ip,
    )
    service_account = generate_key()

    return TrustBundle(
        root=root,
        leaves={ROLE_ADMIN: admin, ROLE_API_SERVER: api_server},
        service_account=service_account,
    )


def verify_chain(leaf: x509.Certificate, root: x509.Certificate) -> bool:
    """Whether leaf was issued and signed by root."""
    if leaf.issuer != root.subject:
        return False
    try:
        leaf.verify_directly_issued_by(root)
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True
