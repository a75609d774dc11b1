"""PKI package for the cluster trust chain.

This package issues and persists the material every service needs before
it can start:
1. A self-signed root authority
2. Admin client and API server leaf certificates signed by the root
3. The service-account signing key pair
4. A bootstrap bearer token for the API server's token file
"""

from .issuer import (
    ROLE_ADMIN,
    ROLE_API_SERVER,
    IssuedCertificate,
    LeafRole,
    TrustBundle,
    issue_bundle,
    issue_leaf,
    issue_root,
    verify_chain,
)
from .store import PersistReport, PkiLayout, load_certificate, persist
from .token import ensure_token_file, read_bootstrap_token

__all__ = [
    # Issuance
    "IssuedCertificate",
    "LeafRole",
    "TrustBundle",
    "issue_root",
    "issue_leaf",
    "issue_bundle",
    "verify_chain",
    "ROLE_ADMIN",
    "ROLE_API_SERVER",
    # Persistence
    "PkiLayout",
    "PersistReport",
    "persist",
    "load_certificate",
    # Bootstrap credential
    "ensure_token_file",
    "read_bootstrap_token",
]
