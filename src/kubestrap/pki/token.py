"""Bootstrap credential for the API server's static token file.

The file uses the kube-apiserver --token-auth-file CSV format:
token,user,uid,"group1,group2"
"""

from __future__ import annotations

import secrets
from pathlib import Path

from ..shared.logging import get_logger
from .store import KEY_MODE, write_file

logger = get_logger(__name__)

BOOTSTRAP_USER = "system:bootstrap"
BOOTSTRAP_UID = "10001"
BOOTSTRAP_GROUPS = "system:bootstrappers"


def generate_token() -> str:
    """Random bearer token (32 hex characters)."""
    return secrets.token_hex(16)


def ensure_token_file(path: Path, token: str | None = None) -> str:
    """Create the token file if missing and return the token it holds.

    An existing file with a readable token is left untouched so re-running
    the installer keeps the credential the running API server already knows.

    Args:
        path: Token file location
        token: Token to write when creating the file (random if None)

    Returns:
        The bootstrap token.
    """
    existing = read_bootstrap_token(path)
    if existing:
        logger.debug("bootstrap_token_exists", path=str(path))
        return existing

    token = token or generate_token()
    line = f'{token},{BOOTSTRAP_USER},{BOOTSTRAP_UID},"{BOOTSTRAP_GROUPS}"\n'
    path.parent.mkdir(parents=True, exist_ok=True)
    write_file(path, line.encode(), KEY_MODE)
    logger.info("bootstrap_token_created", path=str(path))
    return token


def read_bootstrap_token(path: Path) -> str | None:
    """Return the token of the first entry in a token file.

    Blank lines and # comments are skipped. Returns None when the file is
    missing or holds no entry.
    """
    try:
        content = path.read_text()
    except OSError:
        return None

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        token = line.split(",", 1)[0].strip()
        if token:
            return token
    return None
