# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Board identity resolution and name canonicalization.

Every code path that derives a board identity goes through
:func:`resolve_identity` so that the same board converges on the same key.
"""

import hashlib
from typing import Optional

from ..exceptions import NoIdentityError

# Length of a new-style identity (hex SHA-256 digest)
IDENTITY_LENGTH = 64

BOARD_ALIASES = {
    "CopterControl": "CC3D",
    "Revolution": "Revo",
    "RevoMini": "Revo",
}


def hash_identity(value: str) -> str:
    """Hex SHA-256 digest of an identifier."""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def resolve_identity(explicit_id: Optional[str], hardware_id: Optional[str]) -> str:
    """
    Derive a stable board identity.

    Args:
        explicit_id: UUID reported by the board, used verbatim when present
        hardware_id: CPU serial, hashed when no UUID is present

    Returns:
        Identity string

    Raises:
        NoIdentityError: If both inputs are empty
    """
    if explicit_id:
        return explicit_id
    if hardware_id:
        return hash_identity(hardware_id)
    raise NoIdentityError("no UUID or CPU ID found")


def canonical_board(name: str) -> str:
    """Map legacy board names onto their current name."""
    return BOARD_ALIASES.get(name, name)


def needs_migration(identity: str) -> bool:
    """True for old-style (short) identities."""
    return len(identity) < IDENTITY_LENGTH


def migrate_identity(identity: str) -> str:
    """
    Rewrite an old-style identity into a new-style one.

    New-style identities are returned unchanged, which makes repeated
    migration passes no-ops.
    """
    if not needs_migration(identity):
        return identity
    return hash_identity(identity)


def abbrev_os(os_name: str) -> str:
    """Collapse a GCS operating system string to Windows, Mac or Linux."""
    if os_name.startswith("Windows"):
        return "Windows"
    if os_name.startswith("OS X") or os_name.startswith("macOS"):
        return "Mac"
    return "Linux"
