"""
access.py - Role table for owner-gated and minter-gated operations

Every service method takes the caller's wallet id as its first argument and
checks it against an AccessControl instance before touching state.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, Set
import logging
import threading

from .core import Unauthorized

logger = logging.getLogger(__name__)


class Role(Enum):
    ADMIN = "admin"
    MINTER = "minter"
    LIQUIDATOR = "liquidator"


class AccessControl:
    """
    Capability table mapping roles to wallet ids.

    The owner holds ADMIN from construction and is the only wallet that can
    grant or revoke roles.
    """

    def __init__(self, owner: str):
        if not owner or not owner.strip():
            raise ValueError("owner cannot be empty")
        self.owner = owner
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._members[Role.ADMIN].add(owner)
        self._guard = threading.Lock()

    def has_role(self, role: Role, wallet: str) -> bool:
        with self._guard:
            return wallet in self._members[role]

    def members(self, role: Role) -> Set[str]:
        with self._guard:
            return set(self._members[role])

    def require(self, role: Role, caller: str) -> None:
        """
        Raises:
            Unauthorized: If caller does not hold role
        """
        if not self.has_role(role, caller):
            raise Unauthorized(f"{caller} lacks role {role.value}")

    def require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner")

    def require_any(self, caller: str, *roles: Role) -> None:
        if not any(self.has_role(role, caller) for role in roles):
            names = ", ".join(role.value for role in roles)
            raise Unauthorized(f"{caller} lacks any of roles {names}")

    def grant(self, caller: str, role: Role, wallet: str) -> None:
        self.require_owner(caller)
        with self._guard:
            self._members[role].add(wallet)
        logger.info("Granted %s to %s", role.value, wallet)

    def revoke(self, caller: str, role: Role, wallet: str) -> None:
        self.require_owner(caller)
        if role is Role.ADMIN and wallet == self.owner:
            raise ValueError("cannot revoke admin from the owner")
        with self._guard:
            self._members[role].discard(wallet)
        logger.info("Revoked %s from %s", role.value, wallet)

    def replace_members(self, caller: str, role: Role, wallets: Set[str]) -> None:
        """Swap the whole membership of role in one step."""
        self.require_owner(caller)
        if role is Role.ADMIN and self.owner not in wallets:
            raise ValueError("cannot revoke admin from the owner")
        with self._guard:
            self._members[role] = set(wallets)
        logger.info("Set %s to %s", role.value, sorted(wallets))
