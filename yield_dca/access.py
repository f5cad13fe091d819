"""Role based access control.

Mirrors OpenZeppelin ``AccessControl`` semantics the on-chain engine used:

- Roles are 32 byte ids, see :py:data:`yield_dca.constants.ADMIN_ROLE` and :py:data:`yield_dca.constants.KEEPER_ROLE`
- Admin role holders grant and revoke every role
- Granting a role someone already has, or revoking a missing one, changes nothing and emits nothing
"""

import logging
from typing import Callable

from eth_typing import HexAddress

from yield_dca.constants import ADMIN_ROLE, KEEPER_ROLE
from yield_dca.dca.journal import StateJournal
from yield_dca.errors import MissingRole
from yield_dca.events import RoleGranted, RoleRevoked
from yield_dca.lower_case_dict import LowercaseDict
from yield_dca.utils import checksum_address


logger = logging.getLogger(__name__)


#: Human readable role names for error messages
ROLE_NAMES = {
    ADMIN_ROLE: "ADMIN_ROLE",
    KEEPER_ROLE: "KEEPER_ROLE",
}


def get_role_name(role: bytes) -> str:
    return ROLE_NAMES.get(role, "0x" + bytes(role).hex())


class AccessControl:
    """Role membership of one engine."""

    def __init__(self, journal: StateJournal, emit: Callable):
        self.journal = journal
        self.emit = emit
        self._members: dict[bytes, LowercaseDict] = {}

    def has_role(self, role: bytes, account: HexAddress) -> bool:
        members = self._members.get(role)
        return members is not None and account in members

    def require_role(self, role: bytes, account: HexAddress):
        """:raise MissingRole: If account does not hold the role."""
        if not self.has_role(role, account):
            raise MissingRole(f"Account {account} is missing role {get_role_name(role)}", role=role, account=account)

    def _grant(self, role: bytes, account: HexAddress, sender: HexAddress):
        assert len(role) == 32, f"Role id must be 32 bytes: {role!r}"
        account = checksum_address(account)
        if self.has_role(role, account):
            return
        members = self._members.setdefault(role, LowercaseDict())
        self.journal.remember(members, account)
        members[account] = True
        logger.info("Granted %s to %s by %s", get_role_name(role), account, sender)
        self.emit(RoleGranted(role=role, account=account, sender=sender))

    def _revoke(self, role: bytes, account: HexAddress, sender: HexAddress):
        if not self.has_role(role, account):
            return
        members = self._members[role]
        self.journal.remember(members, account)
        del members[account]
        logger.info("Revoked %s from %s by %s", get_role_name(role), account, sender)
        self.emit(RoleRevoked(role=role, account=account, sender=sender))

    def setup_role(self, role: bytes, account: HexAddress):
        """Initial role assignment at deployment, no caller check."""
        self._grant(role, account, sender=account)

    def grant_role(self, caller: HexAddress, role: bytes, account: HexAddress):
        self.require_role(ADMIN_ROLE, caller)
        self._grant(role, account, sender=caller)

    def revoke_role(self, caller: HexAddress, role: bytes, account: HexAddress):
        self.require_role(ADMIN_ROLE, caller)
        self._revoke(role, account, sender=caller)

    def renounce_role(self, caller: HexAddress, role: bytes):
        """Give up a role of your own."""
        self._revoke(role, caller, sender=caller)

    def get_members(self, role: bytes) -> list[str]:
        """Lowercased member addresses."""
        return list(self._members.get(role, {}).keys())
