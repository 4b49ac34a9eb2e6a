"""
DocVault Access Policy — Pure ALLOW/DENY decisions per (caller, file, action).

The policy is a closed table keyed by (action, role) whose value says
whether the grant needs ownership. Every grant also requires the caller
to be APPROVED. There is no role hierarchy: each action lists its roles.

    action        role       needs owner
    ------------  ---------  -----------
    READ          CUSTOMER   no   (broad read: any approved user reads any file)
    READ          MANAGER    no
    READ          ADMIN      no
    UPLOAD        CUSTOMER   yes  (self only)
    UPLOAD        MANAGER    no   (target must be a CUSTOMER)
    DELETE        ADMIN      no
    DELETE        CUSTOMER   yes
    DELETE        MANAGER    no
    TITLE_UPDATE  ADMIN      no
    TITLE_UPDATE  CUSTOMER   yes
    TITLE_UPDATE  MANAGER    no

Evaluation never raises: a missing file or target becomes DENY/NOT_FOUND.
Decisions are computed fresh on every call and never cached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from docvault.documents.models import FileReference
from docvault.security.identity import (
    ApprovalStatus,
    Caller,
    Identity,
    Role,
)

logger = logging.getLogger("docvault.security.policy")


class Action(str, enum.Enum):
    READ = "READ"
    UPLOAD = "UPLOAD"
    DELETE = "DELETE"
    TITLE_UPDATE = "TITLE_UPDATE"


class Reason(str, enum.Enum):
    ALLOWED = "ALLOWED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NOT_APPROVED = "NOT_APPROVED"
    NOT_FOUND = "NOT_FOUND"
    ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"
    NOT_OWNER = "NOT_OWNER"
    INVALID_TARGET = "INVALID_TARGET"


# (action, role) → needs_owner
POLICY_TABLE: Dict[Tuple[Action, Role], bool] = {
    (Action.READ, Role.CUSTOMER): False,
    (Action.READ, Role.MANAGER): False,
    (Action.READ, Role.ADMIN): False,
    (Action.UPLOAD, Role.CUSTOMER): True,
    (Action.UPLOAD, Role.MANAGER): False,
    (Action.DELETE, Role.ADMIN): False,
    (Action.DELETE, Role.CUSTOMER): True,
    (Action.DELETE, Role.MANAGER): False,
    (Action.TITLE_UPDATE, Role.ADMIN): False,
    (Action.TITLE_UPDATE, Role.CUSTOMER): True,
    (Action.TITLE_UPDATE, Role.MANAGER): False,
}

# Roles a file may be uploaded *for*
UPLOAD_TARGET_ROLES = frozenset({Role.CUSTOMER})


@dataclass(frozen=True)
class Decision:
    """Ephemeral access decision. `performer` is set on every ALLOW."""

    allowed: bool
    reason: Reason
    performer: Optional[Identity] = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, performer: Identity) -> "Decision":
        return cls(True, Reason.ALLOWED, performer)

    @classmethod
    def deny(cls, reason: Reason) -> "Decision":
        return cls(False, reason, None)


def decide(
    action: Action,
    role: Role,
    approval_status: ApprovalStatus,
    is_owner: bool,
) -> Tuple[bool, Reason]:
    """
    Table lookup for one (role, approval_status, action, is_owner) tuple.

    This is the whole policy; every other function only gathers inputs.
    """
    if approval_status != ApprovalStatus.APPROVED:
        return False, Reason.NOT_APPROVED
    needs_owner = POLICY_TABLE.get((action, role))
    if needs_owner is None:
        return False, Reason.ROLE_NOT_PERMITTED
    if needs_owner and not is_owner:
        return False, Reason.NOT_OWNER
    return True, Reason.ALLOWED


class AccessPolicy:
    """
    Decision entry points for the four guarded actions.

    Stateless; safe to share across requests.
    """

    def evaluate(
        self,
        action: Action,
        caller: Caller,
        file_ref: Optional[FileReference],
    ) -> Decision:
        """Decide READ / DELETE / TITLE_UPDATE on an existing file."""
        if action == Action.UPLOAD:
            raise ValueError("Use can_upload() for upload decisions")
        if not isinstance(caller, Identity):
            return Decision.deny(Reason.UNAUTHENTICATED)
        if file_ref is None:
            return Decision.deny(Reason.NOT_FOUND)

        allowed, reason = decide(
            action,
            caller.role,
            caller.approval_status,
            is_owner=file_ref.owner_user_id == caller.id,
        )
        if not allowed:
            logger.info(
                f"DENY {action.value} user={caller.id} role={caller.role.value} "
                f"key={file_ref.storage_key} reason={reason.value}"
            )
            return Decision.deny(reason)
        return Decision.allow(caller)

    def can_read(self, caller: Caller, file_ref: Optional[FileReference]) -> Decision:
        return self.evaluate(Action.READ, caller, file_ref)

    def can_delete(self, caller: Caller, file_ref: Optional[FileReference]) -> Decision:
        return self.evaluate(Action.DELETE, caller, file_ref)

    def can_update_title(self, caller: Caller, file_ref: Optional[FileReference]) -> Decision:
        return self.evaluate(Action.TITLE_UPDATE, caller, file_ref)

    def can_upload(self, caller: Caller, target: Optional[Caller]) -> Decision:
        """
        Decide whether `caller` may upload a file owned by `target`.

        `target` is the user the file is for; None means it does not exist.
        """
        if not isinstance(caller, Identity):
            return Decision.deny(Reason.UNAUTHENTICATED)
        if not isinstance(target, Identity):
            return Decision.deny(Reason.NOT_FOUND)
        if target.role not in UPLOAD_TARGET_ROLES:
            return Decision.deny(Reason.INVALID_TARGET)

        allowed, reason = decide(
            Action.UPLOAD,
            caller.role,
            caller.approval_status,
            is_owner=target.id == caller.id,
        )
        if not allowed:
            logger.info(
                f"DENY UPLOAD user={caller.id} role={caller.role.value} "
                f"target={target.id} reason={reason.value}"
            )
            return Decision.deny(reason)
        return Decision.allow(caller)
