"""Authorization rules for mutating user records."""

from __future__ import annotations

from enum import Enum

from .models import Actor, AnonymousActor, Role


class Operation(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


def can_modify(
    actor: Actor,
    target_id: int,
    operation: Operation,
    attempts_role_change: bool = False,
) -> Decision:
    """Decide whether ``actor`` may apply ``operation`` to the user ``target_id``.

    Admins may modify any record, role included. Everyone else may update or
    delete only their own record and never change a role, not even their own.
    Anonymous callers own nothing and are always denied.
    """

    if isinstance(actor, AnonymousActor):
        return Decision.DENY

    if actor.role is Role.ADMIN:
        return Decision.ALLOW

    if attempts_role_change:
        return Decision.DENY

    if operation in (Operation.UPDATE, Operation.DELETE) and actor.id == target_id:
        return Decision.ALLOW

    return Decision.DENY


__all__ = ["Decision", "Operation", "can_modify"]
