"""Role capabilities and the actor context passed to every operation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from tally.errors import PermissionDeniedError
from tally.services.state_machine import Role


class Permission(str, Enum):
    """Capabilities checked before an operation runs."""

    RECONCILIATION_RUN = "reconciliation:run"
    EXCEPTION_WRITE = "exception:write"
    EXCEPTION_OVERRIDE = "exception:override"
    VARIANCE_WRITE = "variance:write"
    PAY_RUN_CREATE = "pay-run:create"
    PAY_RUN_REVISION = "pay-run:revision"
    PAY_RUN_ARCHIVE = "pay-run:archive"
    PACK_GENERATE = "pack:generate"
    PACK_LOCK = "pack:lock"
    PACK_DOWNLOAD = "pack:download"


_SHARED = frozenset(
    {
        Permission.RECONCILIATION_RUN,
        Permission.EXCEPTION_WRITE,
        Permission.PAY_RUN_CREATE,
        Permission.PACK_GENERATE,
        Permission.PACK_DOWNLOAD,
    }
)

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.REVIEWER: _SHARED
    | {
        Permission.EXCEPTION_OVERRIDE,
        Permission.VARIANCE_WRITE,
        Permission.PAY_RUN_REVISION,
        Permission.PACK_LOCK,
    },
    Role.PREPARER: _SHARED | {Permission.PAY_RUN_REVISION},
    Role.SYSTEM: frozenset(),
}


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, and on behalf of which firm."""

    firm_id: UUID
    user_id: UUID
    role: Role

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))


def has_permission(role: Role | str, permission: Permission) -> bool:
    """Check if a role grants a capability."""
    return permission in ROLE_PERMISSIONS.get(Role(role), frozenset())


def require_permission(actor: ActorContext, permission: Permission) -> None:
    """Raise PermissionDeniedError unless the actor's role grants the capability."""
    if not has_permission(actor.role, permission):
        raise PermissionDeniedError(
            "Permission denied",
            {"role": actor.role.value, "permission": permission.value},
        )
