"""Pay run state machine with role-aware transition validation."""

from __future__ import annotations

from enum import Enum

from tally.errors import InvalidTransitionError, ValidationError


class PayRunStatus(str, Enum):
    """Persisted pay run status values."""

    DRAFT = "DRAFT"
    IMPORTED = "IMPORTED"
    MAPPED = "MAPPED"
    RECONCILING = "RECONCILING"
    RECONCILED = "RECONCILED"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    APPROVED = "APPROVED"
    PACKED = "PACKED"
    LOCKED = "LOCKED"
    ARCHIVED = "ARCHIVED"


# Display-only status: RECONCILED with at least one open exception.
EXCEPTIONS_OPEN = "EXCEPTIONS_OPEN"


class Role(str, Enum):
    """Actor roles. SYSTEM is internal and never assigned to a user."""

    ADMIN = "ADMIN"
    PREPARER = "PREPARER"
    REVIEWER = "REVIEWER"
    SYSTEM = "SYSTEM"


_ANY_USER = frozenset({Role.ADMIN, Role.PREPARER, Role.REVIEWER})
_REVIEWERS = frozenset({Role.ADMIN, Role.REVIEWER})
_PREPARERS = frozenset({Role.ADMIN, Role.PREPARER})


class PayRunStateMachine:
    """Single source of truth for pay run transitions.

    Allowed transitions (with roles):
    - DRAFT → IMPORTED, IMPORTED → MAPPED (admin, preparer)
    - IMPORTED/MAPPED/RECONCILED → RECONCILING (any user)
    - RECONCILING → RECONCILED (system)
    - RECONCILED → READY_FOR_REVIEW (admin, reviewer)
    - READY_FOR_REVIEW → APPROVED or back to RECONCILED (admin, reviewer)
    - APPROVED → PACKED (any user)
    - PACKED → APPROVED (reopen) and PACKED → LOCKED (admin, reviewer)
    - any non-locked, non-archived status → ARCHIVED (admin)
    """

    # Define valid transitions: {from_status: {to_status: allowed_roles}}
    VALID_TRANSITIONS: dict[PayRunStatus, dict[PayRunStatus, frozenset[Role]]] = {
        PayRunStatus.DRAFT: {PayRunStatus.IMPORTED: _PREPARERS},
        PayRunStatus.IMPORTED: {
            PayRunStatus.MAPPED: _PREPARERS,
            PayRunStatus.RECONCILING: _ANY_USER,
        },
        PayRunStatus.MAPPED: {PayRunStatus.RECONCILING: _ANY_USER},
        PayRunStatus.RECONCILING: {PayRunStatus.RECONCILED: frozenset({Role.SYSTEM})},
        PayRunStatus.RECONCILED: {
            PayRunStatus.RECONCILING: _ANY_USER,
            PayRunStatus.READY_FOR_REVIEW: _REVIEWERS,
        },
        PayRunStatus.READY_FOR_REVIEW: {
            PayRunStatus.APPROVED: _REVIEWERS,
            PayRunStatus.RECONCILED: _REVIEWERS,
        },
        PayRunStatus.APPROVED: {PayRunStatus.PACKED: _ANY_USER},
        PayRunStatus.PACKED: {
            PayRunStatus.APPROVED: _REVIEWERS,
            PayRunStatus.LOCKED: _REVIEWERS,
        },
        PayRunStatus.LOCKED: {},
        PayRunStatus.ARCHIVED: {},  # Terminal state
    }

    ARCHIVE_ROLES = frozenset({Role.ADMIN})

    # Statuses in which exceptions and variances attached to the run are frozen
    FROZEN = frozenset({PayRunStatus.LOCKED, PayRunStatus.ARCHIVED})

    @staticmethod
    def _status(value: str) -> PayRunStatus:
        try:
            return PayRunStatus(value)
        except ValueError:
            raise ValidationError(f"Unknown pay run status '{value}'") from None

    @classmethod
    def allowed_roles(cls, from_status: str, to_status: str) -> frozenset[Role]:
        """Roles allowed to perform a transition (empty if not a valid edge)."""
        source = cls._status(from_status)
        target = cls._status(to_status)
        if target == PayRunStatus.ARCHIVED:
            return frozenset() if source in cls.FROZEN else cls.ARCHIVE_ROLES
        return cls.VALID_TRANSITIONS.get(source, {}).get(target, frozenset())

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is a valid edge, regardless of role."""
        return bool(cls.allowed_roles(from_status, to_status))

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, role: Role | str | None = None
    ) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid.

        When ``role`` is given it must be one of the roles allowed on the edge.
        """
        source = cls._status(from_status).value
        target = cls._status(to_status).value
        roles = cls.allowed_roles(source, target)
        if not roles:
            raise InvalidTransitionError(source, target)
        if role is not None and Role(role) not in roles:
            raise InvalidTransitionError(
                source, target, f"role {Role(role).value} may not perform it"
            )

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[PayRunStatus]:
        """Get list of valid next statuses from current status."""
        source = cls._status(current_status)
        targets = list(cls.VALID_TRANSITIONS.get(source, {}))
        if source not in cls.FROZEN:
            targets.append(PayRunStatus.ARCHIVED)
        return targets

    @classmethod
    def is_frozen(cls, status: str) -> bool:
        """Whether exception and variance mutations are blocked in this status."""
        return cls._status(status) in cls.FROZEN

    @classmethod
    def derive_display_status(cls, status: str, open_exception_count: int) -> str:
        """Status shown to users; never persisted."""
        if cls._status(status) == PayRunStatus.RECONCILED and open_exception_count > 0:
            return EXCEPTIONS_OPEN
        return cls._status(status).value
