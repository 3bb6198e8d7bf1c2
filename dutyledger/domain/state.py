from __future__ import annotations

from enum import Enum

from dutyledger.errors import TicketServiceError

from .types import AUTHORITY_ROLES, Role, TicketSnapshot, TicketStatus, TransitionResult


class TransitionViolation(str, Enum):
    """Rule broken by a rejected transition."""

    TERMINAL_STATE = "terminal_state"
    INVALID_TRANSITION = "invalid_transition"
    NOT_RECURRING = "not_recurring"
    AUTHORITY_REQUIRED = "authority_required"


class TicketTransitionError(TicketServiceError):
    """Raised when a requested status change breaks a lifecycle rule."""

    def __init__(
        self,
        message: str,
        *,
        ticket_id: str,
        from_status: TicketStatus,
        to_status: TicketStatus,
        violation: TransitionViolation,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.ticket_id = ticket_id
        self.from_status = from_status
        self.to_status = to_status
        self.violation = violation


class TicketStateMachine:
    """Validate ticket lifecycle transitions against role and recurrence rules."""

    TERMINAL_STATES: frozenset[TicketStatus] = frozenset({TicketStatus.CLOSED, TicketStatus.SKIPPED})

    TRANSITIONS: dict[TicketStatus, tuple[TicketStatus, ...]] = {
        TicketStatus.OPEN: (TicketStatus.IN_PROGRESS, TicketStatus.SKIPPED),
        TicketStatus.IN_PROGRESS: (TicketStatus.NEEDS_REVIEW, TicketStatus.SKIPPED),
        TicketStatus.NEEDS_REVIEW: (TicketStatus.CLOSED, TicketStatus.IN_PROGRESS),
        TicketStatus.CLOSED: (),
        TicketStatus.SKIPPED: (),
    }

    AUTHORITY_TRANSITIONS: frozenset[tuple[TicketStatus, TicketStatus]] = frozenset(
        {
            (TicketStatus.NEEDS_REVIEW, TicketStatus.CLOSED),
            (TicketStatus.NEEDS_REVIEW, TicketStatus.IN_PROGRESS),
            (TicketStatus.OPEN, TicketStatus.SKIPPED),
            (TicketStatus.IN_PROGRESS, TicketStatus.SKIPPED),
        }
    )

    REJECTION: tuple[TicketStatus, TicketStatus] = (TicketStatus.NEEDS_REVIEW, TicketStatus.IN_PROGRESS)

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def allowed_targets(cls, current: TicketStatus) -> tuple[TicketStatus, ...]:
        return cls.TRANSITIONS.get(current, ())

    @classmethod
    def requires_authority(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return (current, new) in cls.AUTHORITY_TRANSITIONS

    @classmethod
    def validate(
        cls,
        current: TicketStatus,
        new: TicketStatus,
        actor_role: Role,
        ticket: TicketSnapshot,
    ) -> TransitionResult:
        """Check a transition and report whether it sends work back for rework.

        Rules apply in a fixed order: terminal states first, then the base graph,
        then the recurrence gate, then the authority gate.
        """

        if current in cls.TERMINAL_STATES:
            if current == TicketStatus.CLOSED:
                detail = "Closed tickets have no outgoing transitions. Create a new ticket for recurring issues."
            else:
                detail = "Skipped tickets cannot be transitioned."
            raise cls._error(
                f"Ticket {ticket.id} is {current.value}. {detail}",
                ticket,
                current,
                new,
                TransitionViolation.TERMINAL_STATE,
            )

        targets = cls.allowed_targets(current)
        if new not in targets:
            allowed = ", ".join(target.value for target in targets)
            raise cls._error(
                f"Invalid transition: {current.value} -> {new.value}. "
                f"Valid transitions from '{current.value}': [{allowed}].",
                ticket,
                current,
                new,
                TransitionViolation.INVALID_TRANSITION,
            )

        if new == TicketStatus.SKIPPED and not ticket.is_recurring:
            raise cls._error(
                f"Ticket {ticket.id} cannot be skipped: only recurring ticket instances may be skipped.",
                ticket,
                current,
                new,
                TransitionViolation.NOT_RECURRING,
            )

        if cls.requires_authority(current, new) and actor_role not in AUTHORITY_ROLES:
            required = " or ".join(sorted(role.value for role in AUTHORITY_ROLES))
            raise cls._error(
                f"Transition {current.value} -> {new.value} requires authority role ({required}). "
                f"Actor role: {getattr(actor_role, 'value', actor_role)}.",
                ticket,
                current,
                new,
                TransitionViolation.AUTHORITY_REQUIRED,
            )

        return TransitionResult(is_rejection=(current, new) == cls.REJECTION)

    @classmethod
    def can_transition(
        cls,
        current: TicketStatus,
        new: TicketStatus,
        actor_role: Role,
        ticket: TicketSnapshot,
    ) -> bool:
        try:
            cls.validate(current, new, actor_role, ticket)
        except TicketTransitionError:
            return False
        return True

    @staticmethod
    def _error(
        message: str,
        ticket: TicketSnapshot,
        current: TicketStatus,
        new: TicketStatus,
        violation: TransitionViolation,
    ) -> TicketTransitionError:
        return TicketTransitionError(
            message,
            ticket_id=ticket.id,
            from_status=current,
            to_status=new,
            violation=violation,
        )


def validate_transition(
    current: TicketStatus,
    new: TicketStatus,
    actor_role: Role,
    ticket: TicketSnapshot,
) -> TransitionResult:
    """Module-level shortcut for :meth:`TicketStateMachine.validate`."""

    return TicketStateMachine.validate(current, new, actor_role, ticket)
