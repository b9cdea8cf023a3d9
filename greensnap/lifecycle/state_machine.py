"""Report status transition table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from greensnap.errors import Forbidden, InvalidTransition, PreconditionFailed
from greensnap.models.report import ReportStatus
from greensnap.models.user import Role, User


class Action(Enum):
    ASSIGN = "assign"
    RESOLVE = "resolve"
    MARK_OUT_OF_SCOPE = "mark_out_of_scope"
    MARK_PERMANENT_RESOLVED = "mark_permanent_resolved"
    REJECT = "reject"


@dataclass(frozen=True)
class Transition:
    source: ReportStatus
    target: ReportStatus
    roles: frozenset[Role]
    # Message used when the source status does not match
    precondition: str | None = None


TRANSITIONS: dict[Action, Transition] = {
    Action.ASSIGN: Transition(
        ReportStatus.PENDING,
        ReportStatus.IN_PROGRESS,
        frozenset({Role.SUPERVISOR, Role.ADMIN}),
    ),
    Action.RESOLVE: Transition(
        ReportStatus.IN_PROGRESS,
        ReportStatus.RESOLVED,
        frozenset({Role.SUPERVISOR}),
    ),
    Action.MARK_OUT_OF_SCOPE: Transition(
        ReportStatus.PENDING,
        ReportStatus.OUT_OF_SCOPE,
        frozenset({Role.SUPERVISOR}),
    ),
    Action.MARK_PERMANENT_RESOLVED: Transition(
        ReportStatus.RESOLVED,
        ReportStatus.PERMANENT_RESOLVED,
        frozenset({Role.ADMIN}),
        precondition="Report must be resolved first",
    ),
    Action.REJECT: Transition(
        ReportStatus.RESOLVED,
        ReportStatus.REJECTED,
        frozenset({Role.ADMIN}),
        precondition="Report must be resolved first",
    ),
}

TERMINAL_STATES = frozenset(
    {ReportStatus.PERMANENT_RESOLVED, ReportStatus.REJECTED, ReportStatus.OUT_OF_SCOPE}
)


def allowed_actions(status: ReportStatus) -> list[Action]:
    return [action for action, t in TRANSITIONS.items() if t.source is status]


def authorize(action: Action, actor: User) -> Transition:
    """Raise Forbidden unless the actor's role may perform ``action``."""
    transition = TRANSITIONS[action]
    if actor.role not in transition.roles:
        raise Forbidden(f"Role '{actor.role.value}' cannot {action.value.replace('_', ' ')} reports")
    return transition


def check_transition(action: Action, current: ReportStatus) -> Transition:
    """Raise InvalidTransition unless ``action`` is permitted from ``current``."""
    transition = TRANSITIONS[action]
    if current is not transition.source:
        if transition.precondition:
            raise PreconditionFailed(
                current.value, transition.target.value, transition.precondition
            )
        raise InvalidTransition(current.value, transition.target.value)
    return transition


def next_statuses(status: ReportStatus) -> list[ReportStatus]:
    """Statuses reachable from ``status`` in one transition."""
    return [TRANSITIONS[action].target for action in allowed_actions(status)]
