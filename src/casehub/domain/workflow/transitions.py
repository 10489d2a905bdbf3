"""Case-request state machine: statuses, actions and the transition table.

Everything that decides whether an action is legal for a given status lives
here. Callers (engine, services, API) must not re-derive editability or
allowed actions from status strings on their own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set

from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.profile import Identity, UserRole


class RequestAction(str, Enum):
    CREATE = "create"
    ACCEPT = "accept"
    DELETE = "delete"
    REQUEST_ADJUSTMENT = "request_adjustment"
    ALLOW_EDIT = "allow_edit"
    DENY_ADJUSTMENT = "deny_adjustment"
    EDIT = "edit"
    PROPOSE_CANCELLATION = "propose_cancellation"
    CONFIRM_CANCELLATION = "confirm_cancellation"
    WITHDRAW_CANCELLATION = "withdraw_cancellation"
    REJECT_CANCELLATION = "reject_cancellation"
    DELIVER_REPORT = "deliver_report"
    SUBMIT_PRE_REPORT = "submit_pre_report"


class Party(str, Enum):
    """The capacity in which a user is involved in a specific request."""

    ATTORNEY = "attorney"
    PHYSICIAN = "physician"
    SPECIALIST = "specialist"


PARTY_ROLES: Dict[Party, UserRole] = {
    Party.ATTORNEY: UserRole.ATTORNEY,
    Party.PHYSICIAN: UserRole.GENERAL_PHYSICIAN,
    Party.SPECIALIST: UserRole.SPECIALIST,
}

# Statuses in which the request's fields may still be edited.
UNLOCKED_STATUSES: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.PENDING, RequestStatus.ADJUSTING, RequestStatus.CANCELLATION_REQUESTED}
)

# Statuses in which the assigned physician may still be replaced.
PHYSICIAN_MUTABLE_STATUSES: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.PENDING, RequestStatus.ADJUSTING}
)

TERMINAL_STATUSES: FrozenSet[RequestStatus] = frozenset({RequestStatus.COMPLETED})

# Editing a request that was re-opened for adjustment sends it back for
# acceptance. Edits in other unlocked statuses keep the status.
EDIT_TARGETS: Dict[RequestStatus, RequestStatus] = {
    RequestStatus.ADJUSTING: RequestStatus.PENDING,
}


@dataclass(frozen=True)
class Transition:
    action: RequestAction
    sources: FrozenSet[RequestStatus]
    parties: FrozenSet[Party]
    # None means the status is kept (or, for deleting/reverting actions,
    # computed by the engine).
    target: Optional[RequestStatus] = None
    deletes: bool = False
    reverts: bool = False


def _t(
    action: RequestAction,
    sources: Set[RequestStatus],
    parties: Set[Party],
    target: Optional[RequestStatus] = None,
    *,
    deletes: bool = False,
    reverts: bool = False,
) -> Transition:
    return Transition(action, frozenset(sources), frozenset(parties), target, deletes, reverts)


_NEGOTIABLE = {RequestStatus.SCHEDULING, RequestStatus.ADJUSTING, RequestStatus.ADJUSTMENT_REQUESTED}
_BOTH = {Party.ATTORNEY, Party.PHYSICIAN}

TRANSITIONS: Dict[RequestAction, Transition] = {
    t.action: t
    for t in [
        _t(RequestAction.ACCEPT, {RequestStatus.PENDING}, {Party.PHYSICIAN}, RequestStatus.SCHEDULING),
        _t(RequestAction.DELETE, {RequestStatus.PENDING}, {Party.ATTORNEY}, deletes=True),
        _t(
            RequestAction.REQUEST_ADJUSTMENT,
            {RequestStatus.SCHEDULING},
            {Party.ATTORNEY},
            RequestStatus.ADJUSTMENT_REQUESTED,
        ),
        _t(RequestAction.ALLOW_EDIT, {RequestStatus.ADJUSTMENT_REQUESTED}, {Party.PHYSICIAN}, RequestStatus.ADJUSTING),
        _t(
            RequestAction.DENY_ADJUSTMENT,
            {RequestStatus.ADJUSTMENT_REQUESTED},
            {Party.PHYSICIAN},
            RequestStatus.SCHEDULING,
        ),
        _t(RequestAction.EDIT, set(UNLOCKED_STATUSES), {Party.ATTORNEY}),
        _t(
            RequestAction.PROPOSE_CANCELLATION,
            _NEGOTIABLE,
            _BOTH,
            RequestStatus.CANCELLATION_REQUESTED,
        ),
        _t(RequestAction.CONFIRM_CANCELLATION, {RequestStatus.CANCELLATION_REQUESTED}, _BOTH, deletes=True),
        _t(RequestAction.WITHDRAW_CANCELLATION, {RequestStatus.CANCELLATION_REQUESTED}, _BOTH, reverts=True),
        _t(RequestAction.REJECT_CANCELLATION, {RequestStatus.CANCELLATION_REQUESTED}, _BOTH, reverts=True),
        _t(
            RequestAction.DELIVER_REPORT,
            {RequestStatus.SCHEDULING, RequestStatus.ADJUSTMENT_REQUESTED},
            {Party.PHYSICIAN},
            RequestStatus.COMPLETED,
        ),
        _t(
            RequestAction.SUBMIT_PRE_REPORT,
            {RequestStatus.SCHEDULING, RequestStatus.ADJUSTMENT_REQUESTED},
            {Party.PHYSICIAN, Party.SPECIALIST},
        ),
    ]
}

# Cancellation actions are further restricted to one side of the proposal.
INITIATOR_ONLY: FrozenSet[RequestAction] = frozenset({RequestAction.WITHDRAW_CANCELLATION})
COUNTERPARTY_ONLY: FrozenSet[RequestAction] = frozenset(
    {RequestAction.CONFIRM_CANCELLATION, RequestAction.REJECT_CANCELLATION}
)


def is_locked(status: RequestStatus) -> bool:
    """True when the request's fields can no longer be edited."""

    return status not in UNLOCKED_STATUSES


def can_perform(role: UserRole, action: RequestAction, status: Optional[RequestStatus]) -> bool:
    """Role-level check: may a user with ``role`` perform ``action`` in ``status``?

    This ignores which specific users are involved in a request; use
    :func:`allowed_actions` for a concrete request and caller. ``status`` is
    None for CREATE, which has no source status.
    """

    if action == RequestAction.CREATE:
        return role == UserRole.ATTORNEY and status is None

    transition = TRANSITIONS[action]
    if status is None or status not in transition.sources:
        return False
    return any(PARTY_ROLES[party] == role for party in transition.parties)


def parties_for(request: CaseRequest, identity: Identity) -> Set[Party]:
    """Return the capacities in which ``identity`` takes part in ``request``."""

    parties: Set[Party] = set()
    if identity.role == UserRole.ATTORNEY and identity.user_id == request.attorney_id:
        parties.add(Party.ATTORNEY)
    if identity.role == UserRole.GENERAL_PHYSICIAN and identity.user_id == request.physician_id:
        parties.add(Party.PHYSICIAN)
    if identity.role == UserRole.SPECIALIST and request.specialist_id is not None:
        if identity.user_id == request.specialist_id:
            parties.add(Party.SPECIALIST)
    return parties


def counterparty_of(request: CaseRequest, user_id) -> Optional[Party]:
    if user_id == request.attorney_id:
        return Party.PHYSICIAN
    if user_id == request.physician_id:
        return Party.ATTORNEY
    return None


def allowed_actions(request: CaseRequest, identity: Identity) -> List[RequestAction]:
    """Actions ``identity`` may perform on ``request`` right now."""

    parties = parties_for(request, identity)
    if not parties:
        return []

    actions: List[RequestAction] = []
    for action, transition in TRANSITIONS.items():
        if request.status not in transition.sources:
            continue
        if not parties & transition.parties:
            continue
        if action in INITIATOR_ONLY and request.cancel_requested_by != identity.user_id:
            continue
        if action in COUNTERPARTY_ONLY and request.cancel_requested_by == identity.user_id:
            continue
        actions.append(action)
    return actions
