from dataclasses import dataclass

from autoservice.models.enums import RequestStatus, UserRole

ASSIGNED_MECHANIC = "assigned_mechanic"
ADMIN = UserRole.ADMIN.value

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.REJECTED,
})

# A mechanic must be assigned whenever the request is in one of these.
CLAIMED_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.IN_PROGRESS,
    RequestStatus.PARTS_NEEDED,
    RequestStatus.QUALITY_CHECK,
    RequestStatus.AWAITING_PAYMENT,
    RequestStatus.COMPLETED,
})

# total_cost may only be non-null in these.
BILLED_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.AWAITING_PAYMENT,
    RequestStatus.COMPLETED,
})

# Assignment can still change while the job is unclaimed.
ASSIGNABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.APPROVED,
})


@dataclass(frozen=True)
class TransitionRule:
    actors: frozenset[str]
    required_fields: frozenset[str] = frozenset()


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    required_fields: frozenset[str]


def _rule(*actors: str, required: tuple[str, ...] = ()) -> TransitionRule:
    return TransitionRule(actors=frozenset(actors), required_fields=frozenset(required))


# Authoritative (current, next) -> who may trigger it and what must accompany it.
TRANSITIONS: dict[RequestStatus, dict[RequestStatus, TransitionRule]] = {
    RequestStatus.PENDING: {
        RequestStatus.APPROVED: _rule(ADMIN, required=("assigned_mechanic_id",)),
    },
    RequestStatus.APPROVED: {
        RequestStatus.IN_PROGRESS: _rule(ADMIN, ASSIGNED_MECHANIC),
    },
    RequestStatus.IN_PROGRESS: {
        RequestStatus.PARTS_NEEDED: _rule(ASSIGNED_MECHANIC, required=("mechanic_notes",)),
        RequestStatus.QUALITY_CHECK: _rule(ASSIGNED_MECHANIC, required=("mechanic_notes",)),
        RequestStatus.AWAITING_PAYMENT: _rule(ASSIGNED_MECHANIC, required=("mechanic_notes",)),
    },
    RequestStatus.PARTS_NEEDED: {
        RequestStatus.IN_PROGRESS: _rule(ASSIGNED_MECHANIC),
    },
    RequestStatus.QUALITY_CHECK: {
        RequestStatus.IN_PROGRESS: _rule(ASSIGNED_MECHANIC),
        RequestStatus.AWAITING_PAYMENT: _rule(ASSIGNED_MECHANIC, required=("mechanic_notes",)),
    },
    RequestStatus.AWAITING_PAYMENT: {
        RequestStatus.COMPLETED: _rule(ADMIN, required=("total_cost", "payment_method")),
    },
    RequestStatus.COMPLETED: {},  # Terminal state
    RequestStatus.REJECTED: {},  # Terminal state
}

# Any non-terminal request may be rejected by an admin.
for _status, _edges in TRANSITIONS.items():
    if _status not in TERMINAL_STATUSES:
        _edges[RequestStatus.REJECTED] = _rule(ADMIN, required=("admin_notes",))
del _status, _edges


def is_terminal(status: RequestStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_transition(current: RequestStatus, target: RequestStatus) -> bool:
    """True when the table has an edge current -> target for some actor."""
    return target in TRANSITIONS.get(current, {})


def next_statuses(current: RequestStatus) -> frozenset[RequestStatus]:
    return frozenset(TRANSITIONS.get(current, {}))


def get_rule(current: RequestStatus, target: RequestStatus) -> TransitionRule | None:
    return TRANSITIONS.get(current, {}).get(target)


def allowed_transition(
    current: RequestStatus,
    requested_next: RequestStatus,
    actor_role: UserRole,
) -> TransitionCheck:
    """Look up whether ``actor_role`` may move a request from ``current`` to ``requested_next``.

    Mechanic rules assume the caller is the assigned mechanic; ownership is
    checked by the engine. Unknown edges are never allowed and require nothing.
    """
    rule = get_rule(current, requested_next)
    if rule is None:
        return TransitionCheck(allowed=False, required_fields=frozenset())
    actor_kind = ASSIGNED_MECHANIC if actor_role == UserRole.MECHANIC else actor_role.value
    return TransitionCheck(allowed=actor_kind in rule.actors, required_fields=rule.required_fields)
