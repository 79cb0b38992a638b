from enum import Enum


class MemberRole(str, Enum):
    owner = "owner"
    editor = "editor"
    viewer = "viewer"


class MemberStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"


class ChangeOrderStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    approved_with_conditions = "approved_with_conditions"
    denied = "denied"
    needs_info = "needs_info"


class LinkStatus(str, Enum):
    pending = "pending"
    completed = "completed"


class ClientDecision(str, Enum):
    """Decisions a client can submit through a magic link."""
    approved = "approved"
    denied = "denied"
    needs_info = "needs_info"


class RecipientAction(str, Enum):
    """Actions carried on per-recipient response URLs."""
    approve = "approve"
    approve_conditions = "approve_conditions"
    deny = "deny"
    needs_info = "needs_info"


EDITOR_ROLES = frozenset({MemberRole.owner, MemberRole.editor})

# pending is reachable from anywhere, but only through an explicit reviewer override
TRANSITIONS = {
    ChangeOrderStatus.pending: frozenset({
        ChangeOrderStatus.approved,
        ChangeOrderStatus.approved_with_conditions,
        ChangeOrderStatus.denied,
        ChangeOrderStatus.needs_info,
    }),
    ChangeOrderStatus.needs_info: frozenset({
        ChangeOrderStatus.approved,
        ChangeOrderStatus.denied,
    }),
    ChangeOrderStatus.approved: frozenset(),
    ChangeOrderStatus.approved_with_conditions: frozenset(),
    ChangeOrderStatus.denied: frozenset(),
}

ACTION_STATUS = {
    RecipientAction.approve: ChangeOrderStatus.approved,
    RecipientAction.approve_conditions: ChangeOrderStatus.approved_with_conditions,
    RecipientAction.deny: ChangeOrderStatus.denied,
    RecipientAction.needs_info: ChangeOrderStatus.needs_info,
}

DECISION_STATUS = {
    ClientDecision.approved: ChangeOrderStatus.approved,
    ClientDecision.denied: ChangeOrderStatus.denied,
    ClientDecision.needs_info: ChangeOrderStatus.needs_info,
}


def can_transition(current: ChangeOrderStatus, target: ChangeOrderStatus, override: bool = False) -> bool:
    if target == ChangeOrderStatus.pending:
        return override
    return target in TRANSITIONS[current]


def aggregate_recipient_status(statuses) -> ChangeOrderStatus:
    """Overall change-order status from the individual recipient answers."""
    statuses = [ChangeOrderStatus(s) for s in statuses]
    if not statuses or ChangeOrderStatus.pending in statuses:
        return ChangeOrderStatus.pending
    for status in (
        ChangeOrderStatus.denied,
        ChangeOrderStatus.needs_info,
        ChangeOrderStatus.approved_with_conditions,
    ):
        if status in statuses:
            return status
    return ChangeOrderStatus.approved
