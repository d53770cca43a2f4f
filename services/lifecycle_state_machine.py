"""
Lifecycle state machine for engagements.

Pure transition table plus validation; no database access. The engagement
service and the billing reconciler both ask this module what an action
does before writing anything.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from services.common.errors import InvalidTransition
from services.enums import EngagementAction, EngagementStatus, TERMINAL_STATUSES

S = EngagementStatus
A = EngagementAction


@dataclass(frozen=True)
class Transition:
    action: EngagementAction
    from_statuses: FrozenSet[Optional[EngagementStatus]]
    to_status: EngagementStatus


_NON_TERMINAL = frozenset(status for status in EngagementStatus if status not in TERMINAL_STATUSES)

TRANSITIONS: Dict[EngagementAction, Transition] = {
    t.action: t for t in (
        Transition(A.CREATE_DRAFT, frozenset({None}), S.DRAFT),
        Transition(A.SEND, frozenset({S.DRAFT}), S.SENT),
        Transition(A.ACCEPT, frozenset({S.SENT}), S.SCHEDULED),
        Transition(A.DECLINE, frozenset({S.SENT}), S.DECLINED),
        Transition(A.REQUEST_REVISION, frozenset({S.SENT}), S.REVISION_REQUESTED),
        Transition(A.REVISE, frozenset({S.REVISION_REQUESTED, S.DECLINED}), S.DRAFT),
        Transition(A.INVOICE_CREATED, frozenset({S.SCHEDULED}), S.PAYMENT_NEEDED),
        Transition(A.PAYMENT_SUCCEEDED, frozenset({S.PAYMENT_NEEDED, S.PAYMENT_OVERDUE}), S.COMPLETE),
        Transition(A.OVERDUE, frozenset({S.PAYMENT_NEEDED}), S.PAYMENT_OVERDUE),
        Transition(A.CANCEL, _NON_TERMINAL, S.CANCELED),
    )
}


@dataclass(frozen=True)
class NotificationRule:
    """Who hears about a transition and on which channels"""
    type: str
    audience: str  # 'owner' or 'admins'
    channels: Tuple[str, ...]


NOTIFICATION_RULES: Dict[EngagementAction, Tuple[NotificationRule, ...]] = {
    A.SEND: (NotificationRule('quote_created', 'owner', ('email',)),),
    A.ACCEPT: (NotificationRule('quote_accepted', 'admins', ('email',)),),
    A.DECLINE: (NotificationRule('quote_declined', 'admins', ('email', 'push')),),
    A.REQUEST_REVISION: (NotificationRule('quote_revision_requested', 'admins', ('email', 'push')),),
    A.INVOICE_CREATED: (NotificationRule('invoice_created', 'owner', ('email', 'push')),),
    A.PAYMENT_SUCCEEDED: (
        NotificationRule('invoice_paid', 'owner', ('push',)),
        NotificationRule('invoice_paid', 'admins', ('email',)),
    ),
    A.OVERDUE: (NotificationRule('invoice_past_due', 'owner', ('email', 'sms')),),
    A.CANCEL: (NotificationRule('engagement_canceled', 'owner', ('email',)),),
}


def _coerce_action(action: Union[EngagementAction, str]) -> EngagementAction:
    try:
        return EngagementAction(action)
    except ValueError:
        raise InvalidTransition(str(action), None, f"Unknown action '{action}'")


def _coerce_status(status: Union[EngagementStatus, str, None]) -> Optional[EngagementStatus]:
    return None if status is None else EngagementStatus(status)


def next_status(current: Union[EngagementStatus, str, None],
                action: Union[EngagementAction, str]) -> EngagementStatus:
    """
    Validate an action against the persisted status.

    Args:
        current: Persisted status, None for a record that does not exist yet
        action: Requested action

    Returns:
        The status the engagement moves to

    Raises:
        InvalidTransition: The action is not allowed from ``current``
    """
    action = _coerce_action(action)
    current = _coerce_status(current)
    transition = TRANSITIONS[action]
    if current not in transition.from_statuses:
        raise InvalidTransition(action.value, current.value if current else None)
    return transition.to_status


def can_transition(current: Union[EngagementStatus, str, None],
                   action: Union[EngagementAction, str]) -> bool:
    try:
        next_status(current, action)
    except InvalidTransition:
        return False
    return True


def target_status(action: Union[EngagementAction, str]) -> EngagementStatus:
    return TRANSITIONS[_coerce_action(action)].to_status


def allowed_actions(current: Union[EngagementStatus, str, None]) -> List[EngagementAction]:
    """Actions that are valid from a status, in table order"""
    current = _coerce_status(current)
    return [action for action, transition in TRANSITIONS.items() if current in transition.from_statuses]


def notification_rules(action: Union[EngagementAction, str]) -> Tuple[NotificationRule, ...]:
    return NOTIFICATION_RULES.get(_coerce_action(action), ())
