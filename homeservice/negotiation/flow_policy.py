from __future__ import annotations

from typing import Dict, List

from homeservice.errors import ValidationError
from homeservice.messages import status_label


ENTITIES: List[str] = ["service_request", "quote", "service_order", "bill"]


ACTION_LABELS: Dict[str, str] = {
    "upload_photos": "Upload photos",
    "send_quote": "Send quote",
    "reject_request": "Reject request",
    "accept": "Accept quote",
    "renegotiate": "Ask for changes",
    "counter": "Counter offer",
    "start": "Start work",
    "complete": "Complete order",
    "cancel": "Cancel order",
    "pay": "Pay bill",
    "dispute": "Dispute bill",
    "revise": "Revise bill",
    "view_history": "View history",
}


# entity -> status -> event -> next status. Statuses without events are terminal.
TRANSITIONS: Dict[str, Dict[str, Dict[str, str]]] = {
    "service_request": {
        "pending": {"send_quote": "quote_sent", "reject_request": "rejected"},
        "quote_sent": {"send_quote": "quote_sent", "reject_request": "rejected", "accept": "accepted"},
        "rejected": {},
        "accepted": {},
    },
    "quote": {
        "pending": {"accept": "accepted", "renegotiate": "renegotiating", "counter": "renegotiating"},
        "renegotiating": {"accept": "accepted", "renegotiate": "renegotiating", "counter": "renegotiating"},
        "accepted": {},
        "rejected": {},
    },
    "service_order": {
        "scheduled": {"start": "in_progress", "complete": "completed", "cancel": "canceled"},
        "in_progress": {"complete": "completed", "cancel": "canceled"},
        "completed": {},
        "canceled": {},
    },
    "bill": {
        "pending": {"pay": "paid", "dispute": "disputed", "revise": "pending"},
        "disputed": {"pay": "paid", "dispute": "disputed", "revise": "pending"},
        "paid": {},
    },
}


INITIAL_STATUS: Dict[str, str] = {
    "service_request": "pending",
    "quote": "pending",
    "service_order": "scheduled",
    "bill": "pending",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "service_request": {
        "pending": {
            "allowed_actions": ["upload_photos", "send_quote", "reject_request", "view_history"],
            "primary_action": "send_quote",
        },
        "quote_sent": {
            "allowed_actions": ["upload_photos", "send_quote", "reject_request", "view_history"],
            "primary_action": "view_history",
        },
        "rejected": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
        "accepted": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
    },
    "quote": {
        "pending": {
            "allowed_actions": ["accept", "renegotiate", "counter", "view_history"],
            "primary_action": "accept",
        },
        "renegotiating": {
            "allowed_actions": ["accept", "renegotiate", "counter", "view_history"],
            "primary_action": "accept",
        },
        "accepted": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
        "rejected": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
    },
    "service_order": {
        "scheduled": {"allowed_actions": ["complete", "view_history"], "primary_action": "complete"},
        "in_progress": {"allowed_actions": ["complete", "view_history"], "primary_action": "complete"},
        "completed": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
        "canceled": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
    },
    "bill": {
        "pending": {"allowed_actions": ["pay", "dispute", "revise", "view_history"], "primary_action": "pay"},
        "disputed": {"allowed_actions": ["pay", "dispute", "revise", "view_history"], "primary_action": "revise"},
        "paid": {"allowed_actions": ["view_history"], "primary_action": "view_history"},
    },
}


_CLOSED_ERROR_CODES: Dict[str, Dict[str, str]] = {
    "service_request": {
        "rejected": "request_not_open_for_quotes",
        "accepted": "request_not_open_for_quotes",
    },
    "quote": {
        "accepted": "quote_final_status",
        "rejected": "quote_final_status",
    },
    "service_order": {
        "completed": "order_already_completed",
    },
    "bill": {
        "paid": "bill_already_paid",
    },
}


def is_terminal(entity: str, status: str | None) -> bool:
    events = TRANSITIONS.get(entity, {}).get(str(status or ""))
    return events is not None and not events


def can_transition(entity: str, status: str | None, event: str) -> bool:
    return event in TRANSITIONS.get(entity, {}).get(str(status or ""), {})


def next_status(entity: str, status: str | None, event: str) -> str:
    """Return the status reached from ``status`` on ``event``.

    Raises ValidationError when the event is not allowed. Closed statuses map
    to a dedicated error code (for example ``quote_final_status``); anything
    else reports ``status_transition_invalid``.
    """
    current = str(status or "")
    target = TRANSITIONS.get(entity, {}).get(current, {}).get(event)
    if target is not None:
        return target
    code = _CLOSED_ERROR_CODES.get(entity, {}).get(current, "status_transition_invalid")
    raise ValidationError(
        code=code,
        message_key=code,
        payload={"entity": entity, "status": current, "action": event},
    )


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(entity: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(entity, {}).get(str(status), _fallback_policy())


def allowed_actions(entity: str, status: str | None) -> List[str]:
    actions = status_policy(entity, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(entity: str, status: str | None) -> str | None:
    action = status_policy(entity, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(entity: str, status: str | None) -> Dict[str, object]:
    actions = allowed_actions(entity, status)
    return {
        "entity": entity,
        "status": status,
        "status_label": status_label(entity, status),
        "allowed_actions": actions,
        "action_labels": {action: action_label(action) for action in actions},
        "primary_action": primary_action(entity, status),
    }
