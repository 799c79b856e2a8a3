"""Pure negotiation rules.

Every function here takes plain rows (dicts) and input dataclasses, checks
the rules for one operation, and returns a plan describing the writes the
service layer must perform inside a single transaction. Nothing in this
module touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Tuple

from homeservice.domain.contracts import BillResponseInput, QuoteCreateInput, QuoteResponseInput
from homeservice.domain.validators import parse_amount, today_iso
from homeservice.errors import ForbiddenError, ValidationError
from homeservice.negotiation.flow_policy import INITIAL_STATUS, TRANSITIONS, is_terminal, next_status
from homeservice.policies import CLIENT, CONTRACTOR, normalize_role


QUOTE_RESPONSE_TYPES = ("accept", "renegotiate", "counter")
BILL_RESPONSE_TYPES = ("pay", "dispute", "revise")

BILL_RESPONSE_ROLES: Dict[str, str] = {
    "pay": CLIENT,
    "dispute": CLIENT,
    "revise": CONTRACTOR,
}

_BILL_ROLE_MESSAGE_KEYS: Dict[str, str] = {
    CLIENT: "bill_pay_client_only",
    CONTRACTOR: "bill_revise_contractor_only",
}

REJECTION_TIME = "00:00"


@dataclass(frozen=True)
class StatusChange:
    entity: str
    entity_id: int | None
    from_status: str | None
    to_status: str
    reason: str

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status


@dataclass(frozen=True)
class QuoteCreationPlan:
    quote_fields: Dict[str, Any]
    request_change: StatusChange


@dataclass(frozen=True)
class QuoteResponsePlan:
    response_type: str
    counter_note: str | None
    quote_change: StatusChange
    request_change: StatusChange | None = None
    order_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def creates_order(self) -> bool:
        return bool(self.order_fields)


@dataclass(frozen=True)
class OrderCompletionPlan:
    order_change: StatusChange
    bill_fields: Dict[str, Any]


@dataclass(frozen=True)
class BillResponsePlan:
    response_type: str
    bill_change: StatusChange
    amount: float
    dispute_note: str | None = None
    revised_amount: float | None = None
    revision_note: str | None = None

    @property
    def marks_paid(self) -> bool:
        return self.bill_change.to_status == "paid"


def _invalid(code: str, **payload: Any) -> ValidationError:
    return ValidationError(code=code, message_key=code, payload=payload)


def plan_quote_creation(service_request: Mapping[str, Any], quote_input: QuoteCreateInput) -> QuoteCreationPlan:
    request_id = int(service_request["id"])
    event = "reject_request" if quote_input.is_rejection else "send_quote"
    request_to = next_status("service_request", service_request["status"], event)

    if quote_input.is_rejection:
        quote_fields: Dict[str, Any] = {
            "request_id": request_id,
            "adjusted_price": 0,
            "scheduled_date": today_iso(),
            "scheduled_time_start": REJECTION_TIME,
            "scheduled_time_end": REJECTION_TIME,
            "notes": quote_input.notes,
            "is_rejection": True,
            "rejection_reason": quote_input.rejection_reason,
            "status": "rejected",
        }
        reason = "request_rejected"
    else:
        quote_fields = {
            "request_id": request_id,
            "adjusted_price": quote_input.adjusted_price,
            "scheduled_date": quote_input.scheduled_date,
            "scheduled_time_start": quote_input.scheduled_time_start,
            "scheduled_time_end": quote_input.scheduled_time_end,
            "notes": quote_input.notes,
            "is_rejection": False,
            "rejection_reason": None,
            "status": INITIAL_STATUS["quote"],
        }
        reason = "quote_sent"

    return QuoteCreationPlan(
        quote_fields=quote_fields,
        request_change=StatusChange(
            entity="service_request",
            entity_id=request_id,
            from_status=service_request["status"],
            to_status=request_to,
            reason=reason,
        ),
    )


def plan_quote_response(
    quote: Mapping[str, Any],
    service_request: Mapping[str, Any],
    response_input: QuoteResponseInput,
    *,
    latest_quote_id: int | None,
) -> QuoteResponsePlan:
    quote_id = int(quote["id"])
    if is_terminal("quote", quote["status"]):
        raise _invalid("quote_final_status", quote_id=quote_id, status=quote["status"])

    response_type = response_input.response_type
    if response_type not in QUOTE_RESPONSE_TYPES:
        raise _invalid("response_type_invalid", allowed=list(QUOTE_RESPONSE_TYPES))
    if response_type in ("renegotiate", "counter") and not response_input.counter_note:
        raise _invalid("counter_note_required", field="counter_note")

    if latest_quote_id != quote_id or service_request["status"] != "quote_sent":
        raise _invalid("quote_superseded", quote_id=quote_id, latest_quote_id=latest_quote_id)

    quote_change = StatusChange(
        entity="quote",
        entity_id=quote_id,
        from_status=quote["status"],
        to_status=next_status("quote", quote["status"], response_type),
        reason=f"quote_{response_type}",
    )
    if response_type != "accept":
        return QuoteResponsePlan(
            response_type=response_type,
            counter_note=response_input.counter_note,
            quote_change=quote_change,
        )

    request_change = StatusChange(
        entity="service_request",
        entity_id=int(service_request["id"]),
        from_status=service_request["status"],
        to_status=next_status("service_request", service_request["status"], "accept"),
        reason="quote_accepted",
    )
    order_fields = {
        "request_id": int(service_request["id"]),
        "quote_id": quote_id,
        "client_id": int(service_request["client_id"]),
        "scheduled_date": quote["scheduled_date"],
        "scheduled_time_start": quote["scheduled_time_start"],
        "scheduled_time_end": quote["scheduled_time_end"],
        "final_price": float(quote["adjusted_price"]),
        "status": INITIAL_STATUS["service_order"],
    }
    return QuoteResponsePlan(
        response_type=response_type,
        counter_note=response_input.counter_note,
        quote_change=quote_change,
        request_change=request_change,
        order_fields=order_fields,
    )


def plan_order_completion(order: Mapping[str, Any]) -> OrderCompletionPlan:
    order_id = int(order["id"])
    to_status = next_status("service_order", order["status"], "complete")
    return OrderCompletionPlan(
        order_change=StatusChange(
            entity="service_order",
            entity_id=order_id,
            from_status=order["status"],
            to_status=to_status,
            reason="order_completed",
        ),
        bill_fields={
            "order_id": order_id,
            "client_id": int(order["client_id"]),
            "amount": float(order["final_price"]),
            "status": INITIAL_STATUS["bill"],
        },
    )


def check_bill_response_role(role: str | None, response_type: str) -> str:
    if response_type not in BILL_RESPONSE_TYPES:
        raise _invalid("response_type_invalid", allowed=list(BILL_RESPONSE_TYPES))
    required_role = BILL_RESPONSE_ROLES[response_type]
    if normalize_role(role, default="") != required_role:
        raise ForbiddenError(
            code="permission_denied",
            message_key=_BILL_ROLE_MESSAGE_KEYS[required_role],
            payload={"response_type": response_type, "required_role": required_role},
        )
    return required_role


def plan_bill_response(bill: Mapping[str, Any], response_input: BillResponseInput) -> BillResponsePlan:
    bill_id = int(bill["id"])
    response_type = response_input.response_type
    to_status = next_status("bill", bill["status"], response_type)

    amount = float(bill["amount"])
    revised_amount = None
    if response_type == "revise":
        if response_input.revised_amount in (None, ""):
            raise _invalid("revised_amount_required", field="revised_amount")
        revised_amount = parse_amount(
            response_input.revised_amount,
            field="revised_amount",
            code="revised_amount_invalid",
        )
        amount = revised_amount
    elif response_type == "dispute" and not response_input.dispute_note:
        raise _invalid("dispute_note_required", field="dispute_note")

    return BillResponsePlan(
        response_type=response_type,
        bill_change=StatusChange(
            entity="bill",
            entity_id=bill_id,
            from_status=bill["status"],
            to_status=to_status,
            reason=f"bill_{response_type}",
        ),
        amount=amount,
        dispute_note=response_input.dispute_note if response_type == "dispute" else None,
        revised_amount=revised_amount,
        revision_note=response_input.revision_note if response_type == "revise" else None,
    )


def derive_quote_status(is_rejection: bool, response_types: Iterable[str]) -> str:
    """Replay a quote's response history from its initial status."""
    if is_rejection:
        return "rejected"
    status = INITIAL_STATUS["quote"]
    for response_type in response_types:
        if is_terminal("quote", status):
            break
        status = TRANSITIONS["quote"][status].get(response_type, status)
    return status


def derive_bill_status(initial_amount: float, responses: Iterable[Mapping[str, Any]]) -> Tuple[str, float]:
    """Replay a bill's response history and return ``(status, amount)``."""
    status = INITIAL_STATUS["bill"]
    amount = float(initial_amount)
    for response in responses:
        if is_terminal("bill", status):
            break
        response_type = response.get("response_type")
        status = TRANSITIONS["bill"][status].get(response_type, status)
        if response_type == "revise" and response.get("revised_amount") is not None:
            amount = float(response["revised_amount"])
    return status, amount
