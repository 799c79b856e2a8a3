from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List

from homeservice.domain.contracts import (
    AuthRegisterInput,
    CardDetails,
    BillResponseInput,
    QuoteCreateInput,
    QuoteResponseInput,
    ServiceRequestCreateInput,
)
from homeservice.errors import ValidationError


CLEANING_TYPES = ("basic", "deep cleaning", "move-out")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]+$")

MIN_PASSWORD_LENGTH = 6

CARD_FIELDS = ("card_number", "card_name", "exp_month", "exp_year", "cvv")
_CVV_RE = re.compile(r"^\d{3,4}$")


def _invalid(code: str, field: str | None = None, **extra: Any) -> ValidationError:
    payload: Dict[str, Any] = dict(extra)
    if field:
        payload["field"] = field
    return ValidationError(code=code, message_key=code, payload=payload)


def sanitize_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"[<>]", "", str(value).strip())
    return cleaned or None


def missing_fields(data: Dict[str, Any], fields: Iterable[str]) -> List[str]:
    missing = []
    for name in fields:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = missing_fields(data, fields)
    if missing:
        raise _invalid("fields_required", missing=missing)


def parse_date(value: Any, *, field: str = "date") -> str:
    raw = str(value or "").strip()
    if not _DATE_RE.match(raw):
        raise _invalid("date_invalid", field)
    try:
        datetime.strptime(raw, "%Y-%m-%d")
    except ValueError as exc:
        raise _invalid("date_invalid", field) from exc
    return raw


def parse_time(value: Any, *, field: str = "time") -> str:
    raw = str(value or "").strip()
    match = _TIME_RE.match(raw)
    if not match:
        raise _invalid("time_invalid", field)
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def parse_amount(value: Any, *, field: str, code: str, allow_zero: bool = True) -> float:
    if isinstance(value, bool):
        raise _invalid(code, field)
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise _invalid(code, field) from exc
    if math.isnan(amount) or math.isinf(amount):
        raise _invalid(code, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise _invalid(code, field)
    return round(amount, 2)


def parse_positive_int(value: Any, *, field: str, code: str) -> int:
    if isinstance(value, bool):
        raise _invalid(code, field)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise _invalid(code, field) from exc
    if not number.is_integer() or number < 1:
        raise _invalid(code, field)
    return int(number)


def parse_request_id(payload: Dict[str, Any]) -> int:
    if payload.get("request_id") in (None, ""):
        raise _invalid("request_id_required", "request_id")
    return parse_positive_int(payload.get("request_id"), field="request_id", code="request_id_required")


def today_iso() -> str:
    return date.today().isoformat()


def validate_service_request_payload(payload: Dict[str, Any]) -> ServiceRequestCreateInput:
    require_fields(
        payload,
        (
            "service_address",
            "cleaning_type",
            "num_rooms",
            "preferred_date",
            "preferred_time",
            "proposed_budget",
        ),
    )
    cleaning_type = str(payload.get("cleaning_type") or "").strip().lower()
    if cleaning_type not in CLEANING_TYPES:
        raise _invalid("cleaning_type_invalid", "cleaning_type", allowed=list(CLEANING_TYPES))

    address = sanitize_text(payload.get("service_address"))
    if not address:
        raise _invalid("fields_required", missing=["service_address"])

    return ServiceRequestCreateInput(
        service_address=address,
        cleaning_type=cleaning_type,
        num_rooms=parse_positive_int(payload.get("num_rooms"), field="num_rooms", code="num_rooms_invalid"),
        preferred_date=parse_date(payload.get("preferred_date"), field="preferred_date"),
        preferred_time=parse_time(payload.get("preferred_time"), field="preferred_time"),
        proposed_budget=parse_amount(payload.get("proposed_budget"), field="proposed_budget", code="budget_invalid"),
        notes=sanitize_text(payload.get("notes")),
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def validate_quote_payload(payload: Dict[str, Any]) -> QuoteCreateInput:
    """Shape-check a quote payload.

    A rejection needs only a reason. A regular quote needs a positive price,
    a valid date and a start time strictly before its end time.
    """
    request_id = parse_request_id(payload)
    notes = sanitize_text(payload.get("notes"))

    if _as_bool(payload.get("is_rejection")):
        reason = sanitize_text(payload.get("rejection_reason"))
        if not reason:
            raise _invalid("rejection_reason_required", "rejection_reason")
        return QuoteCreateInput(
            request_id=request_id,
            is_rejection=True,
            rejection_reason=reason,
            notes=notes,
        )

    require_fields(payload, ("adjusted_price", "scheduled_date", "scheduled_time_start", "scheduled_time_end"))
    price = parse_amount(payload.get("adjusted_price"), field="adjusted_price", code="price_invalid", allow_zero=False)
    scheduled_date = parse_date(payload.get("scheduled_date"), field="scheduled_date")
    start = parse_time(payload.get("scheduled_time_start"), field="scheduled_time_start")
    end = parse_time(payload.get("scheduled_time_end"), field="scheduled_time_end")
    if start >= end:
        raise _invalid("schedule_window_invalid", "scheduled_time_end")
    return QuoteCreateInput(
        request_id=request_id,
        adjusted_price=price,
        scheduled_date=scheduled_date,
        scheduled_time_start=start,
        scheduled_time_end=end,
        notes=notes,
    )


def validate_quote_response_payload(payload: Dict[str, Any]) -> QuoteResponseInput:
    response_type = str(payload.get("response_type") or "").strip().lower()
    return QuoteResponseInput(
        response_type=response_type,
        counter_note=sanitize_text(payload.get("counter_note")),
    )


def validate_bill_response_payload(payload: Dict[str, Any]) -> BillResponseInput:
    response_type = str(payload.get("response_type") or "").strip().lower()
    return BillResponseInput(
        response_type=response_type,
        dispute_note=sanitize_text(payload.get("dispute_note")),
        revised_amount=payload.get("revised_amount"),
        revision_note=sanitize_text(payload.get("revision_note")),
    )


def validate_registration_payload(payload: Dict[str, Any]) -> AuthRegisterInput:
    require_fields(payload, ("email", "password"))
    email = str(payload.get("email") or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise _invalid("email_invalid", "email")

    phone = str(payload.get("phone") or "").strip() or None
    if phone is not None and (not _PHONE_RE.match(phone) or len(re.sub(r"\D", "", phone)) < 10):
        raise _invalid("phone_invalid", "phone")

    password = str(payload.get("password") or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise _invalid("password_too_short", "password")

    return AuthRegisterInput(
        email=email,
        password=password,
        first_name=sanitize_text(payload.get("first_name")),
        last_name=sanitize_text(payload.get("last_name")),
        phone=phone,
        address=sanitize_text(payload.get("address")),
        card=validate_card_details(payload),
    )


def validate_card_details(payload: Dict[str, Any], *, today: date | None = None) -> CardDetails | None:
    """Validate card-on-file fields sent at registration.

    Card data is optional, but once any card field is present all of them are required.
    The CVV is checked and then discarded.
    """
    if not any(payload.get(name) not in (None, "") for name in CARD_FIELDS):
        return None
    require_fields(payload, CARD_FIELDS)

    number = re.sub(r"\D", "", str(payload["card_number"]))
    if not 13 <= len(number) <= 19:
        raise _invalid("card_number_invalid", "card_number")

    exp_month = _parse_card_int(payload["exp_month"], field="exp_month", code="card_exp_month_invalid")
    if not 1 <= exp_month <= 12:
        raise _invalid("card_exp_month_invalid", "exp_month")

    today = today or date.today()
    exp_year = _parse_card_int(payload["exp_year"], field="exp_year", code="card_exp_year_invalid")
    if exp_year < today.year:
        raise _invalid("card_exp_year_invalid", "exp_year")
    if (exp_year, exp_month) < (today.year, today.month):
        raise _invalid("card_expired", "exp_month")

    if not _CVV_RE.match(str(payload["cvv"]).strip()):
        raise _invalid("card_cvv_invalid", "cvv")

    name = sanitize_text(payload["card_name"])
    if not name:
        raise _invalid("fields_required", missing=["card_name"])
    return CardDetails(number=number, name=name, exp_month=exp_month, exp_year=exp_year)


def _parse_card_int(value: Any, *, field: str, code: str) -> int:
    if isinstance(value, bool):
        raise _invalid(code, field)
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise _invalid(code, field) from exc
