from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class ServiceRequestCreateInput:
    service_address: str
    cleaning_type: str
    num_rooms: int
    preferred_date: str
    preferred_time: str
    proposed_budget: float
    notes: str | None = None


@dataclass(frozen=True)
class QuoteCreateInput:
    request_id: int
    is_rejection: bool = False
    rejection_reason: str | None = None
    adjusted_price: float | None = None
    scheduled_date: str | None = None
    scheduled_time_start: str | None = None
    scheduled_time_end: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class QuoteResponseInput:
    response_type: str
    counter_note: str | None = None


@dataclass(frozen=True)
class BillResponseInput:
    response_type: str
    dispute_note: str | None = None
    revised_amount: Any = None
    revision_note: str | None = None


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: str


@dataclass(frozen=True)
class CardDetails:
    number: str
    name: str
    exp_month: int
    exp_year: int


@dataclass(frozen=True)
class AuthRegisterInput:
    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address: str | None = None
    role: str = "client"
    card: CardDetails | None = None


@dataclass(frozen=True)
class AuthLoginInput:
    password: str
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class AuthUser:
    user_id: int
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address: str | None = None
    card: Dict[str, Any] | None = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "role": self.role,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "address": self.address,
            "card": self.card,
        }
