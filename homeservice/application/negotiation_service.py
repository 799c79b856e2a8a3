from __future__ import annotations

import contextlib
import logging
from typing import Any, Dict, List, Sequence, Tuple

from werkzeug.datastructures import FileStorage

from homeservice.config import NegotiationSettings
from homeservice.domain.contracts import Caller, ServiceOutput
from homeservice.domain.validators import (
    parse_request_id,
    validate_bill_response_payload,
    validate_quote_payload,
    validate_quote_response_payload,
    validate_service_request_payload,
)
from homeservice.errors import AppError, SystemError, ValidationError, not_found
from homeservice.infrastructure.repositories import (
    BillRepository,
    OrderRepository,
    QuoteRepository,
    ServiceRequestRepository,
    StatusEventRepository,
)
from homeservice.messages import success_message
from homeservice.negotiation.engine import (
    StatusChange,
    check_bill_response_role,
    derive_bill_status,
    derive_quote_status,
    plan_bill_response,
    plan_order_completion,
    plan_quote_creation,
    plan_quote_response,
)
from homeservice.negotiation.flow_policy import INITIAL_STATUS, can_transition, flow_meta
from homeservice.observability import observe_transition
from homeservice.policies import CLIENT, CONTRACTOR, require_owner, require_roles
from homeservice.storage import PhotoStorage


LOGGER = logging.getLogger("homeservice.negotiation")


class NegotiationService:
    def __init__(
        self,
        settings: NegotiationSettings,
        storage: PhotoStorage | None = None,
        events: StatusEventRepository | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage or PhotoStorage(settings)
        self.events = events or StatusEventRepository()

    @contextlib.contextmanager
    def _atomic(self, db, failure_code: str, changes: List[Tuple[StatusChange, int]]):
        """Run a side-effect block in one transaction.

        Domain errors pass through after rollback. Anything else is rolled back
        and reported as a ``SystemError`` carrying ``failure_code``. Status
        transitions collected in ``changes`` are logged only after commit.
        """
        try:
            with db.transaction():
                yield
        except AppError:
            raise
        except Exception as exc:
            LOGGER.error(failure_code, exc_info=True)
            raise SystemError(code=failure_code, message_key=failure_code) from exc
        for change, actor_id in changes:
            LOGGER.info(
                "status_transition",
                extra={
                    "entity": change.entity,
                    "entity_id": change.entity_id,
                    "from_status": change.from_status,
                    "to_status": change.to_status,
                    "reason": change.reason,
                    "actor_id": actor_id,
                },
            )
            observe_transition(change.entity, change.to_status)

    def _record(self, db, change: StatusChange, actor_id: int, changes: List[Tuple[StatusChange, int]]) -> None:
        if not change.changed:
            return
        self.events.add_event(
            db,
            entity=change.entity,
            entity_id=int(change.entity_id),
            from_status=change.from_status,
            to_status=change.to_status,
            reason=change.reason,
            actor_id=actor_id,
        )
        changes.append((change, actor_id))

    def create_service_request(self, db, caller: Caller, payload: Dict[str, Any]) -> ServiceOutput:
        require_roles(caller.role, CLIENT)
        create_input = validate_service_request_payload(payload)
        status = INITIAL_STATUS["service_request"]
        changes: List[Tuple[StatusChange, int]] = []
        with self._atomic(db, "system_error", changes):
            request_id = ServiceRequestRepository().create(
                db,
                client_id=caller.user_id,
                create_input=create_input,
                status=status,
            )
            self._record(
                db,
                StatusChange("service_request", request_id, None, status, "request_created"),
                caller.user_id,
                changes,
            )
        return ServiceOutput(
            payload={
                "request_id": request_id,
                "status": status,
                "message": success_message("request_created"),
            },
            status_code=201,
        )

    def upload_photos(self, db, caller: Caller, request_id: int, uploads: Sequence[FileStorage]) -> ServiceOutput:
        require_roles(caller.role, CLIENT)
        files = [upload for upload in uploads if upload is not None and upload.filename]
        if not files:
            raise ValidationError(code="photos_required")

        repo = ServiceRequestRepository.for_caller(caller.role, caller.user_id)
        if repo.get_by_id(db, request_id) is None:
            raise not_found("service_request", request_id)
        self.storage.check_all(files)

        limit = self.settings.max_photos_per_request
        stored: List[str] = []
        try:
            with self._atomic(db, "photo_upload_failed", []):
                if not repo.lock_for_update(db, request_id):
                    raise not_found("service_request", request_id)
                existing = repo.count_photos(db, request_id)
                if existing + len(files) > limit:
                    raise ValidationError(
                        code="photo_limit_exceeded",
                        payload={"max_photos": limit, "existing": existing, "uploaded": len(files)},
                    )
                stored = self.storage.store_all(files)
                for path in stored:
                    repo.add_photo(db, request_id, path)
        except Exception:
            self.storage.delete_all(stored)
            raise

        LOGGER.info("photos_uploaded", extra={"request_id": request_id, "photo_count": len(stored)})
        return ServiceOutput(
            payload={
                "request_id": request_id,
                "photos": stored,
                "photo_count": existing + len(stored),
                "message": success_message("photos_uploaded"),
            },
            status_code=201,
        )

    def list_service_requests(self, db, caller: Caller, *, status: str | None = None) -> ServiceOutput:
        repo = ServiceRequestRepository.for_caller(caller.role, caller.user_id)
        return ServiceOutput(payload={"items": repo.list_summary(db, status=status)})

    def get_service_request(self, db, caller: Caller, request_id: int) -> ServiceOutput:
        repo = ServiceRequestRepository.for_caller(caller.role, caller.user_id)
        service_request = repo.get_by_id(db, request_id)
        if service_request is None:
            raise not_found("service_request", request_id)
        service_request["photos"] = [photo["photo_path"] for photo in repo.list_photos(db, request_id)]
        service_request["flow"] = flow_meta("service_request", service_request["status"])
        return ServiceOutput(payload=service_request)

    def list_quotes_for_request(self, db, caller: Caller, request_id: int) -> ServiceOutput:
        request_repo = ServiceRequestRepository.for_caller(caller.role, caller.user_id)
        if request_repo.get_by_id(db, request_id) is None:
            raise not_found("service_request", request_id)
        quote_repo = QuoteRepository.for_caller(caller.role, caller.user_id)
        quotes = quote_repo.list_for_request(db, request_id)
        for quote in quotes:
            quote["responses"] = quote_repo.list_responses(db, quote["id"])
        return ServiceOutput(payload={"request_id": request_id, "items": quotes})

    def get_quote(self, db, caller: Caller, quote_id: int) -> ServiceOutput:
        quote_repo = QuoteRepository.for_caller(caller.role, caller.user_id)
        quote = quote_repo.get_by_id(db, quote_id)
        if quote is None:
            raise not_found("quote", quote_id)
        quote["responses"] = quote_repo.list_responses(db, quote_id)
        quote["flow"] = flow_meta("quote", quote["status"])
        return ServiceOutput(payload=quote)

    def create_quote(self, db, caller: Caller, payload: Dict[str, Any]) -> ServiceOutput:
        require_roles(caller.role, CONTRACTOR)
        request_id = parse_request_id(payload)
        request_repo = ServiceRequestRepository()
        quote_repo = QuoteRepository()
        changes: List[Tuple[StatusChange, int]] = []

        with self._atomic(db, "quote_creation_failed", changes):
            service_request = request_repo.get_by_id(db, request_id)
            if service_request is None:
                raise not_found("service_request", request_id)
            if not can_transition("service_request", service_request["status"], "send_quote"):
                raise ValidationError(
                    code="request_not_open_for_quotes",
                    payload={"request_id": request_id, "status": service_request["status"]},
                )

            plan = plan_quote_creation(service_request, validate_quote_payload(payload))
            quote_id = quote_repo.create(db, contractor_id=caller.user_id, fields=plan.quote_fields)
            quote_status = plan.quote_fields["status"]
            self._record(db, StatusChange("quote", quote_id, None, quote_status, "quote_created"), caller.user_id, changes)

            change = plan.request_change
            if not request_repo.update_status(db, request_id, from_status=change.from_status, to_status=change.to_status):
                raise ValidationError(code="request_not_open_for_quotes", payload={"request_id": request_id})
            self._record(db, change, caller.user_id, changes)

        message_key = "request_rejected" if plan.quote_fields["is_rejection"] else "quote_created"
        return ServiceOutput(
            payload={
                "quote_id": quote_id,
                "request_id": request_id,
                "status": quote_status,
                "request_status": plan.request_change.to_status,
                "message": success_message(message_key),
            },
            status_code=201,
        )

    def respond_to_quote(self, db, caller: Caller, quote_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        require_roles(caller.role, CLIENT)
        response_input = validate_quote_response_payload(payload)
        quote_repo = QuoteRepository()
        request_repo = ServiceRequestRepository()
        failure_code = "order_creation_failed" if response_input.response_type == "accept" else "response_save_failed"
        changes: List[Tuple[StatusChange, int]] = []
        order_id = None

        with self._atomic(db, failure_code, changes):
            owner_id = quote_repo.find_owner_id(db, quote_id)
            if owner_id is None:
                raise not_found("quote", quote_id)
            require_owner(caller.role, owner_id, caller.user_id, entity="quote")

            quote = quote_repo.get_by_id(db, quote_id)
            service_request = request_repo.get_by_id(db, quote["request_id"])
            plan = plan_quote_response(
                quote,
                service_request,
                response_input,
                latest_quote_id=quote_repo.latest_quote_id(db, quote["request_id"]),
            )

            response_id = quote_repo.add_response(
                db,
                quote_id=quote_id,
                responder_id=caller.user_id,
                response_type=plan.response_type,
                counter_note=plan.counter_note,
            )
            quote_change = plan.quote_change
            if not quote_repo.update_status(
                db,
                quote_id,
                from_status=quote_change.from_status,
                to_status=quote_change.to_status,
            ):
                raise ValidationError(code="quote_final_status", payload={"quote_id": quote_id})
            self._record(db, quote_change, caller.user_id, changes)

            if plan.creates_order:
                request_change = plan.request_change
                if not request_repo.update_status(
                    db,
                    request_change.entity_id,
                    from_status=request_change.from_status,
                    to_status=request_change.to_status,
                ):
                    raise ValidationError(code="quote_superseded", payload={"quote_id": quote_id})
                self._record(db, request_change, caller.user_id, changes)
                order_id = OrderRepository().create(db, plan.order_fields)
                self._record(
                    db,
                    StatusChange("service_order", order_id, None, plan.order_fields["status"], "order_created"),
                    caller.user_id,
                    changes,
                )

        result: Dict[str, Any] = {
            "response_id": response_id,
            "quote_id": quote_id,
            "status": quote_change.to_status,
            "message": success_message("quote_response_saved"),
        }
        if order_id is not None:
            result["order_id"] = order_id
        return ServiceOutput(payload=result, status_code=201)

    def list_orders(self, db, caller: Caller, *, status: str | None = None) -> ServiceOutput:
        repo = OrderRepository.for_caller(caller.role, caller.user_id)
        return ServiceOutput(payload={"items": repo.list_summary(db, status=status)})

    def get_order(self, db, caller: Caller, order_id: int) -> ServiceOutput:
        order = OrderRepository.for_caller(caller.role, caller.user_id).get_by_id(db, order_id)
        if order is None:
            raise not_found("service_order", order_id)
        order["flow"] = flow_meta("service_order", order["status"])
        return ServiceOutput(payload=order)

    def complete_order(self, db, caller: Caller, order_id: int) -> ServiceOutput:
        require_roles(caller.role, CONTRACTOR)
        order_repo = OrderRepository()
        changes: List[Tuple[StatusChange, int]] = []

        with self._atomic(db, "bill_creation_failed", changes):
            order = order_repo.get_by_id(db, order_id)
            if order is None:
                raise not_found("service_order", order_id)
            plan = plan_order_completion(order)
            if not order_repo.mark_completed(db, order_id, from_status=plan.order_change.from_status):
                raise ValidationError(code="order_already_completed", payload={"order_id": order_id})
            self._record(db, plan.order_change, caller.user_id, changes)
            bill_id = BillRepository().create(db, plan.bill_fields)
            self._record(
                db,
                StatusChange("bill", bill_id, None, plan.bill_fields["status"], "bill_created"),
                caller.user_id,
                changes,
            )

        return ServiceOutput(
            payload={
                "order_id": order_id,
                "status": plan.order_change.to_status,
                "bill_id": bill_id,
                "amount": plan.bill_fields["amount"],
                "message": success_message("order_completed"),
            },
        )

    def list_bills(self, db, caller: Caller, *, status: str | None = None) -> ServiceOutput:
        repo = BillRepository.for_caller(caller.role, caller.user_id)
        return ServiceOutput(payload={"items": repo.list_summary(db, status=status)})

    def get_bill(self, db, caller: Caller, bill_id: int) -> ServiceOutput:
        repo = BillRepository.for_caller(caller.role, caller.user_id)
        bill = repo.get_by_id(db, bill_id)
        if bill is None:
            raise not_found("bill", bill_id)
        bill["responses"] = repo.list_responses(db, bill_id)
        bill["flow"] = flow_meta("bill", bill["status"])
        return ServiceOutput(payload=bill)

    def respond_to_bill(self, db, caller: Caller, bill_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        response_input = validate_bill_response_payload(payload)
        check_bill_response_role(caller.role, response_input.response_type)
        repo = BillRepository.for_caller(caller.role, caller.user_id)
        changes: List[Tuple[StatusChange, int]] = []

        with self._atomic(db, "response_save_failed", changes):
            bill = repo.get_by_id(db, bill_id)
            if bill is None:
                raise not_found("bill", bill_id)
            plan = plan_bill_response(bill, response_input)
            response_id = repo.add_response(
                db,
                bill_id=bill_id,
                responder_id=caller.user_id,
                response_type=plan.response_type,
                dispute_note=plan.dispute_note,
                revised_amount=plan.revised_amount,
                revision_note=plan.revision_note,
            )
            if not repo.apply_response(
                db,
                bill_id,
                from_status=plan.bill_change.from_status,
                to_status=plan.bill_change.to_status,
                amount=plan.amount,
                mark_paid=plan.marks_paid,
            ):
                raise ValidationError(code="bill_already_paid", payload={"bill_id": bill_id})
            self._record(db, plan.bill_change, caller.user_id, changes)

        return ServiceOutput(
            payload={
                "response_id": response_id,
                "bill_id": bill_id,
                "status": plan.bill_change.to_status,
                "amount": plan.amount,
                "message": success_message("bill_response_saved"),
            },
            status_code=201,
        )

    def history(self, db, caller: Caller, entity: str, entity_id: int) -> ServiceOutput:
        lookups = {
            "service_request": ServiceRequestRepository,
            "quote": QuoteRepository,
            "service_order": OrderRepository,
            "bill": BillRepository,
        }
        repo_cls = lookups.get(entity)
        if repo_cls is None:
            raise not_found(entity, entity_id)
        if repo_cls.for_caller(caller.role, caller.user_id).get_by_id(db, entity_id) is None:
            raise not_found(entity, entity_id)
        events = self.events.list_for_entity(db, entity=entity, entity_id=entity_id)
        return ServiceOutput(payload={"entity": entity, "entity_id": entity_id, "items": events})

    def find_status_drift(self, db) -> List[Dict[str, Any]]:
        """Compare cached statuses with the ones replayed from response history.

        Also checks that every accepted quote produced exactly one order and every
        completed order exactly one bill.
        """
        drift: List[Dict[str, Any]] = []
        quote_repo = QuoteRepository()
        order_repo = OrderRepository()
        bill_repo = BillRepository()

        for quote in quote_repo.list_all(db):
            responses = quote_repo.list_responses(db, quote["id"])
            expected = derive_quote_status(quote["is_rejection"], [row["response_type"] for row in responses])
            if expected != quote["status"]:
                drift.append({"entity": "quote", "id": quote["id"], "cached": quote["status"], "derived": expected})
            orders = order_repo.count_for_quote(db, quote["id"])
            expected_orders = 1 if expected == "accepted" else 0
            if orders != expected_orders:
                drift.append(
                    {
                        "entity": "quote",
                        "id": quote["id"],
                        "cached": {"orders": orders},
                        "derived": {"orders": expected_orders},
                    }
                )

        for order in order_repo.list_all(db):
            bills = bill_repo.count_for_order(db, order["id"])
            expected_bills = 1 if order["status"] == "completed" else 0
            if bills != expected_bills:
                drift.append(
                    {
                        "entity": "service_order",
                        "id": order["id"],
                        "cached": {"bills": bills},
                        "derived": {"bills": expected_bills},
                    }
                )

        for bill in bill_repo.list_all(db):
            responses = bill_repo.list_responses(db, bill["id"])
            expected_status, expected_amount = derive_bill_status(bill["final_price"], responses)
            if expected_status != bill["status"] or abs(expected_amount - bill["amount"]) > 0.005:
                drift.append(
                    {
                        "entity": "bill",
                        "id": bill["id"],
                        "cached": {"status": bill["status"], "amount": bill["amount"]},
                        "derived": {"status": expected_status, "amount": expected_amount},
                    }
                )
        return drift
