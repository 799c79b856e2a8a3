from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from homeservice.application.negotiation_service import NegotiationService
from homeservice.auth import current_caller
from homeservice.db import get_db
from homeservice.errors import ValidationError
from homeservice.messages import status_keys_for_group
from homeservice.routes.request_payloads import json_payload


negotiation_bp = Blueprint("negotiation", __name__, url_prefix="/api")


NEGOTIATION_EXTENSION = "homeservice.negotiation"

HISTORY_ENTITIES = {
    "service-requests": "service_request",
    "quotes": "quote",
    "orders": "service_order",
    "bills": "bill",
}


def negotiation_service() -> NegotiationService:
    return current_app.extensions[NEGOTIATION_EXTENSION]


def _status_filter(group: str) -> str | None:
    status = (request.args.get("status") or "").strip()
    if not status:
        return None
    if status not in status_keys_for_group(group):
        raise ValidationError(code="validation_error", payload={"field": "status"})
    return status


def _respond(result):
    return jsonify(result.payload), result.status_code


@negotiation_bp.route("/service-requests", methods=["GET", "POST"])
def service_requests():
    if request.method == "POST":
        return _respond(negotiation_service().create_service_request(get_db(), current_caller(), json_payload()))
    return _respond(
        negotiation_service().list_service_requests(
            get_db(),
            current_caller(),
            status=_status_filter("service_request"),
        )
    )


@negotiation_bp.route("/service-requests/<int:request_id>", methods=["GET"])
def service_request_detail(request_id: int):
    return _respond(negotiation_service().get_service_request(get_db(), current_caller(), request_id))


@negotiation_bp.route("/service-requests/<int:request_id>/photos", methods=["POST"])
def service_request_photos(request_id: int):
    uploads = request.files.getlist("photos")
    return _respond(negotiation_service().upload_photos(get_db(), current_caller(), request_id, uploads))


@negotiation_bp.route("/service-requests/<int:request_id>/quotes", methods=["GET"])
def service_request_quotes(request_id: int):
    return _respond(negotiation_service().list_quotes_for_request(get_db(), current_caller(), request_id))


@negotiation_bp.route("/quotes", methods=["POST"])
def create_quote():
    return _respond(negotiation_service().create_quote(get_db(), current_caller(), json_payload()))


@negotiation_bp.route("/quotes/<int:quote_id>", methods=["GET"])
def quote_detail(quote_id: int):
    return _respond(negotiation_service().get_quote(get_db(), current_caller(), quote_id))


@negotiation_bp.route("/quotes/<int:quote_id>/responses", methods=["POST"])
def quote_responses(quote_id: int):
    return _respond(negotiation_service().respond_to_quote(get_db(), current_caller(), quote_id, json_payload()))


@negotiation_bp.route("/orders", methods=["GET"])
def orders():
    return _respond(
        negotiation_service().list_orders(
            get_db(),
            current_caller(),
            status=_status_filter("service_order"),
        )
    )


@negotiation_bp.route("/orders/<int:order_id>", methods=["GET"])
def order_detail(order_id: int):
    return _respond(negotiation_service().get_order(get_db(), current_caller(), order_id))


@negotiation_bp.route("/orders/<int:order_id>/complete", methods=["PUT"])
def complete_order(order_id: int):
    return _respond(negotiation_service().complete_order(get_db(), current_caller(), order_id))


@negotiation_bp.route("/bills", methods=["GET"])
def bills():
    return _respond(
        negotiation_service().list_bills(
            get_db(),
            current_caller(),
            status=_status_filter("bill"),
        )
    )


@negotiation_bp.route("/bills/<int:bill_id>", methods=["GET"])
def bill_detail(bill_id: int):
    return _respond(negotiation_service().get_bill(get_db(), current_caller(), bill_id))


@negotiation_bp.route("/bills/<int:bill_id>/responses", methods=["POST"])
def bill_responses(bill_id: int):
    return _respond(negotiation_service().respond_to_bill(get_db(), current_caller(), bill_id, json_payload()))


@negotiation_bp.route('/<any("service-requests", quotes, orders, bills):collection>/<int:entity_id>/history', methods=["GET"])
def entity_history(collection: str, entity_id: int):
    return _respond(
        negotiation_service().history(
            get_db(),
            current_caller(),
            HISTORY_ENTITIES[collection],
            entity_id,
        )
    )
