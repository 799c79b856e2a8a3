from __future__ import annotations

from flask import Blueprint, jsonify

from homeservice.auth import auth_service, current_user
from homeservice.db import get_db
from homeservice.domain.contracts import AuthLoginInput
from homeservice.domain.validators import validate_registration_payload
from homeservice.messages import success_message
from homeservice.routes.request_payloads import json_payload


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/register", methods=["POST"])
def register():
    payload = json_payload()
    user = auth_service().register(get_db(), validate_registration_payload(payload))
    return jsonify({"user_id": user.user_id, "role": user.role, "message": success_message("registered")}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = json_payload()
    token, user = auth_service().login(
        get_db(),
        AuthLoginInput(
            email=str(payload.get("email") or "").strip() or None,
            phone=str(payload.get("phone") or "").strip() or None,
            password=str(payload.get("password") or ""),
        ),
    )
    return jsonify(
        {
            "token": token,
            "user_id": user.user_id,
            "role": user.role,
            "message": success_message("logged_in"),
        }
    )


@auth_bp.route("/profile", methods=["GET"])
def profile():
    user = auth_service().profile(get_db(), current_user().user_id)
    return jsonify(user.to_payload())
