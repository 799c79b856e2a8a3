from __future__ import annotations

from flask import current_app, g, request

from homeservice.application.auth_service import AuthService
from homeservice.config import AuthSettings
from homeservice.db import get_db
from homeservice.domain.contracts import AuthUser, Caller
from homeservice.errors import UnauthorizedError


AUTH_EXTENSION = "homeservice.auth"

PUBLIC_API_PATHS = {"/api/auth/login", "/api/auth/register"}


def auth_service() -> AuthService:
    return current_app.extensions[AUTH_EXTENSION]


def register_auth(app) -> None:
    app.extensions[AUTH_EXTENSION] = AuthService(AuthSettings.from_mapping(app.config))

    @app.before_request
    def _load_current_user():
        g.current_user = None
        path = request.path or "/"
        if not path.startswith("/api/") or path in PUBLIC_API_PATHS:
            return None
        g.current_user = auth_service().authenticate(get_db(), request.headers.get("Authorization"))
        return None


def current_user() -> AuthUser:
    user = getattr(g, "current_user", None)
    if user is None:
        raise UnauthorizedError(code="auth_required")
    return user


def current_caller() -> Caller:
    user = current_user()
    return Caller(user_id=user.user_id, role=user.role)
