from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple

import jwt
from werkzeug.security import check_password_hash

from homeservice.card_vault import CardVault, mask_card_number
from homeservice.config import AuthSettings
from homeservice.domain.contracts import AuthLoginInput, AuthRegisterInput, AuthUser, CardDetails
from homeservice.errors import UnauthorizedError, ValidationError
from homeservice.infrastructure.repositories import UserRepository
from homeservice.policies import CLIENT, VALID_ROLES, normalize_role


LOGGER = logging.getLogger("homeservice.auth")


class AuthService:
    def __init__(
        self,
        settings: AuthSettings,
        repository: UserRepository | None = None,
        vault: CardVault | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository or UserRepository()
        self.vault = vault or CardVault(settings.card_encryption_key)

    def register(self, db, auth_input: AuthRegisterInput) -> AuthUser:
        role = str(auth_input.role or CLIENT).strip().lower()
        if role not in VALID_ROLES:
            raise ValidationError(code="role_invalid", payload={"field": "role"})
        card = self._seal_card(auth_input.card) if auth_input.card else None

        with db.transaction():
            if self.repository.email_exists(db, auth_input.email):
                raise ValidationError(code="email_already_registered", payload={"field": "email"})
            if auth_input.phone and self.repository.phone_exists(db, auth_input.phone):
                raise ValidationError(code="phone_already_registered", payload={"field": "phone"})
            user_id = self.repository.create_user(
                db,
                email=auth_input.email,
                password=auth_input.password,
                role=role,
                first_name=auth_input.first_name,
                last_name=auth_input.last_name,
                phone=auth_input.phone,
                address=auth_input.address,
                card=card,
            )

        LOGGER.info("user_registered", extra={"user_id": user_id, "role": role, "card_on_file": card is not None})
        return AuthUser(
            user_id=user_id,
            email=auth_input.email,
            role=role,
            first_name=auth_input.first_name,
            last_name=auth_input.last_name,
            phone=auth_input.phone,
            address=auth_input.address,
            card=_card_summary(auth_input.card) if auth_input.card else None,
        )

    def login(self, db, auth_input: AuthLoginInput) -> Tuple[str, AuthUser]:
        email = (auth_input.email or "").strip().lower()
        phone = (auth_input.phone or "").strip()
        password = auth_input.password or ""
        if not (email or phone) or not password:
            raise ValidationError(code="auth_missing_credentials")

        row = self.repository.find_by_email(db, email) if email else self.repository.find_by_phone(db, phone)
        if not row or not check_password_hash(row["password_hash"], password):
            LOGGER.warning("login_failed", extra={"login": email or phone})
            raise UnauthorizedError(code="auth_invalid_credentials")

        user = self._user_from_row(row)
        return self.issue_token(user), user

    def issue_token(self, user: AuthUser) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "user_id": user.user_id,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(hours=self.settings.jwt_expires_hours),
        }
        return jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_token(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise UnauthorizedError(code="auth_invalid_token", payload={"reason": "expired"}) from exc
        except jwt.InvalidTokenError as exc:
            raise UnauthorizedError(code="auth_invalid_token") from exc

    def authenticate(self, db, token: str | None) -> AuthUser:
        """Resolve a bearer token to the user it was issued for.

        The role always comes from the users table, never from the token claims.
        """
        raw = str(token or "").strip()
        scheme, _, rest = raw.partition(" ")
        if scheme.lower() == "bearer":
            raw = rest.strip()
        if not raw:
            raise UnauthorizedError(code="auth_required")

        claims = self.decode_token(raw)
        try:
            user_id = int(claims.get("user_id"))
        except (TypeError, ValueError) as exc:
            raise UnauthorizedError(code="auth_invalid_token") from exc

        row = self.repository.get_public(db, user_id)
        if not row:
            raise UnauthorizedError(code="auth_user_not_found")
        return self._user_from_row(row)

    def profile(self, db, user_id: int) -> AuthUser:
        row = self.repository.get_public(db, user_id)
        if not row:
            raise UnauthorizedError(code="auth_user_not_found")
        user = self._user_from_row(row)
        card_row = self.repository.get_card(db, user_id)
        if card_row:
            card = CardDetails(
                number=self.vault.masked(card_row["card_number_encrypted"]),
                name=card_row["card_name"],
                exp_month=int(card_row["card_exp_month"]),
                exp_year=int(card_row["card_exp_year"]),
            )
            user = replace(user, card=_card_summary(card))
        return user

    def _seal_card(self, card: CardDetails) -> Dict[str, Any]:
        return {
            "number_encrypted": self.vault.seal(card.number),
            "name": card.name,
            "exp_month": card.exp_month,
            "exp_year": card.exp_year,
        }

    @staticmethod
    def _user_from_row(row: dict) -> AuthUser:
        return AuthUser(
            user_id=int(row["id"]),
            email=row["email"],
            role=normalize_role(row.get("role")),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            phone=row.get("phone"),
            address=row.get("address"),
        )


def _card_summary(card: CardDetails) -> Dict[str, Any]:
    return {
        "number": mask_card_number(card.number),
        "name": card.name,
        "exp_month": card.exp_month,
        "exp_year": card.exp_year,
    }
