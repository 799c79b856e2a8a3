from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from homeservice.errors import SystemError


def fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from an arbitrary-length configured secret."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def mask_card_number(number: str | None) -> str:
    digits = "".join(ch for ch in str(number or "") if ch.isdigit())
    if len(digits) < 4:
        return "****"
    return "****-****-****-" + digits[-4:]


class CardVault:
    """Encrypts card numbers at rest. Plain numbers never leave this class unmasked."""

    def __init__(self, secret: str) -> None:
        self._fernet = Fernet(fernet_key(secret))

    def seal(self, number: str) -> str:
        return self._fernet.encrypt(number.encode("utf-8")).decode("ascii")

    def masked(self, token: str) -> str:
        try:
            number = self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise SystemError(code="card_unreadable", message_key="card_unreadable") from exc
        return mask_card_number(number)
