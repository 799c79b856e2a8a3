from __future__ import annotations

from typing import Iterable, Set

from homeservice.errors import ForbiddenError


CLIENT = "client"
CONTRACTOR = "contractor"
VALID_ROLES: Set[str] = {CLIENT, CONTRACTOR}

_ROLE_REQUIRED_KEYS = {
    CLIENT: "client_role_required",
    CONTRACTOR: "contractor_role_required",
}


def normalize_role(role: str | None, default: str = CLIENT) -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    normalized_role = normalize_role(role, default="")
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalized_role in allowed


def require_roles(role: str | None, *allowed_roles: str) -> str:
    normalized_role = normalize_role(role, default="")
    if has_any_role(normalized_role, allowed_roles):
        return normalized_role
    allowed = sorted(normalize_allowed_roles(allowed_roles))
    message_key = _ROLE_REQUIRED_KEYS.get(allowed[0], "permission_denied") if len(allowed) == 1 else "permission_denied"
    raise ForbiddenError(
        code="permission_denied",
        message_key=message_key,
        payload={"required_roles": allowed},
    )


def can_act_on(role: str | None, owner_id: int | None, caller_id: int | None) -> bool:
    """Contractors act on every row; clients only on rows they own."""
    normalized_role = normalize_role(role, default="")
    if normalized_role == CONTRACTOR:
        return True
    if normalized_role != CLIENT:
        return False
    if owner_id is None or caller_id is None:
        return False
    return int(owner_id) == int(caller_id)


def require_owner(role: str | None, owner_id: int | None, caller_id: int | None, *, entity: str) -> None:
    if can_act_on(role, owner_id, caller_id):
        return
    raise ForbiddenError(
        code="permission_denied",
        message_key="not_owner",
        payload={"entity": entity},
    )


def owner_scope(role: str | None, caller_id: int | None) -> int | None:
    """Return the client id a query must be restricted to, or None for unrestricted access."""
    if normalize_role(role, default="") == CONTRACTOR:
        return None
    if caller_id is None:
        raise ForbiddenError(code="permission_denied")
    return int(caller_id)
