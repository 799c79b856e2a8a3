from __future__ import annotations

from flask import request


def json_payload() -> dict:
    """Return the JSON body when it is an object, otherwise an empty dict.

    Arrays, scalars and malformed bodies fall through to field validation, which
    reports them as 400s.
    """
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}
