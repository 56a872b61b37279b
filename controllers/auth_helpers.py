# controllers/auth_helpers.py
from __future__ import annotations

from functools import wraps

from flask import g, request

from utils.response import json_response

OPERATOR_HEADER = "X-Operator"


def _extract_operator() -> str | None:
    """
    The acting operator, in order of precedence:
      - X-Operator header
      - "operator" query argument
      - "operator" field of a JSON object body
    """
    candidates = [request.headers.get(OPERATOR_HEADER), request.args.get("operator")]
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        candidates.append(body.get("operator"))
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def get_current_operator() -> str | None:
    return getattr(g, "operator", None)


def operator_required():
    """
    Writes must name who performs them:
      - resolves the operator, injects g.operator
      - answers 401 when none is given
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            g.operator = _extract_operator()
            if not g.operator:
                return json_response(code=401, message=f"Missing acting operator ({OPERATOR_HEADER} header)")
            return fn(*args, **kwargs)

        return wrapper

    return decorator

