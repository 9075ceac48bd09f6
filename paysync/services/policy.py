from functools import wraps
from flask import abort, jsonify, request
from flask_login import current_user

def role_required(*roles):
    """Gate a view on the current account's role (admin endpoints)."""
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            if not current_user.is_authenticated:
                return _abort_smart(401)
            if current_user.role not in roles:
                return _abort_smart(403)
            return fn(*args, **kwargs)
        return _wrap
    return deco

def _abort_smart(code: int):
    # API clients get a JSON-shaped error
    accept = (request.headers.get("Accept") or "").lower()
    if "application/json" in accept or request.is_json or request.path.startswith(("/api/", "/admin/")):
        return jsonify({"error": {401: "unauthorized", 403: "forbidden", 404: "not_found"}[code], "code": code}), code
    abort(code)
