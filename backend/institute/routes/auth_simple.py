"""Simple staff session authentication endpoints."""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, TypeVar, cast

from flask import Blueprint, jsonify, request, session

from .. import config
from ..levels.ledger import Actor

auth_simple_bp = Blueprint("auth_simple", __name__)

_F = TypeVar("_F", bound=Callable[..., Any])


def require_admin(func: _F) -> _F:
    """Ensure the current session belongs to a logged-in staff member."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        if not session.get("is_admin"):
            return jsonify({"error": "forbidden"}), 403
        return func(*args, **kwargs)

    return cast(_F, wrapper)


def current_actor() -> Actor:
    """Staff member behind the current session, recorded on level events."""

    return Actor(
        id=str(session.get("user_id") or config.ADMIN_USER),
        name=str(session.get("user_name") or config.ADMIN_NAME),
        role=session.get("role"),
    )


@auth_simple_bp.post("/api/login")
def login():
    payload = request.get_json(silent=True) or {}
    username = str(payload.get("username", "")).strip()
    password = str(payload.get("password", ""))

    if username == config.ADMIN_USER and password == config.ADMIN_PASS:
        session.clear()
        session["is_admin"] = True
        session["user_id"] = config.ADMIN_USER
        session["user_name"] = config.ADMIN_NAME
        session["role"] = "admin"
        session.permanent = False
        return (
            jsonify({
                "ok": True,
                "user": {
                    "username": config.ADMIN_USER,
                    "name": config.ADMIN_NAME,
                    "role": "admin",
                },
            }),
            200,
        )

    session.pop("is_admin", None)
    return jsonify({"error": "invalid_credentials"}), 401


@auth_simple_bp.post("/api/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_simple_bp.get("/api/me")
def me():
    if not session.get("is_admin"):
        return jsonify({"is_admin": False})

    actor = current_actor()
    return jsonify(
        {"is_admin": True, "user": {"id": actor.id, "name": actor.name, "role": actor.role}}
    )


__all__ = ["auth_simple_bp", "current_actor", "require_admin"]
