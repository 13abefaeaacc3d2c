"""Application route blueprints and helpers."""

from .auth_simple import auth_simple_bp, current_actor, require_admin
from .enquiries import enquiries_bp
from .reports import reports_bp

__all__ = [
    "auth_simple_bp",
    "current_actor",
    "enquiries_bp",
    "reports_bp",
    "require_admin",
]
