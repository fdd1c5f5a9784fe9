"""
Nirman Works Tracker
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - Actor context (user id, role, department) for every API request
    - Role-based access control (RBAC) decorator
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid API key (except /api/v1/health)
    - The key decides the role; the calling gateway identifies the user
      with X-User-Id and X-User-Department
    - Reference-data writes and status overrides require 'super_admin'
    - X-User-Id is taken as sent. The submitter-delete and appointed-engineer
      progress checks trust it, so the service must sit behind a gateway that
      authenticates the user and overwrites X-User-Id / X-User-Department.
      Never hand API keys to end-user clients directly.

Configuration (env vars):
    API_KEYS          — comma-separated list of valid API keys
                        e.g. "key1:super_admin,key2:engineer,key3:viewer"
                        Format: "<key>:<role>" where role is
                        super_admin|admin|engineer|viewer
    API_AUTH_ENABLED  — set to "false" to disable auth (development only);
                        the role is then taken from X-User-Role
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

SUPER_ADMIN = "super_admin"
ADMIN = "admin"
ENGINEER = "engineer"
VIEWER = "viewer"

ROLES = {SUPER_ADMIN, ADMIN, ENGINEER, VIEWER}

# Role hierarchy: super_admin > admin > engineer > viewer
ROLE_HIERARCHY = {
    SUPER_ADMIN: {SUPER_ADMIN, ADMIN, ENGINEER, VIEWER},
    ADMIN: {ADMIN, ENGINEER, VIEWER},
    ENGINEER: {ENGINEER, VIEWER},
    VIEWER: {VIEWER},
}

ANONYMOUS_USER_ID = "anonymous"


@dataclass(frozen=True)
class Actor:
    """The caller of a lifecycle operation."""
    user_id: str
    role: str
    department: Optional[str] = None

    def has_role(self, minimum_role: str) -> bool:
        return minimum_role in ROLE_HIERARCHY.get(self.role, set())

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: role} mapping.

    Format: "key1:super_admin,key2:viewer,key3:engineer"
    Keys without a role default to 'viewer'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
                role = VIEWER
            keys[key.strip()] = role
        else:
            keys[entry] = VIEWER
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
            "false", "0", "no", "off",
        )
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def _set_actor(role: str) -> None:
    g.current_user_role = role
    g.actor = Actor(
        user_id=request.headers.get("X-User-Id", "").strip() or ANONYMOUS_USER_ID,
        role=role,
        department=request.headers.get("X-User-Department", "").strip() or None,
    )


def get_current_actor() -> Actor:
    """Return the Actor for the current request (viewer if none was set)."""
    actor = getattr(g, "actor", None)
    if actor is None:
        return Actor(user_id=ANONYMOUS_USER_ID, role=VIEWER)
    return actor


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_role("super_admin")
        def delete_city(ref_id): ...

    Role hierarchy: super_admin > admin > engineer > viewer
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return jsonify({"error": "Authentication required"}), 401

            allowed = ROLE_HIERARCHY.get(user_role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, minimum_role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content
    type, so this doubles as a lightweight CSRF guard.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── Before-request hook installer ────────────────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health check routes
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            role = request.headers.get("X-User-Role", "").strip().lower()
            _set_actor(role if role in ROLES else SUPER_ADMIN)
            g.api_key = "dev-mode"
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        role = api_keys.get(api_key)
        if role is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        _set_actor(role)
        g.api_key = api_key
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
