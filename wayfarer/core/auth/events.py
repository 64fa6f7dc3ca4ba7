"""Auth domain event catalog."""

from __future__ import annotations

AUTH_USER_REGISTERED = "auth.user.registered"
AUTH_SESSION_REVOKED = "auth.session.revoked"

EVENT_CATALOG = {
    AUTH_USER_REGISTERED: {
        "version": "v1",
        "payload": {
            "user_id": "int",
            "email": "str",
            "display_name": "str?",
        },
    },
    AUTH_SESSION_REVOKED: {
        "version": "v1",
        "payload": {"user_id": "int", "jti": "str"},
    },
}

__all__ = ["AUTH_USER_REGISTERED", "AUTH_SESSION_REVOKED", "EVENT_CATALOG"]
