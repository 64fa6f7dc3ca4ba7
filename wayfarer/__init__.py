"""Wayfarer application factory and bootstrap."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from flask import Flask

from wayfarer.config import config_by_name
from wayfarer.extensions import init_extensions, jwt


def create_app(config_name: Optional[str] = None, overrides: Optional[dict] = None) -> Flask:
    """Create and configure the Wayfarer Flask application."""
    env_name = (config_name or os.environ.get("APP_ENV") or "development").lower()
    project_root = Path(__file__).resolve().parent.parent
    instance_root = project_root / "instance"

    app = Flask(
        __name__,
        instance_path=str(instance_root),
        instance_relative_config=True,
    )
    config_cls = config_by_name.get(env_name, config_by_name["development"])
    app.config.from_object(config_cls)
    if overrides:
        app.config.update(overrides)

    instance_root.mkdir(parents=True, exist_ok=True)

    # Normalize sqlite path to absolute to avoid "unable to open database file"
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    is_sqlite = db_uri and db_uri.startswith("sqlite:")
    if is_sqlite and db_uri.startswith("sqlite:///") and not db_uri.startswith("sqlite:////"):
        db_path = db_uri.replace("sqlite:///", "", 1)
        abs_path = project_root / db_path
        abs_path.parent.mkdir(parents=True, exist_ok=True)
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{abs_path}"

    if not is_sqlite:
        # Remove sqlite-specific connect_args that break Postgres/MySQL drivers in CI
        engine_opts = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_opts.get("connect_args") or {}
        if "timeout" in connect_args:
            timeout_val = connect_args.pop("timeout")
            if db_uri.startswith("postgresql"):
                connect_args.setdefault("connect_timeout", timeout_val)
        if not connect_args and "connect_args" in engine_opts:
            engine_opts.pop("connect_args")
        else:
            engine_opts["connect_args"] = connect_args

    init_extensions(app)
    _register_models()
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_auth_handlers(app)

    @app.get("/health")
    def health():
        return {"ok": True}, 200

    @app.get("/api/v1/ping")
    def ping():
        """Lightweight endpoint for load-balancer health checks."""
        return {"pong": True}, 200

    from wayfarer.domains.rewards.cli import register_commands

    register_commands(app)

    return app


def _register_models() -> None:
    """Import model modules so metadata and ORM guards are complete."""
    from wayfarer.core.auth import models as _auth_models  # noqa: F401
    from wayfarer.core.events import event_models as _event_models  # noqa: F401
    from wayfarer.core.users import models as _user_models  # noqa: F401
    from wayfarer.domains.rewards import guards as _reward_guards  # noqa: F401
    from wayfarer.domains.rewards import models as _reward_models  # noqa: F401
    from wayfarer.wayfarer_platform.outbox import models as _outbox_models  # noqa: F401


def _register_blueprints(app: Flask) -> None:
    """Lazy import and register all controllers."""
    from wayfarer.core.auth.controllers import auth_bp  # local import to avoid circulars
    from wayfarer.core.users.controllers import user_api_bp
    from wayfarer.domains.rewards.controllers import rewards_api_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(user_api_bp, url_prefix="/api/users")
    app.register_blueprint(rewards_api_bp, url_prefix="/api/rewards")


def _register_error_handlers(app: Flask) -> None:
    """Basic JSON error responses."""
    from werkzeug.exceptions import HTTPException

    from wayfarer.errors import ProtectedFieldError

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return {"ok": False, "error": exc.description}, exc.code

    @app.errorhandler(ProtectedFieldError)
    def _protected_field(exc: ProtectedFieldError):
        app.logger.warning("Rejected direct write to protected fields: %s", exc.fields)
        return {"ok": False, "error": "protected_field", "fields": sorted(exc.fields)}, 403

    @app.errorhandler(Exception)
    def _generic_error(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        # In debug/testing, surface the exception message to speed up diagnosis
        if app.debug or app.testing:
            return {"ok": False, "error": str(exc)}, 500
        return {"ok": False, "error": "unexpected_error"}, 500


def _register_auth_handlers(app: Flask) -> None:
    """JWT callbacks: stable symbolic errors and refresh-token revocation."""

    def _unauthenticated(reason: str):
        return (
            {
                "ok": False,
                "status": "error",
                "error": "unauthenticated",
                "code": "unauthenticated",
                "details": reason,
            },
            401,
        )

    @jwt.unauthorized_loader
    def _missing_token(reason: str):
        return _unauthenticated(reason)

    @jwt.invalid_token_loader
    def _invalid_token(reason: str):
        return _unauthenticated(reason)

    @jwt.expired_token_loader
    def _expired_token(_header, _payload):
        return _unauthenticated("token_expired")

    @jwt.revoked_token_loader
    def _revoked_token(_header, _payload):
        return _unauthenticated("token_revoked")

    @jwt.token_in_blocklist_loader
    def _is_revoked(_header, payload) -> bool:
        from wayfarer.core.auth.auth_service import is_token_revoked

        return is_token_revoked(payload.get("jti"))
