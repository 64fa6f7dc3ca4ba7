"""Authentication service layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    decode_token,
)
from sqlalchemy import func

from wayfarer.core.auth.events import AUTH_SESSION_REVOKED, AUTH_USER_REGISTERED
from wayfarer.core.auth.models import JWTBlocklist, Role, SessionToken
from wayfarer.core.auth.password import hash_password, verify_password
from wayfarer.core.auth.schemas import RegisterRequest
from wayfarer.core.users.models import User
from wayfarer.extensions import db
from wayfarer.wayfarer_platform.outbox import enqueue as enqueue_outbox

DEFAULT_TIMEZONE = "utc"
# Roles granted to every new account by default.
DEFAULT_REGISTER_ROLES = ("user",)


def authenticate_user(email: str, password: str) -> Optional[User]:
    """Return the user if credentials are valid."""
    user = User.query.filter(func.lower(User.email) == email.strip().lower()).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def issue_tokens(user: User) -> dict[str, str]:
    """Create access and refresh tokens for a user."""
    identity = str(user.id)
    access_token = create_access_token(identity=identity, additional_claims={"roles": user.role_codes})
    refresh_token = create_refresh_token(identity=identity)

    # Persist refresh jti for revocation checks
    decoded_refresh = decode_token(refresh_token)
    refresh_jti = decoded_refresh.get("jti")
    expires = decoded_refresh.get("exp")
    db.session.add(
        SessionToken(
            user_id=user.id,
            jti=refresh_jti,
            expires_at=datetime.utcfromtimestamp(expires) if expires else None,
        )
    )
    db.session.commit()

    return {"access_token": access_token, "refresh_token": refresh_token}


def revoke_refresh_token(jti: str, user_id: int) -> None:
    """Revoke a refresh token by JTI."""
    token = SessionToken.query.filter_by(jti=jti).first()
    if token:
        token.revoked = True
    db.session.add(JWTBlocklist(jti=jti))
    enqueue_outbox(AUTH_SESSION_REVOKED, {"user_id": user_id, "jti": jti}, user_id=user_id)
    db.session.commit()


def is_token_revoked(jti: Optional[str]) -> bool:
    if not jti:
        return False
    return JWTBlocklist.query.filter_by(jti=jti).first() is not None


def register_user(payload: RegisterRequest) -> User:
    """Create an account, assign default roles, and emit events via outbox."""
    normalized_email = payload.email.strip().lower()
    existing = User.query.filter(func.lower(User.email) == normalized_email).first()
    if existing:
        raise ValueError("email_already_exists")

    user = User(
        email=normalized_email,
        display_name=payload.display_name,
        timezone=payload.timezone or DEFAULT_TIMEZONE,
        password_hash=hash_password(payload.password),
    )
    db.session.add(user)
    _assign_default_roles(user)
    db.session.flush()  # ensure user.id for events

    enqueue_outbox(
        AUTH_USER_REGISTERED,
        {"user_id": user.id, "email": user.email, "display_name": user.display_name},
        user_id=user.id,
    )
    db.session.commit()
    return user


def _assign_default_roles(user: User) -> None:
    for code in DEFAULT_REGISTER_ROLES:
        role = Role.query.filter_by(name=code).first()
        if not role:
            role = Role(name=code, description=f"Auto-created role {code}")
            db.session.add(role)
        if role not in user.roles:
            user.roles.append(role)
