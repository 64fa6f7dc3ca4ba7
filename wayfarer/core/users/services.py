"""Account service layer."""

from __future__ import annotations

from typing import Any, Dict, Optional

from wayfarer.core.users.models import LEDGER_FIELDS, User
from wayfarer.core.users.schemas import UserUpdateRequest
from wayfarer.errors import ProtectedFieldError
from wayfarer.extensions import db


def get_user(user_id: int) -> Optional[User]:
    return db.session.get(User, int(user_id))


def update_profile(user: User, payload: Dict[str, Any]) -> User:
    """Apply client-editable profile fields.

    Raises ProtectedFieldError for ledger fields and pydantic's ValidationError
    for anything else the schema does not know.
    """
    protected = LEDGER_FIELDS.intersection(payload)
    if protected:
        raise ProtectedFieldError(protected)
    data = UserUpdateRequest.model_validate(payload)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(user, key, value.strip() if isinstance(value, str) else value)
    db.session.commit()
    return user
