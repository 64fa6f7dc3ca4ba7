"""Data-access guards for the bonus ledger.

``credits`` / ``bonus_claimed`` on accounts and every claim record can only be
written inside :func:`ledger_write_scope`, which the claim service opens around
its transaction. The checks run as SQLAlchemy session events, so they hold for
any code path that goes through the ORM, not only the HTTP handlers. Writes
that bypass the session (raw SQL, ``bulk_*_mappings``) are stopped by the
triggers in :mod:`wayfarer.domains.rewards.storage_rules`.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from typing import Iterator, Optional, Set

from sqlalchemy import delete, event, insert, inspect
from sqlalchemy.orm import Session

from wayfarer.core.users.models import LEDGER_FIELDS, User
from wayfarer.domains.rewards.models import ClaimRecord, LedgerWriteGrant
from wayfarer.errors import ImmutableRecordError, ProtectedFieldError

logger = logging.getLogger(__name__)

LEDGER_SCOPE_KEY = "wayfarer.ledger_write_scope"
USER_TABLE = User.__tablename__
CLAIM_TABLE = ClaimRecord.__tablename__


@contextmanager
def ledger_write_scope(session) -> Iterator[None]:
    """Allow ledger writes on ``session`` for the duration of the block.

    A grant row is inserted for the storage triggers and removed again when
    the block exits normally, so the caller must flush inside the block and
    commit after it. On error the grant is left to the caller's rollback.
    """
    token = secrets.token_hex(16)
    session.execute(insert(LedgerWriteGrant).values(token=token))
    previous = session.info.get(LEDGER_SCOPE_KEY, False)
    session.info[LEDGER_SCOPE_KEY] = True
    try:
        yield
        session.flush()
        session.execute(delete(LedgerWriteGrant).where(LedgerWriteGrant.token == token))
    finally:
        session.info[LEDGER_SCOPE_KEY] = previous


def _ledger_open(session) -> bool:
    return bool(session.info.get(LEDGER_SCOPE_KEY, False))


def _changed_ledger_fields(user: User) -> Set[str]:
    state = inspect(user)
    return {name for name in LEDGER_FIELDS if state.attrs[name].history.has_changes()}


@event.listens_for(Session, "before_flush")
def _guard_ledger_flush(session, flush_context, instances) -> None:
    ledger_open = _ledger_open(session)

    for obj in session.deleted:
        if isinstance(obj, ClaimRecord):
            raise ImmutableRecordError(f"claim record {obj.fingerprint[:8]} cannot be deleted")

    for obj in session.dirty:
        if isinstance(obj, ClaimRecord) and session.is_modified(obj):
            raise ImmutableRecordError(f"claim record {obj.fingerprint[:8]} cannot be modified")
        if isinstance(obj, User) and not ledger_open:
            changed = _changed_ledger_fields(obj)
            if changed:
                raise ProtectedFieldError(changed)

    if ledger_open:
        return
    for obj in session.new:
        if isinstance(obj, ClaimRecord):
            raise ProtectedFieldError({"claim_record"})
        if isinstance(obj, User):
            changed = set()
            if obj.credits:
                changed.add("credits")
            if obj.bonus_claimed:
                changed.add("bonus_claimed")
            if changed:
                raise ProtectedFieldError(changed)


def _written_columns(orm_execute_state) -> Optional[Set[str]]:
    """Column names an INSERT/UPDATE sets, or None when the shape is not a plain mapping."""
    statement = orm_execute_state.statement
    if getattr(statement, "_multi_values", None) or getattr(statement, "_ordered_values", None):
        return None
    names = {str(getattr(key, "key", key)) for key in (getattr(statement, "_values", None) or {})}
    params = orm_execute_state.parameters
    for row in params if isinstance(params, (list, tuple)) else [params]:
        if isinstance(row, dict):
            names.update(str(key) for key in row)
    return names


@event.listens_for(Session, "do_orm_execute")
def _guard_ledger_statements(orm_execute_state) -> None:
    if not (orm_execute_state.is_insert or orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    # ORM entities and Core tables both expose the target table here.
    table = getattr(getattr(orm_execute_state.statement, "table", None), "name", None)
    ledger_open = _ledger_open(orm_execute_state.session)

    if table == CLAIM_TABLE:
        if not orm_execute_state.is_insert:
            raise ImmutableRecordError("claim records cannot be bulk updated or deleted")
        if not ledger_open:
            raise ProtectedFieldError({"claim_record"})
    elif table == USER_TABLE and not ledger_open and not orm_execute_state.is_delete:
        written = _written_columns(orm_execute_state)
        touched = set(LEDGER_FIELDS) if written is None else LEDGER_FIELDS.intersection(written)
        if touched:
            logger.warning("Blocked statement writing ledger fields: %s", sorted(touched))
            raise ProtectedFieldError(touched)
