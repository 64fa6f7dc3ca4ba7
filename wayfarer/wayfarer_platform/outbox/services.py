"""Outbox staging and archiving into the permanent event log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from wayfarer.core.events.event_models import EventRecord
from wayfarer.extensions import db
from wayfarer.wayfarer_platform.outbox.models import OutboxMessage

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ARCHIVED = "archived"
DEFAULT_BATCH_SIZE = 100


def enqueue(
    event_name: str,
    payload: dict,
    user_id: Optional[int],
    session=None,
) -> OutboxMessage:
    """
    Stage an event in the outbox. Caller should commit alongside domain changes.
    """
    message = OutboxMessage(
        event_type=event_name,
        payload=payload or {},
        user_id=user_id,
        status=STATUS_PENDING,
    )
    (session or db.session).add(message)
    return message


def archive_pending(batch_size: int = DEFAULT_BATCH_SIZE, session=None) -> int:
    """Copy one batch of pending messages into ``event_record`` and mark them archived.

    Rows are taken in commit order with ``SKIP LOCKED`` so two archivers never
    copy the same message. Returns the number of messages archived.
    """
    session = session or db.session
    try:
        messages = (
            session.query(OutboxMessage)
            .filter(OutboxMessage.status == STATUS_PENDING)
            .order_by(OutboxMessage.id)
            .with_for_update(skip_locked=True)
            .limit(batch_size)
            .all()
        )
        archived_at = datetime.utcnow()
        for message in messages:
            payload = dict(message.payload or {})
            payload.setdefault("event_id", message.id)
            session.add(
                EventRecord(
                    event_type=message.event_type,
                    payload=payload,
                    user_id=message.user_id,
                    created_at=message.created_at,
                )
            )
            message.status = STATUS_ARCHIVED
            message.archived_at = archived_at
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Database error while archiving outbox batch")
        raise

    if messages:
        logger.info("Archived %s outbox message(s)", len(messages))
    return len(messages)


def archive_all(batch_size: int = DEFAULT_BATCH_SIZE, max_batches: Optional[int] = None, session=None) -> int:
    """Drain the outbox batch by batch; stops early after ``max_batches``."""
    total = 0
    batches = 0
    while max_batches is None or batches < max_batches:
        archived = archive_pending(batch_size, session=session)
        total += archived
        batches += 1
        if archived < batch_size:
            break
    return total
