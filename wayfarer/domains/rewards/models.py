"""Claim records binding a device fingerprint to exactly one account."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column

from wayfarer.domains.rewards.storage_rules import GRANT_TABLE, on_metadata_create
from wayfarer.extensions import db


class ClaimRecord(db.Model):
    """Insert-only; the primary key makes a second claim per device impossible."""

    __tablename__ = "bonus_claim_record"
    __table_args__ = (
        db.UniqueConstraint("claiming_account_id", name="uq_bonus_claim_record_account"),
    )

    fingerprint: Mapped[str] = mapped_column(db.String(64), primary_key=True)
    claiming_account_id: Mapped[int] = mapped_column(db.ForeignKey("user.id"), nullable=False)
    bonus_amount: Mapped[int] = mapped_column(nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)


class LedgerWriteGrant(db.Model):
    """Exists only inside an open claim transaction; the ledger triggers look for it."""

    __tablename__ = GRANT_TABLE

    token: Mapped[str] = mapped_column(db.String(32), primary_key=True)


event.listen(db.metadata, "after_create", on_metadata_create)
