"""Persistence access for claim records and the account ledger."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import lazyload

from wayfarer.core.users.models import User
from wayfarer.domains.rewards.models import ClaimRecord
from wayfarer.extensions import db


class ClaimRepository:
    """Claim-path reads refresh cached rows so a retry sees state committed by a competing claim."""

    def __init__(self, session=None):
        self._session = session if session is not None else db.session

    @property
    def session(self):
        return self._session

    def get_claim(self, fingerprint: str) -> Optional[ClaimRecord]:
        stmt = select(ClaimRecord).where(ClaimRecord.fingerprint == fingerprint)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_account(self, account_id: int, refresh: bool = False) -> Optional[User]:
        """``refresh`` overwrites the cached row, including unflushed edits, with database state."""
        stmt = select(User).where(User.id == account_id).options(lazyload(User.roles))
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def add_claim(self, record: ClaimRecord) -> None:
        self._session.add(record)


__all__ = ["ClaimRepository"]
