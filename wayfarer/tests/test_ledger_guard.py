from __future__ import annotations

import pytest
from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from wayfarer.core.users.models import User
from wayfarer.domains.rewards.guards import LEDGER_SCOPE_KEY, ledger_write_scope
from wayfarer.domains.rewards.models import ClaimRecord, LedgerWriteGrant
from wayfarer.domains.rewards.outcomes import ClaimOutcome
from wayfarer.domains.rewards.repository import ClaimRepository
from wayfarer.domains.rewards.services import BonusClaimService
from wayfarer.domains.rewards.storage_rules import (
    CLAIM_IMMUTABLE_MESSAGE,
    CLAIM_INSERT_DENIED_MESSAGE,
    LEDGER_DENIED_MESSAGE,
)
from wayfarer.errors import ImmutableRecordError, ProtectedFieldError

pytestmark = pytest.mark.integration

FINGERPRINT = "d4" * 32
OTHER_FINGERPRINT = "ab" * 32


@pytest.fixture()
def session(isolated_engine):
    with Session(isolated_engine) as session:
        yield session


def _user(session, email="guard@example.com") -> User:
    user = User(email=email, password_hash="test")
    session.add(user)
    session.commit()
    return user


def _claimed_user(session, email="claimed@example.com") -> User:
    user = _user(session, email)
    service = BonusClaimService(ClaimRepository(session), retry_backoff=0)
    assert service.claim_bonus(FINGERPRINT, user.id, 1000).outcome is ClaimOutcome.CLAIMED
    return user


def _credits(engine, user_id: int) -> int:
    with Session(engine) as fresh:
        return fresh.scalar(select(User.credits).where(User.id == user_id))


class TestLedgerFieldGuard:
    def test_direct_credit_write_is_rejected(self, session):
        user = _user(session)
        user.credits = 5000
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.flush()
        assert excinfo.value.fields == {"credits"}

        session.rollback()
        assert session.get(User, user.id).credits == 0

    def test_direct_bonus_flag_write_is_rejected(self, session):
        user = _user(session)
        user.bonus_claimed = True
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.commit()
        assert excinfo.value.fields == {"bonus_claimed"}

    def test_new_account_cannot_start_with_credits(self, session):
        session.add(User(email="rich@example.com", password_hash="test", credits=500, bonus_claimed=True))
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.flush()
        assert excinfo.value.fields == {"credits", "bonus_claimed"}

    def test_profile_fields_are_writable(self, session):
        user = _user(session)
        user.display_name = "Marco"
        user.home_city = "Venice"
        session.commit()
        assert session.get(User, user.id).home_city == "Venice"

    def test_ledger_scope_allows_write_and_restores_flag(self, session):
        user = _user(session)
        with ledger_write_scope(session):
            user.credits = 10
        assert session.info[LEDGER_SCOPE_KEY] is False
        assert session.scalar(select(func.count()).select_from(LedgerWriteGrant)) == 0
        session.rollback()

    def test_bulk_update_of_credits_is_rejected(self, session):
        user = _user(session)
        with pytest.raises(ProtectedFieldError):
            session.execute(update(User).where(User.id == user.id).values(credits=99))

    def test_bulk_update_by_primary_key_is_rejected(self, session):
        user = _user(session)
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.execute(update(User), [{"id": user.id, "bonus_claimed": True}])
        assert excinfo.value.fields == {"bonus_claimed"}

    def test_core_table_update_is_rejected(self, session, isolated_engine):
        user = _user(session)
        with pytest.raises(ProtectedFieldError):
            session.execute(update(User.__table__).where(User.__table__.c.id == user.id).values(credits=99999))
        session.rollback()
        assert _credits(isolated_engine, user.id) == 0

    def test_bulk_update_of_profile_fields_is_allowed(self, session):
        user = _user(session)
        session.execute(update(User).where(User.id == user.id).values(home_city="Lisbon"))
        session.commit()
        assert session.scalar(select(User.home_city).where(User.id == user.id)) == "Lisbon"


class TestStorageTriggers:
    """Writes that never reach the session events still hit the database rules."""

    def test_raw_sql_credit_update_is_rejected(self, session, isolated_engine):
        user = _user(session)
        with pytest.raises(DBAPIError, match=LEDGER_DENIED_MESSAGE):
            session.execute(text('UPDATE "user" SET credits = 99999 WHERE id = :id'), {"id": user.id})
        session.rollback()
        assert _credits(isolated_engine, user.id) == 0

    def test_raw_sql_profile_update_is_allowed(self, session):
        user = _user(session)
        session.execute(text('UPDATE "user" SET home_city = :city WHERE id = :id'), {"city": "Porto", "id": user.id})
        session.commit()
        assert session.scalar(select(User.home_city).where(User.id == user.id)) == "Porto"

    def test_bulk_update_mappings_cannot_credit(self, session, isolated_engine):
        user = _user(session)
        mapping = {"id": user.id, "credits": 77777, "bonus_claimed": True, "version_id": user.version_id}
        with pytest.raises(DBAPIError, match=LEDGER_DENIED_MESSAGE):
            session.bulk_update_mappings(User, [mapping])
            session.commit()
        session.rollback()
        assert _credits(isolated_engine, user.id) == 0

    def test_bulk_insert_mappings_cannot_add_claim(self, session, isolated_engine):
        user = _user(session)
        row = {"fingerprint": OTHER_FINGERPRINT, "claiming_account_id": user.id, "bonus_amount": 1000}
        with pytest.raises(DBAPIError, match=CLAIM_INSERT_DENIED_MESSAGE):
            session.bulk_insert_mappings(ClaimRecord, [row])
            session.commit()
        session.rollback()
        with Session(isolated_engine) as fresh:
            assert fresh.get(ClaimRecord, OTHER_FINGERPRINT) is None

    def test_connection_level_delete_is_rejected(self, session, isolated_engine):
        _claimed_user(session)
        with pytest.raises(DBAPIError, match=CLAIM_IMMUTABLE_MESSAGE):
            with isolated_engine.begin() as conn:
                conn.execute(delete(ClaimRecord.__table__))
        with Session(isolated_engine) as fresh:
            assert fresh.get(ClaimRecord, FINGERPRINT) is not None

    def test_grant_only_lasts_for_the_scope(self, session, isolated_engine):
        user = _user(session)
        stmt = text('UPDATE "user" SET credits = credits + 5 WHERE id = :id')
        with ledger_write_scope(session):
            session.execute(stmt, {"id": user.id})
        session.commit()
        assert _credits(isolated_engine, user.id) == 5

        with pytest.raises(DBAPIError, match=LEDGER_DENIED_MESSAGE):
            session.execute(stmt, {"id": user.id})

    def test_claim_leaves_no_grant_behind(self, session):
        _claimed_user(session)
        assert session.scalar(select(func.count()).select_from(LedgerWriteGrant)) == 0


class TestClaimRecordGuard:
    def test_claim_record_cannot_be_added_outside_claim_flow(self, session):
        user = _user(session)
        session.add(ClaimRecord(fingerprint=FINGERPRINT, claiming_account_id=user.id, bonus_amount=1000))
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.flush()
        assert excinfo.value.fields == {"claim_record"}

    def test_insert_statement_outside_claim_flow_is_rejected(self, session):
        user = _user(session)
        with pytest.raises(ProtectedFieldError) as excinfo:
            session.execute(
                insert(ClaimRecord).values(fingerprint=FINGERPRINT, claiming_account_id=user.id, bonus_amount=1000)
            )
        assert excinfo.value.fields == {"claim_record"}

    def test_core_table_insert_outside_claim_flow_is_rejected(self, session):
        user = _user(session)
        with pytest.raises(ProtectedFieldError):
            session.execute(
                insert(ClaimRecord.__table__).values(
                    fingerprint=FINGERPRINT, claiming_account_id=user.id, bonus_amount=1000
                )
            )

    def test_claim_record_cannot_be_modified(self, session):
        _claimed_user(session)
        record = session.get(ClaimRecord, FINGERPRINT)
        with pytest.raises(ImmutableRecordError):
            with ledger_write_scope(session):
                record.bonus_amount = 1

    def test_claim_record_cannot_be_deleted(self, session):
        _claimed_user(session)
        record = session.get(ClaimRecord, FINGERPRINT)
        session.delete(record)
        with pytest.raises(ImmutableRecordError):
            session.flush()

    def test_claim_record_bulk_delete_is_rejected(self, session):
        _claimed_user(session)
        with pytest.raises(ImmutableRecordError):
            session.execute(delete(ClaimRecord))
        assert session.get(ClaimRecord, FINGERPRINT) is not None

    def test_core_table_update_of_claim_is_rejected(self, session):
        _claimed_user(session)
        with pytest.raises(ImmutableRecordError):
            session.execute(update(ClaimRecord.__table__).values(bonus_amount=1))
