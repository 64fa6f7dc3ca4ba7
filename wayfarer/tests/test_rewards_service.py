from __future__ import annotations

import pytest

from wayfarer.domains.rewards.events import REWARDS_BONUS_CLAIMED
from wayfarer.domains.rewards.models import ClaimRecord
from wayfarer.domains.rewards.outcomes import ClaimOutcome
from wayfarer.domains.rewards.services import BonusClaimService, normalize_fingerprint
from wayfarer.extensions import db
from wayfarer.wayfarer_platform.outbox.models import OutboxMessage

pytestmark = pytest.mark.integration

BONUS = 1000
FP_PHONE = "a1" * 32
FP_TABLET = "b2" * 32


def _service() -> BonusClaimService:
    return BonusClaimService(retry_backoff=0)


def _claim_count() -> int:
    return db.session.query(ClaimRecord).count()


class TestClaimBonus:
    def test_first_claim_credits_account_and_binds_device(self, app, make_user):
        user = make_user()

        result = _service().claim_bonus(FP_PHONE, user.id, BONUS)

        assert result.outcome is ClaimOutcome.CLAIMED
        assert result.credits_awarded == BONUS
        assert result.credits == BONUS
        assert result.claimed_at is not None
        db.session.refresh(user)
        assert user.credits == BONUS
        assert user.bonus_claimed is True
        record = db.session.get(ClaimRecord, FP_PHONE)
        assert record.claiming_account_id == user.id
        assert record.bonus_amount == BONUS

    def test_reinstall_on_same_device_is_rejected(self, app, make_user):
        user = make_user()
        service = _service()
        assert service.claim_bonus(FP_PHONE, user.id, BONUS).claimed

        # Same fingerprint after reinstall: device check wins.
        again = service.claim_bonus(FP_PHONE, user.id, BONUS)

        assert again.outcome is ClaimOutcome.DEVICE_ALREADY_CLAIMED
        assert again.credits == BONUS
        db.session.refresh(user)
        assert user.credits == BONUS
        assert _claim_count() == 1

    def test_same_account_on_second_device_is_rejected(self, app, make_user):
        user = make_user()
        service = _service()
        assert service.claim_bonus(FP_PHONE, user.id, BONUS).claimed

        result = service.claim_bonus(FP_TABLET, user.id, BONUS)

        assert result.outcome is ClaimOutcome.ACCOUNT_ALREADY_CLAIMED
        assert db.session.get(ClaimRecord, FP_TABLET) is None
        db.session.refresh(user)
        assert user.credits == BONUS

    def test_second_account_on_claimed_device_is_rejected(self, app, make_user):
        first = make_user()
        second = make_user()
        service = _service()
        assert service.claim_bonus(FP_PHONE, first.id, BONUS).claimed

        result = service.claim_bonus(FP_PHONE, second.id, BONUS)

        assert result.outcome is ClaimOutcome.DEVICE_ALREADY_CLAIMED
        db.session.refresh(second)
        assert second.credits == 0
        assert second.bonus_claimed is False
        assert db.session.get(ClaimRecord, FP_PHONE).claiming_account_id == first.id

    def test_fingerprint_is_normalized_before_storage(self, app, make_user):
        user = make_user()

        result = _service().claim_bonus(f"  {FP_PHONE.upper()} ", user.id, BONUS)

        assert result.claimed
        assert db.session.get(ClaimRecord, FP_PHONE) is not None

    @pytest.mark.parametrize("fingerprint", [None, "", "device-1", "a1" * 31, "g" * 64, 12345])
    def test_malformed_fingerprint_is_invalid(self, app, make_user, fingerprint):
        user = make_user()

        result = _service().claim_bonus(fingerprint, user.id, BONUS)

        assert result.outcome is ClaimOutcome.INVALID_ARGUMENT
        assert _claim_count() == 0

    @pytest.mark.parametrize("amount", [0, -5, True, "1000"])
    def test_non_positive_amount_is_invalid(self, app, make_user, amount):
        user = make_user()
        assert _service().claim_bonus(FP_PHONE, user.id, amount).outcome is ClaimOutcome.INVALID_ARGUMENT

    def test_missing_account_is_unauthenticated(self, app):
        assert _service().claim_bonus(FP_PHONE, None, BONUS).outcome is ClaimOutcome.UNAUTHENTICATED
        assert _service().claim_bonus(FP_PHONE, 987654, BONUS).outcome is ClaimOutcome.UNAUTHENTICATED
        assert _claim_count() == 0

    def test_inactive_account_is_unauthenticated(self, app, make_user):
        user = make_user(is_active=False)
        assert _service().claim_bonus(FP_PHONE, user.id, BONUS).outcome is ClaimOutcome.UNAUTHENTICATED

    def test_claim_stages_outbox_event_without_full_fingerprint(self, app, make_user):
        user = make_user()
        _service().claim_bonus(FP_PHONE, user.id, BONUS)

        message = db.session.query(OutboxMessage).filter_by(event_type=REWARDS_BONUS_CLAIMED).one()
        assert message.user_id == user.id
        assert message.payload["fingerprint_prefix"] == FP_PHONE[:8]
        assert message.payload["bonus_amount"] == BONUS
        assert FP_PHONE not in str(message.payload)

    def test_from_config_reads_retry_settings(self, app):
        service = BonusClaimService.from_config(
            {"REWARDS_CLAIM_MAX_ATTEMPTS": 7, "REWARDS_CLAIM_RETRY_BACKOFF_SECONDS": 0.25}
        )
        assert service.max_attempts == 7
        assert service.retry_backoff == 0.25


class TestCheckEligibility:
    def test_fresh_account_and_device_are_eligible(self, app, make_user):
        user = make_user()
        result = _service().check_eligibility(FP_PHONE, user.id)
        assert result.eligible is True
        assert result.reason is None

    def test_reports_device_before_account(self, app, make_user):
        user = make_user()
        service = _service()
        service.claim_bonus(FP_PHONE, user.id, BONUS)

        assert service.check_eligibility(FP_PHONE, user.id).reason is ClaimOutcome.DEVICE_ALREADY_CLAIMED
        assert service.check_eligibility(FP_TABLET, user.id).reason is ClaimOutcome.ACCOUNT_ALREADY_CLAIMED

    def test_other_account_sees_claimed_device(self, app, make_user):
        first = make_user()
        second = make_user()
        service = _service()
        service.claim_bonus(FP_PHONE, first.id, BONUS)

        result = service.check_eligibility(FP_PHONE, second.id)

        assert result.eligible is False
        assert result.reason is ClaimOutcome.DEVICE_ALREADY_CLAIMED

    def test_check_never_writes(self, app, make_user):
        user = make_user()
        service = _service()
        for _ in range(3):
            service.check_eligibility(FP_PHONE, user.id)

        assert _claim_count() == 0
        db.session.refresh(user)
        assert user.credits == 0
        assert user.bonus_claimed is False
        # Eligibility never consumes the bonus.
        assert service.claim_bonus(FP_PHONE, user.id, BONUS).claimed

    def test_check_keeps_unsaved_profile_edits(self, app, make_user):
        user = make_user()
        user.display_name = "Unsaved"

        assert _service().check_eligibility(FP_PHONE, user.id).eligible is True

        assert user.display_name == "Unsaved"
        assert user in db.session.dirty

    def test_invalid_inputs(self, app, make_user):
        user = make_user()
        service = _service()
        assert service.check_eligibility("nope", user.id).reason is ClaimOutcome.INVALID_ARGUMENT
        assert service.check_eligibility(FP_PHONE, None).reason is ClaimOutcome.UNAUTHENTICATED


def test_normalize_fingerprint():
    assert normalize_fingerprint(FP_PHONE.upper()) == FP_PHONE
    assert normalize_fingerprint("xyz") is None
    assert normalize_fingerprint(None) is None
