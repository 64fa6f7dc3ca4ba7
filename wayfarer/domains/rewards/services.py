"""Bonus claim service: the only writer of account credits and claim records."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Callable, Mapping, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from wayfarer.domains.rewards.events import REWARDS_BONUS_CLAIMED
from wayfarer.domains.rewards.guards import ledger_write_scope
from wayfarer.domains.rewards.models import ClaimRecord
from wayfarer.domains.rewards.outcomes import ClaimOutcome, ClaimResult, Eligibility
from wayfarer.domains.rewards.repository import ClaimRepository
from wayfarer.wayfarer_platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BACKOFF_SECONDS = 0.05

# Postgres serialization_failure / deadlock_detected
_RETRYABLE_PGCODES = {"40001", "40P01"}


def normalize_fingerprint(fingerprint) -> Optional[str]:
    """Return the canonical lowercase hex digest, or None if malformed."""
    if not isinstance(fingerprint, str):
        return None
    value = fingerprint.strip().lower()
    return value if FINGERPRINT_RE.match(value) else None


def short_fingerprint(fingerprint: str) -> str:
    return f"{fingerprint[:8]}…"


def _is_write_conflict(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    message = str(exc.orig).lower()
    return "database is locked" in message or "could not serialize" in message


class BonusClaimService:
    """Check-and-set of (fingerprint, account) with optimistic retries.

    Exclusivity comes from the database: the claim record's primary key is the
    fingerprint, its account column is unique, and accounts carry a version
    counter. A competing commit makes our flush fail; we roll back, re-read and
    converge on the already-claimed outcome.
    """

    def __init__(
        self,
        repository: Optional[ClaimRepository] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository or ClaimRepository()
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Mapping, repository: Optional[ClaimRepository] = None) -> "BonusClaimService":
        return cls(
            repository,
            max_attempts=int(config.get("REWARDS_CLAIM_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            retry_backoff=float(config.get("REWARDS_CLAIM_RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS)),
        )

    @property
    def session(self):
        return self.repository.session

    def check_eligibility(self, fingerprint, account_id: Optional[int]) -> Eligibility:
        """Advisory read; never flushes or commits."""
        if account_id is None:
            return Eligibility(False, ClaimOutcome.UNAUTHENTICATED)
        fp = normalize_fingerprint(fingerprint)
        if fp is None:
            return Eligibility(False, ClaimOutcome.INVALID_ARGUMENT)

        with self.session.no_autoflush:
            account = self.repository.get_account(account_id)
            if account is None or not account.is_active:
                return Eligibility(False, ClaimOutcome.UNAUTHENTICATED)
            if self.repository.get_claim(fp) is not None:
                return Eligibility(False, ClaimOutcome.DEVICE_ALREADY_CLAIMED)
            if account.bonus_claimed:
                return Eligibility(False, ClaimOutcome.ACCOUNT_ALREADY_CLAIMED)
        return Eligibility(True)

    def claim_bonus(self, fingerprint, account_id: Optional[int], bonus_amount: int) -> ClaimResult:
        if account_id is None:
            return ClaimResult(ClaimOutcome.UNAUTHENTICATED)
        fp = normalize_fingerprint(fingerprint)
        if fp is None:
            logger.info("Rejected claim with malformed fingerprint for account %s", account_id)
            return ClaimResult(ClaimOutcome.INVALID_ARGUMENT)
        if isinstance(bonus_amount, bool) or not isinstance(bonus_amount, int) or bonus_amount <= 0:
            return ClaimResult(ClaimOutcome.INVALID_ARGUMENT)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._attempt_claim(fp, account_id, bonus_amount)
            except (IntegrityError, StaleDataError) as exc:
                self.session.rollback()
                logger.info(
                    "Claim conflict for account %s on device %s (attempt %s/%s): %s",
                    account_id,
                    short_fingerprint(fp),
                    attempt,
                    self.max_attempts,
                    exc.__class__.__name__,
                )
            except OperationalError as exc:
                self.session.rollback()
                if not _is_write_conflict(exc):
                    logger.exception("Database error while claiming bonus for account %s", account_id)
                    return ClaimResult(ClaimOutcome.TRANSIENT)
                logger.info(
                    "Claim lock contention for account %s (attempt %s/%s)", account_id, attempt, self.max_attempts
                )
            if attempt < self.max_attempts and self.retry_backoff > 0:
                self._sleep(self.retry_backoff * attempt)

        logger.warning(
            "Gave up claiming bonus for account %s on device %s after %s attempts",
            account_id,
            short_fingerprint(fp),
            self.max_attempts,
        )
        return ClaimResult(ClaimOutcome.TRANSIENT)

    def get_claim(self, fingerprint) -> Optional[ClaimRecord]:
        fp = normalize_fingerprint(fingerprint)
        if fp is None:
            return None
        return self.repository.get_claim(fp)

    def _attempt_claim(self, fingerprint: str, account_id: int, bonus_amount: int) -> ClaimResult:
        session = self.session
        account = self.repository.get_account(account_id, refresh=True)
        if account is None or not account.is_active:
            return ClaimResult(ClaimOutcome.UNAUTHENTICATED)

        existing = self.repository.get_claim(fingerprint)
        if existing is not None:
            return ClaimResult(ClaimOutcome.DEVICE_ALREADY_CLAIMED, credits=account.credits)
        if account.bonus_claimed:
            return ClaimResult(ClaimOutcome.ACCOUNT_ALREADY_CLAIMED, credits=account.credits)

        claimed_at = datetime.utcnow()
        with ledger_write_scope(session):
            self.repository.add_claim(
                ClaimRecord(
                    fingerprint=fingerprint,
                    claiming_account_id=account.id,
                    bonus_amount=bonus_amount,
                    claimed_at=claimed_at,
                )
            )
            account.credits = (account.credits or 0) + bonus_amount
            account.bonus_claimed = True
            enqueue_outbox(
                REWARDS_BONUS_CLAIMED,
                {
                    "user_id": account.id,
                    "fingerprint_prefix": fingerprint[:8],
                    "bonus_amount": bonus_amount,
                    "credits": account.credits,
                    "claimed_at": claimed_at.isoformat(),
                },
                user_id=account.id,
                session=session,
            )
        session.commit()

        logger.info(
            "Bonus of %s credited to account %s for device %s",
            bonus_amount,
            account_id,
            short_fingerprint(fingerprint),
        )
        return ClaimResult(
            ClaimOutcome.CLAIMED,
            credits_awarded=bonus_amount,
            credits=account.credits,
            claimed_at=claimed_at,
        )


__all__ = ["BonusClaimService", "normalize_fingerprint", "short_fingerprint", "FINGERPRINT_RE"]
