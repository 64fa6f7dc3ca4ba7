"""Single "claim startup bonus" action for the UI layer."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from wayfarer.client.api import BonusApiClient
from wayfarer.client.config import ClientConfig
from wayfarer.client.identity import DeviceIdentityProvider
from wayfarer.client.secure_store import FileSecureStore
from wayfarer.domains.rewards.outcomes import ClaimOutcome, ClaimResult
from wayfarer.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class ClaimUiState(str, Enum):
    IDLE = "idle"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    RETRYABLE_ERROR = "retryable_error"
    REAUTH_REQUIRED = "reauth_required"
    FAILED = "failed"


_UI_STATE_BY_OUTCOME = {
    ClaimOutcome.CLAIMED: ClaimUiState.CLAIMED,
    ClaimOutcome.DEVICE_ALREADY_CLAIMED: ClaimUiState.ALREADY_CLAIMED,
    ClaimOutcome.ACCOUNT_ALREADY_CLAIMED: ClaimUiState.ALREADY_CLAIMED,
    ClaimOutcome.UNAUTHENTICATED: ClaimUiState.REAUTH_REQUIRED,
    ClaimOutcome.INVALID_ARGUMENT: ClaimUiState.FAILED,
    ClaimOutcome.TRANSIENT: ClaimUiState.RETRYABLE_ERROR,
    ClaimOutcome.STORAGE_UNAVAILABLE: ClaimUiState.RETRYABLE_ERROR,
}


@dataclass
class LocalBalance:
    """Cached account state shown by the UI; only server answers update it."""

    credits: Optional[int] = None
    bonus_claimed: bool = False


class StartupBonusClaimer:
    """Wraps identity + API behind one action and collapses concurrent taps.

    One instance per signed-in account session. While a claim is in flight,
    further calls return ``IN_PROGRESS`` without touching the network.
    """

    def __init__(
        self,
        identity: DeviceIdentityProvider,
        api: BonusApiClient,
        balance: Optional[LocalBalance] = None,
    ):
        self.identity = identity
        self.api = api
        self.balance = balance or LocalBalance()
        self.state = ClaimUiState.IDLE
        self.last_result: Optional[ClaimResult] = None
        self._in_flight = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        token_provider: Callable[[], Optional[str]],
        balance: Optional[LocalBalance] = None,
    ) -> "StartupBonusClaimer":
        """Wire the file-backed store and HTTP transport described by ``config``."""
        identity = DeviceIdentityProvider(FileSecureStore(config.store_dir))
        api = BonusApiClient(config.api_url, token_provider, timeout=config.timeout)
        return cls(identity, api, balance=balance)

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def refresh_eligibility(self) -> ClaimUiState:
        """Advisory check used to decide whether to show the claim button."""
        if self.balance.bonus_claimed:
            self.state = ClaimUiState.ALREADY_CLAIMED
            return self.state
        try:
            fingerprint = self.identity.get_fingerprint()
        except StorageUnavailable as exc:
            logger.info("Device identity unavailable, eligibility unknown: %s", exc)
            return self._set_state(ClaimOutcome.STORAGE_UNAVAILABLE)

        result = self.api.check_eligibility(fingerprint)
        if result.eligible:
            self.state = ClaimUiState.AVAILABLE
            return self.state
        if result.reason is not None and result.reason.already_claimed:
            self.balance.bonus_claimed = True
        return self._set_state(result.reason or ClaimOutcome.TRANSIENT)

    def claim_startup_bonus(self) -> ClaimUiState:
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Claim already in flight; ignoring duplicate trigger")
            return ClaimUiState.IN_PROGRESS
        try:
            self.state = ClaimUiState.IN_PROGRESS
            return self._claim()
        finally:
            self._in_flight.release()

    def _claim(self) -> ClaimUiState:
        try:
            fingerprint = self.identity.get_fingerprint()
        except StorageUnavailable as exc:
            logger.info("Device identity unavailable, claim postponed: %s", exc)
            self.last_result = ClaimResult(ClaimOutcome.STORAGE_UNAVAILABLE)
            return self._set_state(ClaimOutcome.STORAGE_UNAVAILABLE)

        result = self.api.claim_bonus(fingerprint)
        self.last_result = result

        if result.outcome is ClaimOutcome.CLAIMED:
            self.balance.bonus_claimed = True
            if result.credits is not None:
                self.balance.credits = result.credits
            elif self.balance.credits is not None:
                self.balance.credits += result.credits_awarded
        elif result.outcome.already_claimed:
            self.balance.bonus_claimed = True
            if result.credits is not None:
                self.balance.credits = result.credits
        elif result.outcome is ClaimOutcome.INVALID_ARGUMENT:
            logger.error("Server rejected device fingerprint as malformed")
        return self._set_state(result.outcome)

    def _set_state(self, outcome: ClaimOutcome) -> ClaimUiState:
        self.state = _UI_STATE_BY_OUTCOME[outcome]
        return self.state
