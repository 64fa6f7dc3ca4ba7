"""HTTP transport for the rewards API."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import requests

from wayfarer.domains.rewards.outcomes import ClaimOutcome, ClaimResult, Eligibility

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class BonusApiClient:
    """Thin wrapper over ``/api/rewards``.

    Every failure mode is folded into a :class:`ClaimOutcome`; network errors
    and timeouts become ``TRANSIENT`` because the server-side effect of the
    call is unknown.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]],
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self.timeout = timeout
        self.session = session or requests.Session()

    def check_eligibility(self, fingerprint: str) -> Eligibility:
        body = self._post("/api/rewards/eligibility", fingerprint)
        if isinstance(body, ClaimOutcome):
            return Eligibility(False, body)
        if "eligible" not in body:
            return Eligibility(False, ClaimOutcome.from_wire(body.get("status"), body.get("code")))
        if body["eligible"]:
            return Eligibility(True)
        try:
            reason = ClaimOutcome(body.get("reason"))
        except ValueError:
            logger.warning("Unknown eligibility reason from server: %r", body.get("reason"))
            reason = ClaimOutcome.TRANSIENT
        return Eligibility(False, reason)

    def claim_bonus(self, fingerprint: str) -> ClaimResult:
        body = self._post("/api/rewards/claim", fingerprint)
        if isinstance(body, ClaimOutcome):
            return ClaimResult(body)
        outcome = ClaimOutcome.from_wire(body.get("status"), body.get("code"))
        return ClaimResult(
            outcome,
            credits_awarded=int(body.get("credits_awarded") or 0),
            credits=body.get("credits"),
        )

    def _post(self, path: str, fingerprint: str):
        token = self._token_provider()
        if not token:
            return ClaimOutcome.UNAUTHENTICATED
        try:
            resp = self.session.post(
                f"{self.base_url}{path}",
                json={"fingerprint": fingerprint},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            logger.warning("Rewards API unreachable (%s): %s", path, exc)
            return ClaimOutcome.TRANSIENT
        except requests.RequestException as exc:
            logger.warning("Rewards API request failed (%s): %s", path, exc)
            return ClaimOutcome.TRANSIENT

        try:
            body = resp.json()
        except ValueError:
            logger.warning("Rewards API returned non-JSON (%s, HTTP %s)", path, resp.status_code)
            return ClaimOutcome.TRANSIENT
        if not isinstance(body, dict):
            return ClaimOutcome.TRANSIENT
        return body
