"""Closed set of claim outcomes shared by the server and the client library.

Callers branch on the symbolic values here, never on HTTP status codes. Each
outcome knows how it is rendered on the wire (``status`` and ``code``) and
whether retrying can change the answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

STATUS_CLAIMED = "claimed"
STATUS_ALREADY_CLAIMED_DEVICE = "already_claimed_device"
STATUS_ALREADY_CLAIMED_ACCOUNT = "already_claimed_account"
STATUS_ERROR = "error"

CODE_ALREADY_EXISTS = "already-exists"
CODE_FAILED_PRECONDITION = "failed-precondition"
CODE_UNAUTHENTICATED = "unauthenticated"
CODE_INVALID_ARGUMENT = "invalid-argument"
CODE_UNAVAILABLE = "unavailable"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    DEVICE_ALREADY_CLAIMED = "device_already_claimed"
    ACCOUNT_ALREADY_CLAIMED = "account_already_claimed"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid_argument"
    TRANSIENT = "transient"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def status(self) -> str:
        return _WIRE[self][0]

    @property
    def code(self) -> Optional[str]:
        return _WIRE[self][1]

    @property
    def http_status(self) -> int:
        return _WIRE[self][2]

    @property
    def retryable(self) -> bool:
        return self in (ClaimOutcome.TRANSIENT, ClaimOutcome.STORAGE_UNAVAILABLE)

    @property
    def already_claimed(self) -> bool:
        return self in (ClaimOutcome.DEVICE_ALREADY_CLAIMED, ClaimOutcome.ACCOUNT_ALREADY_CLAIMED)

    @classmethod
    def from_wire(cls, status: Optional[str], code: Optional[str] = None) -> "ClaimOutcome":
        """Resolve a response's status/code pair; unknown pairs are transient."""
        if status == STATUS_CLAIMED:
            return cls.CLAIMED
        if status == STATUS_ALREADY_CLAIMED_DEVICE or code == CODE_ALREADY_EXISTS:
            return cls.DEVICE_ALREADY_CLAIMED
        if status == STATUS_ALREADY_CLAIMED_ACCOUNT or code == CODE_FAILED_PRECONDITION:
            return cls.ACCOUNT_ALREADY_CLAIMED
        if code == CODE_UNAUTHENTICATED:
            return cls.UNAUTHENTICATED
        if code == CODE_INVALID_ARGUMENT:
            return cls.INVALID_ARGUMENT
        return cls.TRANSIENT


# outcome -> (status, code, http status)
_WIRE = {
    ClaimOutcome.CLAIMED: (STATUS_CLAIMED, None, 200),
    ClaimOutcome.DEVICE_ALREADY_CLAIMED: (STATUS_ALREADY_CLAIMED_DEVICE, CODE_ALREADY_EXISTS, 409),
    ClaimOutcome.ACCOUNT_ALREADY_CLAIMED: (STATUS_ALREADY_CLAIMED_ACCOUNT, CODE_FAILED_PRECONDITION, 409),
    ClaimOutcome.UNAUTHENTICATED: (STATUS_ERROR, CODE_UNAUTHENTICATED, 401),
    ClaimOutcome.INVALID_ARGUMENT: (STATUS_ERROR, CODE_INVALID_ARGUMENT, 400),
    ClaimOutcome.TRANSIENT: (STATUS_ERROR, CODE_UNAVAILABLE, 503),
    ClaimOutcome.STORAGE_UNAVAILABLE: (STATUS_ERROR, CODE_UNAVAILABLE, 503),
}


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    credits_awarded: int = 0
    credits: Optional[int] = None
    claimed_at: Optional[datetime] = None

    @property
    def claimed(self) -> bool:
        return self.outcome is ClaimOutcome.CLAIMED

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": self.claimed, "status": self.outcome.status}
        if self.outcome.code:
            payload["code"] = self.outcome.code
        if self.claimed:
            payload["credits_awarded"] = self.credits_awarded
        if self.credits is not None:
            payload["credits"] = self.credits
        if self.claimed_at is not None:
            payload["claimed_at"] = self.claimed_at.isoformat()
        return payload


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[ClaimOutcome] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": True, "eligible": self.eligible}
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload


__all__ = [
    "ClaimOutcome",
    "ClaimResult",
    "Eligibility",
    "STATUS_CLAIMED",
    "STATUS_ALREADY_CLAIMED_DEVICE",
    "STATUS_ALREADY_CLAIMED_ACCOUNT",
    "STATUS_ERROR",
    "CODE_ALREADY_EXISTS",
    "CODE_FAILED_PRECONDITION",
    "CODE_UNAUTHENTICATED",
    "CODE_INVALID_ARGUMENT",
    "CODE_UNAVAILABLE",
]
