"""Rewards domain event catalog."""

from __future__ import annotations

REWARDS_BONUS_CLAIMED = "rewards.bonus.claimed"

EVENT_CATALOG = {
    REWARDS_BONUS_CLAIMED: {
        "version": "v1",
        "payload": {
            "user_id": "int",
            "fingerprint_prefix": "str",
            "bonus_amount": "int",
            "credits": "int",
            "claimed_at": "datetime",
        },
    },
}

__all__ = ["REWARDS_BONUS_CLAIMED", "EVENT_CATALOG"]
