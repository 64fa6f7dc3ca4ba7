"""Rewards JSON API controllers (thin, schema-validated)."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from pydantic import ValidationError

from wayfarer.core.utils.decorators import require_roles
from wayfarer.domains.rewards.outcomes import ClaimOutcome, ClaimResult
from wayfarer.domains.rewards.schemas import ClaimRecordResponse, FingerprintRequest
from wayfarer.domains.rewards.services import BonusClaimService
from wayfarer.extensions import limiter

rewards_api_bp = Blueprint("rewards_api", __name__)


def _service() -> BonusClaimService:
    return BonusClaimService.from_config(current_app.config)


def _current_account_id() -> int | None:
    identity = get_jwt_identity()
    try:
        return int(identity)
    except (TypeError, ValueError):
        return None


def _claim_rate_limit() -> str:
    return current_app.config.get("REWARDS_CLAIM_RATE_LIMIT", "10/minute")


def _outcome_response(result: ClaimResult):
    return jsonify(result.to_payload()), result.outcome.http_status


@rewards_api_bp.post("/eligibility")
@jwt_required()
def eligibility():
    payload = request.get_json(silent=True) or {}
    try:
        data = FingerprintRequest.model_validate(payload)
    except ValidationError:
        return _outcome_response(ClaimResult(ClaimOutcome.INVALID_ARGUMENT))

    result = _service().check_eligibility(data.fingerprint, _current_account_id())
    if result.reason is not None and not result.reason.already_claimed:
        # Not an eligibility answer: surface it as the error it is.
        return _outcome_response(ClaimResult(result.reason))
    return jsonify(result.to_payload())


@rewards_api_bp.post("/claim")
@jwt_required()
@limiter.limit(_claim_rate_limit)
def claim():
    payload = request.get_json(silent=True) or {}
    try:
        data = FingerprintRequest.model_validate(payload)
    except ValidationError:
        return _outcome_response(ClaimResult(ClaimOutcome.INVALID_ARGUMENT))

    result = _service().claim_bonus(
        data.fingerprint,
        _current_account_id(),
        current_app.config["REWARDS_STARTUP_BONUS"],
    )
    return _outcome_response(result)


@rewards_api_bp.get("/claims/<fingerprint>")
@jwt_required()
@require_roles(["admin"])
def claim_detail(fingerprint: str):
    record = _service().get_claim(fingerprint)
    if not record:
        return jsonify({"ok": False, "error": "not_found"}), 404
    return jsonify({"ok": True, "claim": ClaimRecordResponse.model_validate(record).model_dump(mode="json")})
