from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from raven_oracle.api.validation import require_address, require_parameter, require_reason, stringify_ints
from raven_oracle.core.context import AppContext, get_context
from raven_oracle.services.chain import require_access


router = APIRouter()


class CalculateRequest(BaseModel):
    reason: Any = None
    parameter: Any = None


class CalculateAndStoreRequest(BaseModel):
    address: Any = None
    reason: Any = None
    parameter: Any = None


class InitialGrantRequest(BaseModel):
    user: Any = None


@router.post("/credits/calculate")
def calculate_credits(body: CalculateRequest, ctx: AppContext = Depends(get_context)) -> dict:
    reason = require_reason(body.reason)
    parameter = require_parameter(body.parameter)
    credits = require_access(ctx.access).calculate_credits(reason, parameter)
    return {"credits": str(credits)}


@router.post("/credits/calculate-and-store")
def calculate_and_store(body: CalculateAndStoreRequest, ctx: AppContext = Depends(get_context)) -> dict:
    address = require_address(body.address)
    reason = require_reason(body.reason)
    parameter = require_parameter(body.parameter)

    credits = require_access(ctx.access).calculate_credits(reason, parameter)
    if credits <= 0:
        raise HTTPException(status_code=400, detail="calculated credits must be greater than 0")

    total = ctx.ledger.record_calculated_credits(address, reason, parameter, credits)
    return stringify_ints(
        {
            "address": address,
            "reason": reason,
            "parameter": parameter,
            "credits": credits,
            "total_calculated_credits": total,
        }
    )


@router.post("/credits/initial-grant")
def initial_grant(body: InitialGrantRequest, ctx: AppContext = Depends(get_context)) -> dict:
    """Calldata for the one-time welcome grant; an oracle/owner wallet signs and sends it."""
    user = require_address(body.user, detail="valid user address required")
    access = require_access(ctx.access)

    has_credits = access.get_user_credits(user) > 0
    subscription = access.get_user_subscription(user)
    is_subscribed = bool(subscription and subscription["plan"]["active"])
    if has_credits or is_subscribed:
        raise HTTPException(status_code=400, detail="not eligible (has credits or active subscription)")

    return stringify_ints(access.encode_award_credits(user, ctx.settings.initial_grant_credits, "initial_grant"))
