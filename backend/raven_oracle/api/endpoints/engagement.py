from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from raven_oracle.api.validation import require_address
from raven_oracle.core.context import AppContext, get_context
from raven_oracle.schemas.ledger import EngagementEvent
from raven_oracle.services.engagement_rules import get_action_credit, normalize_action


router = APIRouter()


class EngagementRequest(BaseModel):
    address: Any = None
    action: Any = None
    metadata: dict[str, Any] | None = None


class EngagementResponse(BaseModel):
    engagement_id: str
    address: str
    action: str
    credits: int
    pending_credits: int


@router.post("/engagement", response_model=EngagementResponse)
def record_engagement(body: EngagementRequest, ctx: AppContext = Depends(get_context)):
    address = require_address(body.address)
    if not isinstance(body.action, str) or not body.action.strip():
        raise HTTPException(status_code=400, detail="action required")

    credits = get_action_credit(body.action)
    if credits is None:
        raise HTTPException(status_code=400, detail="unsupported action")

    event = EngagementEvent(
        address=address,
        action=normalize_action(body.action),
        credits=credits,
        metadata=body.metadata or {},
    )
    pending_credits = ctx.ledger.record_engagement(event)
    return EngagementResponse(
        engagement_id=event.id,
        address=address,
        action=event.action,
        credits=credits,
        pending_credits=pending_credits,
    )


@router.get("/users/{address}/credits/pending")
def user_pending_credits(address: str, ctx: AppContext = Depends(get_context)) -> dict:
    normalized = require_address(address, detail="invalid address")
    return ctx.ledger.get_pending_for_user(normalized).to_dict()


@router.get("/users/{address}/credits/calculated")
def user_calculated_credits(address: str, ctx: AppContext = Depends(get_context)) -> dict:
    normalized = require_address(address, detail="invalid address")
    return ctx.ledger.get_calculated_credits_for_user(normalized).to_dict()


@router.get("/credits/pending")
def all_pending_credits(ctx: AppContext = Depends(get_context)) -> dict:
    return ctx.ledger.get_all_pending().to_dict()
