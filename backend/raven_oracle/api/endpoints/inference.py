from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from raven_oracle.api.validation import require_address, require_mode, require_quantity, stringify_ints
from raven_oracle.core.context import AppContext, get_context
from raven_oracle.services.chain import require_access
from raven_oracle.services.inference_rules import get_inference_cost


router = APIRouter()


class EstimateRequest(BaseModel):
    mode: Any = None
    quantity: Any = None


class AuthorizeRequest(BaseModel):
    user: Any = None
    mode: Any = None
    quantity: Any = None


@router.post("/inference/estimate")
def estimate_inference(body: EstimateRequest) -> dict:
    mode = require_mode(body.mode)
    quantity = require_quantity(body.quantity)
    return stringify_ints({"mode": mode, "quantity": quantity, "cost": get_inference_cost(mode, quantity)})


@router.post("/inference/authorize")
def authorize_inference(body: AuthorizeRequest, ctx: AppContext = Depends(get_context)) -> dict:
    """Reads subscription and credit state on chain; nothing is charged here."""
    user = require_address(body.user, detail="valid user address required")
    mode = require_mode(body.mode)
    quantity = require_quantity(body.quantity)
    result = require_access(ctx.access).authorize_inference(user, mode, quantity)
    return stringify_ints({"user": user, **result})
