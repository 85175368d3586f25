from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from raven_oracle.api.validation import require_address, stringify_ints
from raven_oracle.core.context import AppContext, get_context
from raven_oracle.services.chain import require_access


router = APIRouter()


class MemoryUpdateRequest(BaseModel):
    user: Any = None
    memory_hash: Any = None


@router.get("/users/{address}/credits")
def user_credits(address: str, ctx: AppContext = Depends(get_context)) -> dict:
    normalized = require_address(address, detail="invalid address")
    credits = require_access(ctx.access).get_user_credits(normalized)
    return {"address": normalized, "credits": str(credits)}


@router.get("/users/{address}/subscription")
def user_subscription(address: str, ctx: AppContext = Depends(get_context)) -> dict:
    normalized = require_address(address, detail="invalid address")
    sub = require_access(ctx.access).get_user_subscription(normalized)
    return stringify_ints(sub or {})


@router.get("/users/{address}/has-active-subscription")
def user_has_active_subscription(address: str, ctx: AppContext = Depends(get_context)) -> dict:
    normalized = require_address(address, detail="invalid address")
    has = require_access(ctx.access).has_active_subscription(normalized)
    return {"address": normalized, "has_active_subscription": bool(has)}


@router.post("/memory/update")
def memory_update(body: MemoryUpdateRequest, ctx: AppContext = Depends(get_context)) -> dict:
    """Calldata for updateUserMemoryPointer; only the oracle or owner wallet may send it."""
    user = require_address(body.user, detail="valid user address required")
    if not isinstance(body.memory_hash, str) or not body.memory_hash:
        raise HTTPException(status_code=400, detail="memory_hash required")
    return require_access(ctx.access).encode_update_memory_pointer(user, body.memory_hash)
