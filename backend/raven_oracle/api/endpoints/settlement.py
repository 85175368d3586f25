from __future__ import annotations

from fastapi import APIRouter, Depends

from raven_oracle.core.auth import require_operator
from raven_oracle.core.context import AppContext, get_context


router = APIRouter(dependencies=[Depends(require_operator)])


@router.post("/credits/settle")
def settle_now(ctx: AppContext = Depends(get_context)) -> dict:
    return ctx.trigger.run("manual").to_dict()


@router.get("/credits/settle/status")
def settle_status(ctx: AppContext = Depends(get_context)) -> dict:
    return ctx.trigger.status()


@router.post("/credits/settle/resume")
def settle_resume(ctx: AppContext = Depends(get_context)) -> dict:
    previous = ctx.trigger.resume()
    return {"ok": True, "previous_halt": previous}
