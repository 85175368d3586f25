from __future__ import annotations

from typing import Any


# Per-request credit cost of each inference mode, mirroring the RavenAccess contract constants.
INFERENCE_COSTS: dict[str, int] = {
    "basic": 1,
    "tags": 2,
    "price_accuracy": 4,
    "full": 6,
}

# price_accuracy requests are capped per subscription window regardless of plan.
PRICE_ACCURACY_CAP = 3000


def normalize_mode(mode: str) -> str:
    return str(mode or "").strip().lower()


def get_inference_cost(mode: str, quantity: int) -> int | None:
    """Credit cost of ``quantity`` requests in ``mode``, or None when the mode is unknown."""
    per_request = INFERENCE_COSTS.get(normalize_mode(mode))
    if per_request is None:
        return None
    return per_request * int(quantity)


def decide_inference_authorization(
    *,
    mode: str,
    quantity: int,
    credits: int,
    subscription: dict[str, Any] | None,
    now_s: int,
) -> dict[str, Any]:
    """Whether a user can pay for ``quantity`` requests, and from which source.

    An active, unexpired subscription with room left in its window is used
    first; otherwise the credit balance has to cover the full cost.
    """
    mode = normalize_mode(mode)
    cost = get_inference_cost(mode, quantity)
    if cost is None:
        raise ValueError(f"unsupported mode: {mode}")

    remaining = None
    if subscription and subscription["plan"]["active"] and int(subscription["expires_at"]) > now_s:
        cap = int(subscription["plan"]["monthly_cap"])
        if mode == "price_accuracy":
            cap = min(cap, PRICE_ACCURACY_CAP)
        remaining = max(0, cap - int(subscription["used_this_period"]))

    if remaining is not None and quantity <= remaining:
        source = "subscription"
    elif credits >= cost:
        source = "credits"
    else:
        source = None

    return {
        "authorized": source is not None,
        "source": source,
        "mode": mode,
        "quantity": quantity,
        "cost": cost,
        "credits": credits,
        "subscription_remaining": remaining,
    }
