from __future__ import annotations

import math
from typing import Any

from fastapi import HTTPException

from raven_oracle.core.addresses import normalize_address
from raven_oracle.core.errors import InvalidAddress
from raven_oracle.services.inference_rules import INFERENCE_COSTS, normalize_mode


def require_address(value: Any, detail: str = "valid address required") -> str:
    try:
        return normalize_address(value)
    except InvalidAddress:
        raise HTTPException(status_code=400, detail=detail)


def require_reason(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail="reason required")
    return value.strip()


def require_parameter(value: Any) -> int:
    """Calculation parameters are passed to a uint256 argument on chain."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise HTTPException(status_code=400, detail="parameter must be number")
    if value < 0 or not float(value).is_integer():
        raise HTTPException(status_code=400, detail="parameter must be a non-negative integer")
    return int(value)


def stringify_ints(value: Any) -> Any:
    """Render ints as decimal strings so on-chain uint256 values survive JSON clients."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        return [stringify_ints(v) for v in value]
    if isinstance(value, dict):
        return {k: stringify_ints(v) for k, v in value.items()}
    return value


def require_mode(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail="mode required")
    mode = normalize_mode(value)
    if mode not in INFERENCE_COSTS:
        raise HTTPException(status_code=400, detail="unsupported mode")
    return mode


def require_quantity(value: Any) -> int:
    if value is None:
        return 1
    quantity = require_parameter(value)
    if quantity < 1:
        raise HTTPException(status_code=400, detail="quantity must be at least 1")
    return quantity
