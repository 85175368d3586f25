from __future__ import annotations


ACTION_CREDITS: dict[str, int] = {
    "like": 1,
    "comment": 2,
    "repost": 3,
    "quote": 3,
    "follow": 5,
    "yap": 10,
}


def normalize_action(action: str) -> str:
    return str(action or "").strip().lower()


def get_action_credit(action: str) -> int | None:
    """Flat credit amount for an engagement action, or None when unsupported."""
    return ACTION_CREDITS.get(normalize_action(action))
