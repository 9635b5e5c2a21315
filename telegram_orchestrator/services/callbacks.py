from __future__ import annotations

APPROVE = "approve"
REPHRASE = "rephrase"
REJECT = "reject"


class InvalidCallbackToken(ValueError):
    pass


def callback_token(action: str, target_id: int) -> str:
    return f"{action}:{target_id}"


def parse_callback_token(data: str) -> tuple[str, int]:
    """Split ``"<action>:<target_id>"``; the action is not validated here."""
    action, sep, raw_id = (data or "").partition(":")
    if not sep or not action:
        raise InvalidCallbackToken(f"Malformed callback data: {data!r}")
    try:
        target_id = int(raw_id)
    except ValueError:
        raise InvalidCallbackToken(f"Failed to parse target id in {data!r}") from None
    return action, target_id
