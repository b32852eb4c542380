from datetime import datetime

TOKEN_PREFIX = "ROOM"


def make_token_code(label: str, slot_start: datetime) -> str:
    """Return the booking code for a slot, e.g. ``ROOMA1-20250310-1000``."""
    return f"{TOKEN_PREFIX}{label}-{slot_start:%Y%m%d}-{slot_start:%H%M}"
