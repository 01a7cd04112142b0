from __future__ import annotations

from typing import Any

import orjson


def encode_frame(frame: dict) -> str:
    # orjson emits compact UTF-8; websockets wants str for text frames
    return orjson.dumps(frame, option=orjson.OPT_NON_STR_KEYS).decode("utf-8")


def decode_frame(raw: str | bytes) -> Any:
    """Parse one inbound frame. Raises orjson.JSONDecodeError (a ValueError)."""
    return orjson.loads(raw)
