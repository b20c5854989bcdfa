"""Media intent: the sanitized command both playback backends accept."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any

ACTIONS = ("open", "play", "pause", "resume", "next", "previous", "volume", "seek", "now_playing")
TYPES = ("track", "artist", "playlist", "album", "genre")

MAX_QUERY_CHARS = 120
MAX_RESPONSE_CHARS = 240
MAX_SEEK_SECONDS = 3600

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class MediaBackendError(RuntimeError):
    """A playback backend could not carry out the command."""


@dataclass(frozen=True)
class MediaIntent:
    action: str
    query: str = ""
    type: str = "track"
    volume: int | None = None
    seek_seconds: int | None = None
    response: str = ""


def _clamp_int(value: Any, lo: int, hi: int) -> int | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return int(max(lo, min(hi, number)))


def sanitize_intent(data: dict[str, Any]) -> MediaIntent:
    """Coerce untrusted provider JSON into a safe MediaIntent.

    Raises ValueError for an action outside the whitelist.
    """
    action = str(data.get("action") or "").strip().lower().replace("-", "_")
    if action not in ACTIONS:
        raise ValueError(f"Unsupported media action: {action or '<empty>'}")

    media_type = str(data.get("type") or "track").strip().lower()
    if media_type not in TYPES:
        media_type = "track"

    query = _CONTROL_CHARS.sub(" ", str(data.get("query") or ""))
    query = re.sub(r"\s+", " ", query).strip()[:MAX_QUERY_CHARS]
    response = _CONTROL_CHARS.sub(" ", str(data.get("response") or "")).strip()[:MAX_RESPONSE_CHARS]

    volume = _clamp_int(data.get("volume"), 0, 100) if action == "volume" else None
    seek = _clamp_int(data.get("seek_seconds"), 0, MAX_SEEK_SECONDS) if action == "seek" else None
    if action == "volume" and volume is None:
        raise ValueError("Volume command without a level")
    if action == "seek" and seek is None:
        raise ValueError("Seek command without a position")

    return MediaIntent(
        action=action,
        query=query,
        type=media_type,
        volume=volume,
        seek_seconds=seek,
        response=response,
    )


def parse_intent_json(raw: str) -> MediaIntent:
    """Parse a provider reply, tolerating markdown fences around the JSON."""
    text = str(raw or "").strip()
    if not text.startswith("{"):
        match = re.search(r"\{.*\}", text, re.S)
        if not match:
            raise ValueError("No JSON object in media intent reply")
        text = match.group()
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Media intent reply is not a JSON object")
    return sanitize_intent(data)
