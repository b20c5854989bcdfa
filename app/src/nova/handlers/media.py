"""
Media-control handler.

Unambiguous commands ("pause", "next song", "open spotify") are classified
locally with no provider call. Everything else ("play some jazz", "volume
to 30") goes through a small JSON-intent prompt. Provider output drives
real side effects, so it's always sanitized first (see media.intent).

Execution: Spotify Web API when connected, desktop media keys when the
Web API can't do it.
"""

from __future__ import annotations

import logging
import random
import re

import nova.core.config as config_module
from nova.core.metrics import metrics
from nova.handlers.base import HandlerContext, SpecialHandler
from nova.media.desktop import DesktopMediaBackend
from nova.media.intent import MediaBackendError, MediaIntent, parse_intent_json
from nova.media.spotify import SpotifyBackend
from nova.providers.base import ProviderTransportError
from nova.turn.contracts import Lane, RunSummary, Turn

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = """You parse music playback commands. Given user input, respond with ONLY a JSON object:
{
  "action": "open" | "play" | "pause" | "resume" | "next" | "previous" | "volume" | "seek",
  "query": "search query if playing something, otherwise empty string",
  "type": "track" | "artist" | "playlist" | "album" | "genre",
  "volume": 0-100 when action is volume, otherwise null,
  "seek_seconds": position in seconds when action is seek, otherwise null,
  "response": "short friendly acknowledgment to say to the user"
}
Examples:
- "play some jazz" -> {"action": "play", "query": "jazz", "type": "genre", "volume": null, "seek_seconds": null, "response": "Putting on some jazz for you."}
- "turn it down to 30" -> {"action": "volume", "query": "", "type": "track", "volume": 30, "seek_seconds": null, "response": "Volume to 30."}
- "skip to 1:20" -> {"action": "seek", "query": "", "type": "track", "volume": null, "seek_seconds": 80, "response": "Jumping to 1:20."}
Output ONLY valid JSON, nothing else."""

COMMAND_ACKS = (
    "On it.",
    "Got it.",
    "Sure thing.",
    "Opening Spotify.",
)

# (pattern, action, acknowledgment). Matched against the whole command.
_FAST_COMMANDS: tuple[tuple[re.Pattern, str, str], ...] = (
    (
        re.compile(r"^(what'?s|what is) (playing|this song)|^(now playing|what song is (this|playing))$"),
        "now_playing",
        "",
    ),
    (re.compile(r"^(pause|stop)( the)?( music| song| playback| spotify)?$"), "pause", "Paused."),
    (
        re.compile(r"^(resume|unpause|continue)( the)?( music| song| playback| spotify)?$"),
        "resume",
        "Resuming.",
    ),
    (re.compile(r"^(next|skip)( (the )?(song|track))?$|^(play )?next (song|track)$"), "next", "Skipping ahead."),
    (
        re.compile(r"^(previous|back|go back)( (song|track))?$|^(play )?(the )?(previous|last) (song|track)$"),
        "previous",
        "Going back.",
    ),
    (re.compile(r"^(open|launch|start) spotify$"), "open", "Opening Spotify."),
)


def classify_fast(text: str) -> MediaIntent | None:
    """Local classification for unambiguous commands, None otherwise."""
    normalized = re.sub(r"[^\w\s']", " ", str(text or "").lower())
    normalized = re.sub(r"\s+", " ", normalized).strip()
    normalized = re.sub(r"^(nova|hey nova|please)\s+", "", normalized)
    normalized = re.sub(r"\s+please$", "", normalized)
    for pattern, action, ack in _FAST_COMMANDS:
        if pattern.search(normalized):
            return MediaIntent(action=action, response=ack)
    return None


class MediaControlHandler(SpecialHandler):
    lane = Lane.MEDIA_CONTROL

    def __init__(self, primary: SpotifyBackend | None = None, fallback: DesktopMediaBackend | None = None):
        self.primary = primary or SpotifyBackend(config_module.config.media.spotify_token)
        self.fallback = fallback or DesktopMediaBackend()

    async def handle(self, turn: Turn, ctx: HandlerContext) -> RunSummary:
        summary = RunSummary.for_lane(self.lane)
        if ctx.voice is not None:
            await ctx.voice.stop()

        intent = classify_fast(turn.text)
        if intent is not None:
            summary.route_reason = "deterministic"
        else:
            try:
                intent = await self._parse_with_provider(turn, ctx, summary)
            except (ValueError, ProviderTransportError) as e:
                # No usable intent: open the player and acknowledge.
                logger.warning(f"Media intent parse failed: {e}")
                metrics.inc("media.parse_failed")
                summary.fail(str(e))
                summary.reply = random.choice(COMMAND_ACKS)
                try:
                    await self._execute(MediaIntent(action="open"))
                except MediaBackendError as open_error:
                    logger.error(f"Could not open the player: {open_error}")
                return summary.finish()

        try:
            status = await self._execute(intent)
        except MediaBackendError as e:
            logger.error(f"Media command '{intent.action}' failed: {e}")
            summary.fail(str(e))
            summary.reply = f"I couldn't control playback: {e}"
            return summary.finish()

        # Status carries facts (track names); otherwise the friendly ack.
        if intent.action in ("now_playing", "play") and status and status != "Done.":
            summary.reply = status
        else:
            summary.reply = intent.response or status
        return summary.finish()

    async def _parse_with_provider(self, turn: Turn, ctx: HandlerContext, summary: RunSummary) -> MediaIntent:
        if ctx.provider is None:
            raise ValueError("No provider available to interpret the command")
        provider, resolution = await ctx.provider()
        summary.provider = resolution.provider
        summary.model = resolution.model
        summary.route_reason = resolution.route_reason
        raw = await provider.complete(
            INTENT_SYSTEM_PROMPT,
            turn.text,
            max_tokens=config_module.config.media.intent_max_tokens,
            model=resolution.model,
        )
        return parse_intent_json(raw)

    async def _execute(self, intent: MediaIntent) -> str:
        if self.primary.available:
            try:
                status = await self.primary.execute(intent)
                metrics.inc("media.commands", labels={"backend": self.primary.name})
                return status
            except MediaBackendError as e:
                logger.warning(f"Spotify unavailable for '{intent.action}', using desktop controls: {e}")
        status = await self.fallback.execute(intent)
        metrics.inc("media.commands", labels={"backend": self.fallback.name})
        return status
