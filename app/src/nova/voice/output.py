"""
Voice Output: at most one utterance at a time.

speak() stops whatever is currently being said before starting, so two
turns can never talk over each other. Synthesis goes through OpenAI TTS
(raw PCM, 24kHz 16-bit mono); playback is delegated to an injected
async player, since the audio device lives outside this process.

Broadcast state follows the utterance: "speaking" while it plays,
"idle" when it ends, whether it finished, failed or was cut off.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable

from openai import AsyncOpenAI

from nova.core.metrics import metrics
from nova.kernel.gateway import BroadcastGateway

logger = logging.getLogger(__name__)

Player = Callable[[bytes], Awaitable[None]]
Synthesizer = Callable[[str, str], Awaitable[bytes]]

DEFAULT_VOICE = "alloy"


def normalize_speech_text(text: str) -> str:
    """Strip markdown and URLs so the reply reads naturally aloud."""
    out = str(text or "")
    out = re.sub(r"```.*?```", " ", out, flags=re.S)
    out = re.sub(r"\[([^\]]+)\]\((?:https?://)[^)]+\)", r"\1", out)
    out = re.sub(r"https?://\S+", "the link", out)
    out = re.sub(r"[*_`#>]+", "", out)
    out = re.sub(r"^\s*[-•]\s+", "", out, flags=re.M)
    out = re.sub(r"\s+", " ", out)
    return out.strip()


class OpenAISpeechSynthesizer:
    def __init__(self, model: str = "gpt-4o-mini-tts", client: AsyncOpenAI | None = None):
        self.model = model
        self.client = client

    async def __call__(self, text: str, voice: str) -> bytes:
        if self.client is None:
            self.client = AsyncOpenAI()
        started = time.time()
        metrics.inc("provider.tts.requests", labels={"provider": "openai"})
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice or DEFAULT_VOICE,
                input=text,
                response_format="pcm",
            )
        except Exception:
            metrics.inc("provider.tts.errors", labels={"provider": "openai"})
            raise
        metrics.observe("provider.tts.latency_ms", (time.time() - started) * 1000)
        return response.content


async def _discard(audio: bytes) -> None:
    logger.debug(f"No audio player attached, dropping {len(audio)} bytes")


class VoiceOutput:
    def __init__(
        self,
        gateway: BroadcastGateway | None = None,
        synthesize: Synthesizer | None = None,
        player: Player | None = None,
    ):
        self.gateway = gateway
        self._synthesize = synthesize or OpenAISpeechSynthesizer()
        self._player = player or _discard
        self._current: asyncio.Task | None = None
        self._current_scope = ""

    @property
    def speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    async def speak(self, text: str, voice_id: str = "", user_context_id: str = "") -> bool:
        """Say text, replacing any utterance in progress.

        Returns False if the utterance was cut off by a newer one or by stop().
        """
        spoken = normalize_speech_text(text)
        if not spoken:
            return True

        await self.stop()
        task = asyncio.create_task(self._utter(spoken, voice_id))
        self._current = task
        self._current_scope = user_context_id
        if self.gateway is not None:
            self.gateway.state("speaking", user_context_id)
        try:
            await task
            return True
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return False
        finally:
            if self._current is task:
                self._current = None
                if self.gateway is not None:
                    self.gateway.state("idle", user_context_id)

    async def stop(self) -> None:
        task = self._current
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._current is task:
            self._current = None
            if self.gateway is not None:
                self.gateway.state("idle", self._current_scope)
        logger.debug("Stopped current utterance")

    async def _utter(self, text: str, voice_id: str) -> None:
        audio = await self._synthesize(text, voice_id or DEFAULT_VOICE)
        await self._player(audio)
