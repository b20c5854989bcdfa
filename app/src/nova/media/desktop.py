"""
Desktop media fallback: OS media controls via subprocess.

- Linux:   playerctl, xdg-open for spotify: URIs
- macOS:   osascript against the Spotify app
- Windows: PowerShell media-key SendKeys, "start spotify:"

Commands are argv lists run with asyncio.create_subprocess_exec; there
is no shell, so the query can't inject anything.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable
from urllib.parse import quote

from nova.media.intent import MediaBackendError, MediaIntent

logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], Awaitable[int]]

_WIN_KEYS = {"play_pause": "0xB3", "next": "0xB0", "previous": "0xB1"}


def _win_key(key: str) -> list[str]:
    return [
        "powershell",
        "-NoProfile",
        "-Command",
        f"(New-Object -ComObject WScript.Shell).SendKeys([char]{_WIN_KEYS[key]})",
    ]


def _osa(script: str) -> list[str]:
    return ["osascript", "-e", f'tell application "Spotify" to {script}']


def build_commands(intent: MediaIntent, platform: str) -> list[list[str]]:
    """argv lists to run in order for this intent. Empty when unsupported."""
    action = intent.action
    search_uri = f"spotify:search:{quote(intent.query)}" if intent.query else "spotify:"

    if platform.startswith("linux"):
        if action == "open" or (action == "play" and intent.query):
            return [["xdg-open", search_uri]]
        simple = {"play": "play", "resume": "play", "pause": "pause", "next": "next", "previous": "previous"}
        if action in simple:
            return [["playerctl", simple[action]]]
        if action == "volume":
            return [["playerctl", "volume", f"{(intent.volume or 0) / 100:.2f}"]]
        if action == "seek":
            return [["playerctl", "position", str(intent.seek_seconds or 0)]]
        return []

    if platform == "darwin":
        if action == "open":
            return [["open", "-a", "Spotify"]]
        if action == "play" and intent.query:
            return [["open", search_uri]]
        scripts = {
            "play": "play",
            "resume": "play",
            "pause": "pause",
            "next": "next track",
            "previous": "previous track",
        }
        if action in scripts:
            return [_osa(scripts[action])]
        if action == "volume":
            return [_osa(f"set sound volume to {intent.volume or 0}")]
        if action == "seek":
            return [_osa(f"set player position to {intent.seek_seconds or 0}")]
        return []

    if platform.startswith("win"):
        if action == "open":
            return [["cmd", "/c", "start", "", "spotify:"]]
        if action == "play" and intent.query:
            return [["cmd", "/c", "start", "", search_uri], _win_key("play_pause")]
        if action in ("play", "resume", "pause"):
            return [_win_key("play_pause")]
        if action in ("next", "previous"):
            return [_win_key(action)]
        return []

    return []


async def _run(argv: list[str]) -> int:
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode:
        logger.warning(f"{argv[0]} exited {process.returncode}: {stderr.decode(errors='replace').strip()[:200]}")
    return process.returncode or 0


class DesktopMediaBackend:
    name = "desktop"

    def __init__(self, platform: str | None = None, runner: Runner | None = None):
        self.platform = platform or sys.platform
        self._runner = runner or _run

    async def execute(self, intent: MediaIntent) -> str:
        commands = build_commands(intent, self.platform)
        if not commands:
            raise MediaBackendError(
                f"'{intent.action}' isn't supported by desktop controls on {self.platform}"
            )
        for argv in commands:
            try:
                code = await self._runner(argv)
            except OSError as e:
                raise MediaBackendError(f"Could not run {argv[0]}: {e}") from e
            if code != 0:
                raise MediaBackendError(f"{argv[0]} exited with status {code}")
        logger.info(f"Desktop media: {intent.action} ({self.platform})")
        return "Done."
