"""
Spotify Web API backend.

Needs a user access token (SPOTIFY_ACCESS_TOKEN). Missing token, no
active device and transport failures all raise MediaBackendError so the
handler can fall back to desktop media keys. "open" always falls back:
the Web API can't launch the app.
"""

from __future__ import annotations

import logging

import httpx

from nova.media.intent import MediaBackendError, MediaIntent

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"


class SpotifyBackend:
    name = "spotify"

    def __init__(self, access_token: str = "", client: httpx.AsyncClient | None = None, timeout: float = 8.0):
        self.access_token = access_token
        self._client = client
        self._timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.access_token)

    async def execute(self, intent: MediaIntent) -> str:
        """Carry out the intent. Returns a short status for the reply."""
        if not self.available:
            raise MediaBackendError("Spotify is not connected")

        action = intent.action
        if action == "open":
            raise MediaBackendError("Opening the app needs the desktop backend")
        if action == "play" and intent.query:
            return await self._play_query(intent)
        if action in ("play", "resume"):
            await self._call("PUT", "/me/player/play")
            return "Resumed playback."
        if action == "pause":
            await self._call("PUT", "/me/player/pause")
            return "Paused."
        if action == "next":
            await self._call("POST", "/me/player/next")
            return "Skipped to the next track."
        if action == "previous":
            await self._call("POST", "/me/player/previous")
            return "Went back to the previous track."
        if action == "volume":
            await self._call("PUT", "/me/player/volume", params={"volume_percent": intent.volume})
            return f"Volume set to {intent.volume}%."
        if action == "seek":
            await self._call(
                "PUT", "/me/player/seek", params={"position_ms": int(intent.seek_seconds or 0) * 1000}
            )
            return f"Jumped to {intent.seek_seconds} seconds."
        if action == "now_playing":
            return await self._now_playing()
        raise MediaBackendError(f"Unsupported action: {action}")

    async def _play_query(self, intent: MediaIntent) -> str:
        search_type = "playlist" if intent.type == "genre" else intent.type
        data = await self._call(
            "GET", "/search", params={"q": intent.query, "type": search_type, "limit": 1}
        )
        items = (data or {}).get(f"{search_type}s", {}).get("items") or []
        items = [item for item in items if item]
        if not items:
            raise MediaBackendError(f"Nothing found on Spotify for {intent.query!r}")

        item = items[0]
        uri = item.get("uri", "")
        body = {"uris": [uri]} if search_type == "track" else {"context_uri": uri}
        await self._call("PUT", "/me/player/play", json=body)
        return f"Playing {item.get('name') or intent.query}."

    async def _now_playing(self) -> str:
        data = await self._call("GET", "/me/player/currently-playing")
        item = (data or {}).get("item") if data else None
        if not item:
            return "Nothing is playing right now."
        artists = ", ".join(a.get("name", "") for a in item.get("artists", []) if a.get("name"))
        return f"Now playing: {item.get('name', 'Unknown')}" + (f" by {artists}." if artists else ".")

    async def _call(self, method: str, path: str, params: dict | None = None, json: dict | None = None) -> dict | None:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            if self._client is not None:
                resp = await self._client.request(
                    method, f"{API_BASE}{path}", params=params, json=json, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.request(
                        method, f"{API_BASE}{path}", params=params, json=json, headers=headers
                    )
        except httpx.HTTPError as e:
            raise MediaBackendError(f"Spotify request failed: {e}") from e

        if resp.status_code == 404:
            raise MediaBackendError("No active Spotify playback device")
        if resp.status_code in (401, 403):
            raise MediaBackendError(f"Spotify rejected the request ({resp.status_code})")
        if resp.status_code >= 400:
            raise MediaBackendError(f"Spotify API error {resp.status_code}")
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()
