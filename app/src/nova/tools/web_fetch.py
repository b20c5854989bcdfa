"""Web Fetch tool: download a page and reduce it to readable text.

Also used directly by the prompt builder for link understanding, where
the user's message carries URLs.
"""

from __future__ import annotations

import html
import logging
import re

import httpx

from nova.tools.base import NovaTool, ToolParam
from nova.turn.contracts import ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 6000

_MARKDOWN_LINK = re.compile(r"\[[^\]]*]\((https?://[^\s)]+)\)", re.I)
_BARE_LINK = re.compile(r"https?://\S+", re.I)
_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.I | re.S)
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)
_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def extract_links(message: str, max_links: int = 3) -> list[str]:
    """Unique http(s) URLs from a message, markdown links first."""
    urls: list[str] = []
    candidates = [m.group(1) for m in _MARKDOWN_LINK.finditer(message or "")]
    candidates += [m.group(0) for m in _BARE_LINK.finditer(message or "")]
    for raw in candidates:
        url = raw.strip().rstrip("),.;!?")
        if not url.lower().startswith(("http://", "https://")) or url in urls:
            continue
        urls.append(url)
        if len(urls) >= max(1, max_links):
            break
    return urls


def html_to_text(body: str) -> tuple[str, str]:
    """(title, text) from an HTML document."""
    title_match = _TITLE.search(body)
    title = html.unescape(_TAG.sub("", title_match.group(1))).strip() if title_match else ""
    text = _SCRIPT_STYLE.sub(" ", body)
    text = re.sub(r"<(br|/p|/div|/li|/h\d)[^>]*>", "\n", text, flags=re.I)
    text = html.unescape(_TAG.sub(" ", text))
    text = _SPACE.sub(" ", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return title, text.strip()


class WebFetchTool(NovaTool):
    name = "web_fetch"
    description = "Fetch a web page by URL and return its readable text."
    status_text = "Reading the page..."
    parameters = [
        ToolParam(name="url", type="string", description="The http(s) URL to fetch"),
        ToolParam(
            name="max_chars",
            type="integer",
            description="Maximum characters of page text to return",
            required=False,
            default=DEFAULT_MAX_CHARS,
        ),
    ]

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    async def execute(self, url: str, max_chars: int = DEFAULT_MAX_CHARS) -> ToolResult:
        if not url.lower().startswith(("http://", "https://")):
            return ToolResult.failed(f"Unsupported URL: {url}")

        headers = {"User-Agent": "Nova/0.1"}
        if self._client is not None:
            resp = await self._client.get(url, headers=headers, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=headers, follow_redirects=True)
        resp.raise_for_status()

        content_type = resp.headers.get("content-type", "")
        if "html" in content_type:
            title, text = html_to_text(resp.text)
        else:
            title, text = "", resp.text.strip()

        if len(text) > max_chars:
            text = text[:max_chars] + "\n... [truncated]"

        header = f"Title: {title}\n" if title else ""
        return ToolResult.success(f"{header}Source: {url}\n\n{text}")
