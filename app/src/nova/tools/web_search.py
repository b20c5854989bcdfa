"""Web Search tool: DuckDuckGo instant answers over httpx.

No API key needed. Results come back as numbered blocks
("[n] title / url / snippet") separated by blank lines, the format the
prompt builder and the corrective-reply pass both parse.
"""

from __future__ import annotations

import logging
import re

import httpx

from nova.tools.base import NovaTool, ToolParam
from nova.turn.contracts import ToolResult

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.duckduckgo.com/"
MAX_RESULTS = 5
NO_RESULTS = "No results found."


class WebSearchTool(NovaTool):
    name = "web_search"
    description = (
        "Search the web for current information. Use this for news, prices, "
        "scores, weather and anything that may have changed recently."
    )
    status_text = "Searching the web..."
    parameters = [
        ToolParam(name="query", type="string", description="The search query"),
    ]

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    async def execute(self, query: str) -> ToolResult:
        params = {"q": query, "format": "json", "no_html": 1, "skip_disambig": 1}
        headers = {"User-Agent": "Nova/0.1"}
        if self._client is not None:
            resp = await self._client.get(SEARCH_URL, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(SEARCH_URL, params=params, headers=headers)
        resp.raise_for_status()
        data = resp.json()

        blocks: list[str] = []
        if data.get("Abstract"):
            blocks.append(
                _block(
                    len(blocks) + 1,
                    data.get("Heading") or "Result",
                    data.get("AbstractURL", ""),
                    data["Abstract"],
                )
            )
        if data.get("Answer"):
            blocks.append(_block(len(blocks) + 1, "Answer", "", str(data["Answer"])))

        for topic in data.get("RelatedTopics", []):
            if len(blocks) >= MAX_RESULTS:
                break
            if isinstance(topic, dict) and topic.get("Text"):
                text = topic["Text"]
                title = text.split(" - ")[0][:80]
                blocks.append(_block(len(blocks) + 1, title, topic.get("FirstURL", ""), text[:300]))

        if not blocks:
            return ToolResult.success(NO_RESULTS)
        return ToolResult.success("\n\n".join(blocks))


def _block(index: int, title: str, url: str, snippet: str) -> str:
    lines = [f"[{index}] {title}"]
    if url:
        lines.append(url)
    lines.append(snippet)
    return "\n".join(lines)


def parse_search_items(raw: str, limit: int = 5) -> list[dict[str, str]]:
    """Split numbered result blocks back into {title, url, snippet}."""
    raw = str(raw or "").strip()
    if not raw or raw == NO_RESULTS:
        return []
    items = []
    for block in re.split(r"\n\s*\n", raw):
        lines = [line.strip() for line in block.strip().splitlines() if line.strip()]
        if len(lines) < 2:
            continue
        title = re.sub(r"^\[\d+\]\s*", "", lines[0]).strip() or "Result"
        url = lines[1] if re.match(r"^https?://", lines[1], re.I) else ""
        snippet = " ".join(lines[2:] if url else lines[1:]).strip()
        items.append({"title": title, "url": url, "snippet": snippet or "No snippet available."})
        if len(items) >= limit:
            break
    return items


def build_search_recap(query: str, raw: str) -> str:
    """Short readable recap of the top results, or "" when there are none."""
    items = parse_search_items(raw)[:3]
    if not items:
        return ""
    out = [f'Here is a quick live-web recap for: "{query.strip()}".', ""]
    for item in items:
        out.append(f"- {item['title']}: {item['snippet']}")
        if item["url"]:
            out.append(f"  Source: {item['url']}")
    return "\n".join(out)
