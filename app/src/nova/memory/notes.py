"""
Memory Notes: durable facts in a per-user MEMORY.md.

Fact lines live under ``## Important Facts`` and carry a key marker:

    - 2026-10-19: [memory:timezone] My timezone is Europe/Berlin

Writing a fact with an existing key replaces the old line, so the note
always holds the current value. The file is capped at MAX_FACT_LINES
tagged lines.

The persona workspace also holds the optional USER.md, IDENTITY.md and
PERSONALITY.md notes the prompt builder reads.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FACT_LINES = 80
FACT_MAX_CHARS = 280
AUTO_FACTS_PER_TURN = 2

MEMORY_TEMPLATE = (
    "# Persistent Memory\n"
    "This file is loaded into every conversation. Add important facts, decisions, and context here.\n"
    "\n"
    "## Important Facts\n"
)

_UPDATE_PATTERNS = (
    re.compile(r"update\s+(?:your|ur)\s+memory(?:\s+to\s+this)?\s*[:,-]?\s*(.+)$", re.I),
    re.compile(r"remember\s+this\s*[:,-]?\s*(.+)$", re.I),
    re.compile(r"remember\s+that\s*[:,-]?\s*(.+)$", re.I),
)
_RELATION = re.compile(r"^(?:my|our)\s+(.+?)\s+(?:is|are|was|were|equals|=)\s+(.+)$", re.I)
_FACT_LINE = re.compile(r"^\s*-\s+\d{4}-\d{2}-\d{2}:\s+\[memory:([a-z0-9-]+)\]\s*(.+?)\s*$", re.I)
_TAGGED = re.compile(r"\[memory:[a-z0-9-]+\]", re.I)
_QUESTION_START = re.compile(
    r"^(what|why|how|when|where|who|can|could|would|will|is|are|do|does|did|should)\b"
)
_WEAK_VALUES = {"this", "that", "it", "things", "stuff"}


@dataclass(frozen=True)
class MemoryFact:
    fact: str
    key: str
    structured: bool = False


def normalize_key(raw: str) -> str:
    key = re.sub(r"[^a-z0-9]+", "-", str(raw or "").strip().lower())
    return key.strip("-")[:64]


def _clean_value(raw: str) -> str:
    value = re.sub(r"\s+", " ", str(raw or "").strip())
    value = re.sub(r"[.?!]+$", "", value)
    return value.strip("\"'")


def extract_memory_update_fact(text: str) -> str:
    """The fact after "update your memory"/"remember this|that", or ""."""
    raw = str(text or "").strip()
    for pattern in _UPDATE_PATTERNS:
        match = pattern.search(raw)
        if match:
            return match.group(1).strip()
    return ""


def build_fact(fact_text: str) -> MemoryFact:
    """Normalize a fact and derive its key from "my X is Y" phrasing."""
    fact = re.sub(r"\s+", " ", str(fact_text or "").strip())[:FACT_MAX_CHARS]
    match = _RELATION.match(fact)
    if match and match.group(1).strip() and match.group(2).strip():
        return MemoryFact(fact=fact, key=normalize_key(match.group(1)), structured=True)
    return MemoryFact(fact=fact, key="")


def upsert_fact_markdown(
    existing: str, fact: MemoryFact, today: date | None = None, max_lines: int = MAX_FACT_LINES
) -> str:
    """Insert a fact line at the top of Important Facts.

    Keyed facts replace any line with the same key; unkeyed facts replace
    an identical general line.
    """
    lines = (existing or MEMORY_TEMPLATE).splitlines()
    stamp = (today or date.today()).isoformat()
    marker = f"[memory:{fact.key or 'general'}]"
    new_line = f"- {stamp}: {marker} {fact.fact}"
    incoming = re.sub(r"\s+", " ", fact.fact.strip()).lower()

    def keep(line: str) -> bool:
        if fact.key:
            return f"[memory:{fact.key}]" not in line
        match = _FACT_LINE.match(line)
        if not match or match.group(1).lower() != "general":
            return True
        return re.sub(r"\s+", " ", match.group(2).strip()).lower() != incoming

    kept = [line for line in lines if keep(line)]

    section = next(
        (i for i, line in enumerate(kept) if line.strip().lower() == "## important facts"),
        -1,
    )
    if section == -1:
        if kept and kept[-1].strip():
            kept.append("")
        kept.extend(["## Important Facts", "", new_line])
    else:
        insert_at = section + 1
        while insert_at < len(kept) and not kept[insert_at].strip():
            insert_at += 1
        kept.insert(insert_at, new_line)

    tagged = [i for i, line in enumerate(kept) if _TAGGED.search(line)]
    if len(tagged) > max_lines:
        drop = set(tagged[max_lines:])
        kept = [line for i, line in enumerate(kept) if i not in drop]

    return "\n".join(kept) + "\n"


def read_facts(markdown: str) -> list[tuple[str, str]]:
    """(key, fact) pairs in file order."""
    facts = []
    for line in (markdown or "").splitlines():
        match = _FACT_LINE.match(line)
        if match:
            facts.append((match.group(1).lower(), match.group(2)))
    return facts


def _is_question_like(text: str) -> bool:
    lowered = text.strip().lower()
    return lowered.endswith("?") or bool(_QUESTION_START.match(lowered))


def extract_auto_facts(text: str, limit: int = AUTO_FACTS_PER_TURN) -> list[MemoryFact]:
    """Durable facts stated in passing ("call me Sam", "my timezone is UTC")."""
    raw = str(text or "").strip()
    if len(raw) < 6 or len(raw) > 260 or _is_question_like(raw):
        return []
    if any(p.search(raw) for p in _UPDATE_PATTERNS):
        return []

    text = re.sub(r"\s+", " ", raw)
    found: list[MemoryFact] = []

    def push(fact: str, key: str) -> None:
        fact = fact.strip().strip("\"'")[:FACT_MAX_CHARS]
        key = normalize_key(key or fact[:42])
        if fact and all(f.key != key for f in found):
            found.append(MemoryFact(fact=fact, key=key, structured=True))

    match = re.search(r"(?:^|\b)call me\s+([a-z][a-z0-9' -]{1,40})$", text, re.I)
    if match and _clean_value(match.group(1)):
        push(f"My preferred name is {_clean_value(match.group(1))}", "preferred-name")

    match = re.match(r"^(?:my name is|i am called|i go by)\s+([a-z][a-z0-9' -]{1,40})$", text, re.I)
    if match and _clean_value(match.group(1)):
        push(f"My preferred name is {_clean_value(match.group(1))}", "preferred-name")

    match = re.match(
        r"^(?:my|our)\s+(?:timezone|time zone)\s+(?:is|=)\s+([a-z0-9_/:+\- ]{2,80})$", text, re.I
    )
    if match and _clean_value(match.group(1)):
        push(f"My timezone is {_clean_value(match.group(1))}", "timezone")

    match = re.match(r"^(?:my|our)\s+pronouns\s+(?:are|=)\s+([a-z/ ]{2,60})$", text, re.I)
    if match and _clean_value(match.group(1)):
        push(f"My pronouns are {_clean_value(match.group(1))}", "pronouns")

    match = re.match(r"^(?:i|we)\s+(?:prefer|like)\s+(.+)$", text, re.I)
    if match:
        value = _clean_value(match.group(1))
        if value.lower() not in _WEAK_VALUES:
            push(f"I prefer {value}", f"preference-{normalize_key(value[:28]) or 'general'}")

    match = re.match(r"^(?:i|we)\s+(?:dislike|hate|do not like|don't like)\s+(.+)$", text, re.I)
    if match:
        value = _clean_value(match.group(1))
        if value.lower() not in _WEAK_VALUES:
            push(f"I dislike {value}", f"dislike-{normalize_key(value[:28]) or 'general'}")

    match = re.match(r"^(?:my|our)\s+([a-z0-9][a-z0-9 _-]{1,48})\s+(?:is|are|was|were|=)\s+(.+)$", text, re.I)
    if match:
        field, value = _clean_value(match.group(1)), _clean_value(match.group(2))
        if field and value and normalize_key(field) and len(value) <= 80:
            push(f"My {field} is {value}", field)

    return found[:limit]


class PersonaWorkspace:
    """File area holding one directory of notes per user context."""

    NOTE_FILES = ("USER.md", "IDENTITY.md", "PERSONALITY.md", "MEMORY.md")

    def __init__(self, root: str | Path, max_fact_lines: int = MAX_FACT_LINES):
        self.root = Path(root)
        self.max_fact_lines = max_fact_lines
        self._locks: dict[Path, asyncio.Lock] = {}

    def directory(self, user_context_id: str) -> Path:
        safe = normalize_key(user_context_id) or "default"
        return self.root / safe

    def memory_path(self, user_context_id: str) -> Path:
        return self.directory(user_context_id) / "MEMORY.md"

    async def read_note(self, user_context_id: str, name: str) -> str:
        path = self.directory(user_context_id) / name
        return await asyncio.to_thread(_read_text, path)

    async def upsert_fact(self, user_context_id: str, fact: MemoryFact) -> Path:
        """Write a fact into MEMORY.md. File errors propagate."""
        path = self.memory_path(user_context_id)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            existing = await asyncio.to_thread(_read_text, path)
            updated = upsert_fact_markdown(existing, fact, max_lines=self.max_fact_lines)
            await asyncio.to_thread(_write_text, path, updated)
        logger.info(f"Memory fact saved (key={fact.key or 'general'}, path={path})")
        return path


def _read_text(path: Path) -> str:
    try:
        # Hand-edited notes may hold stray bytes; never fail a turn over them.
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
