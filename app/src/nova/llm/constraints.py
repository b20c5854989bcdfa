"""Strict output-format requests ("answer in one word", "json only", ...).

Parsed from the user's text, appended as the last prompt section, and
checked against the final reply so violations show up in logs.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

_ONE_WORD = re.compile(r"\b(?:answer|respond|reply)\s+(?:with|in)\s+(?:one|a single)[- ]word\b", re.I)
_EXACT_BULLETS = re.compile(r"\bexactly\s+(\d{1,2})\s+bullet(?:\s+points?)?\b", re.I)
_JSON_ONLY = re.compile(r"\bjson\s+only\b|\bonly\s+(?:return\s+)?json\b", re.I)
_JSON_KEYS = re.compile(r"\bkeys?\b([^.?!\n]*)", re.I)
_TWO_SENTENCES = re.compile(r"\btwo\s+short\s+sentences\b|\bexactly\s+two\s+sentences\b", re.I)
_ONE_SENTENCE = re.compile(r"\bin\s+one\s+sentence\b|\bexactly\s+one\s+sentence\b", re.I)
_KEY_TOKEN = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")
_KEY_STOP_WORDS = {"key", "keys", "with", "and", "or"}


@dataclass(frozen=True)
class OutputConstraints:
    one_word: bool = False
    exact_bullet_count: int = 0
    json_only: bool = False
    required_json_keys: tuple[str, ...] = ()
    sentence_count: int = 0
    rules: tuple[str, ...] = field(default_factory=tuple)

    @property
    def enabled(self) -> bool:
        return bool(self.rules)

    @property
    def instructions(self) -> str:
        return "\n".join(self.rules)


def _requested_json_keys(raw: str) -> tuple[str, ...]:
    match = _JSON_KEYS.search(raw)
    if not match:
        return ()
    clause = re.sub(r"^\s*(?:are|is|=|:|with)\s+", "", match.group(1), flags=re.I)
    clause = re.sub(r"\b(top[- ]level|only|just|required|json|object)\b", " ", clause, flags=re.I)
    clause = re.sub(r"\band\b", ",", clause, flags=re.I)
    keys: list[str] = []
    for token in re.split(r"[^a-z0-9_-]+", clause, flags=re.I):
        cleaned = token.strip().lower()
        if not cleaned or cleaned in _KEY_STOP_WORDS or not _KEY_TOKEN.match(cleaned):
            continue
        if cleaned not in keys:
            keys.append(cleaned)
        if len(keys) >= 8:
            break
    return tuple(keys)


def parse_output_constraints(text: str) -> OutputConstraints:
    raw = str(text or "").replace("\r\n", "\n").strip()
    if not raw:
        return OutputConstraints()

    rules: list[str] = []
    one_word = bool(_ONE_WORD.search(raw))
    if one_word:
        rules.append("Return exactly one word with no extra words.")

    bullets = 0
    match = _EXACT_BULLETS.search(raw)
    if match and int(match.group(1)) > 0:
        bullets = int(match.group(1))
        rules.append(f"Return exactly {bullets} bullet points.")
        rules.append('Each bullet line must start with "- ".')

    json_only = bool(_JSON_ONLY.search(raw))
    keys: tuple[str, ...] = ()
    if json_only:
        rules.append("Return raw JSON only with no markdown or prose outside the JSON.")
        keys = _requested_json_keys(raw)
        if keys:
            rules.append(
                f"JSON object must include exactly these top-level keys: {', '.join(keys)}."
            )
            rules.append("Do not include any additional top-level keys.")

    sentences = 0
    if _TWO_SENTENCES.search(raw):
        sentences = 2
        rules.append("Return exactly two short sentences.")
    elif _ONE_SENTENCE.search(raw):
        sentences = 1
        rules.append("Return exactly one sentence.")

    return OutputConstraints(
        one_word=one_word,
        exact_bullet_count=bullets,
        json_only=json_only,
        required_json_keys=keys,
        sentence_count=sentences,
        rules=tuple(rules),
    )


def count_sentences(text: str) -> int:
    normalized = re.sub(r"\n+", " ", str(text or "").strip())
    if not normalized:
        return 0
    matches = re.findall(r"[^.!?]+[.!?]+(?=\s|$)", normalized)
    return len(matches) or 1


def validate_output(reply: str, constraints: OutputConstraints) -> tuple[bool, str]:
    """(ok, reason) for a final reply against parsed constraints."""
    if not constraints.enabled:
        return True, ""
    text = str(reply or "").strip()
    if not text:
        return False, "empty_reply"

    if constraints.one_word:
        token = text.strip("`\"'([{)]}.,!?;:")
        if len(text.split()) != 1 or not token:
            return False, "one_word_mismatch"

    if constraints.exact_bullet_count:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        bullets = [line for line in lines if line.startswith("- ")]
        if len(bullets) != constraints.exact_bullet_count:
            return False, f"exact_bullet_count_mismatch:{constraints.exact_bullet_count}"
        if len(bullets) != len(lines):
            return False, "bullet_contains_non_bullet_lines"

    if constraints.json_only:
        if text.startswith("```"):
            return False, "json_only_markdown_fence"
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return False, "json_only_invalid_json"
        if constraints.required_json_keys:
            if not isinstance(parsed, dict):
                return False, "json_required_object"
            present = {str(k).strip().lower() for k in parsed}
            required = set(constraints.required_json_keys)
            missing = required - present
            if missing:
                return False, f"json_missing_key:{sorted(missing)[0]}"
            extra = present - required
            if extra:
                return False, f"json_extra_key:{sorted(extra)[0]}"

    if constraints.sentence_count and count_sentences(text) != constraints.sentence_count:
        return False, f"sentence_count_mismatch:{constraints.sentence_count}"

    return True, ""
