"""
Intent Router: pure classification of raw text into a handling lane.

A strategy table of independent predicates, evaluated in fixed priority
order. The first predicate that matches wins; ties are never resolved by
specificity. Add a lane by registering a rule, dispatch stays untouched.

Usage:
    router = IntentRouter()
    lane = router.classify("pause")   # -> Lane.MEDIA_CONTROL

Confirm-only scheduling phrasing (should_confirm_workflow) also lands in
the workflow lane, after memory updates, where it is answered with a
confirmation prompt instead of a build.

Sibling helpers used elsewhere in the turn:
    should_draft_only_workflow(text)   "draft"/"preview" phrasing
    should_preload_web_search(text)    recency/news/price/weather lexicon
    reply_claims_no_live_access(text)  provider refusing a capability it has
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from nova.turn.contracts import Lane

# ─── Shutdown ────────────────────────────────────────────────────

SHUTDOWN_PHRASES = frozenset({"nova shutdown", "nova shut down", "shutdown nova"})


def is_shutdown(text: str) -> bool:
    return _norm(text) in SHUTDOWN_PHRASES


# ─── Media control ───────────────────────────────────────────────

_MEDIA_SUBSTRINGS = ("spotify", "play music", "play some", "put on ")
_MEDIA_PLAY_LIBRARY = re.compile(
    r"\bplay\s+(my |one of my |a |the )?(favorite|liked|saved|default|playlist|song|track|album|artist)"
)
_MEDIA_TRANSPORT = re.compile(
    r"\b(skip|next track|previous track|next song|last song|go back a song|pause|resume|"
    r"now playing|what.?s playing|what is playing|shuffle|repeat|queue)\b"
)
_MEDIA_PLAY_BY = re.compile(r"\bplay\s+.+\s+by\s+")
_MEDIA_PLAY_ANY = re.compile(r"\bplay\s+[a-z].{2,}")
_MEDIA_NOT_MUSIC = re.compile(r"\bplay\s+(a |the )?(game|video|clip|movie|film|role|part)\b")


def is_media_control(text: str) -> bool:
    n = _norm(text)
    if not n:
        return False
    if any(s in n for s in _MEDIA_SUBSTRINGS):
        return True
    if _MEDIA_PLAY_LIBRARY.search(n) or _MEDIA_TRANSPORT.search(n) or _MEDIA_PLAY_BY.search(n):
        return True
    return bool(_MEDIA_PLAY_ANY.search(n)) and not _MEDIA_NOT_MUSIC.search(n)


# ─── Workflow build ──────────────────────────────────────────────

_BUILD_VERB = re.compile(r"\b(build|create|setup|set up|make|generate|deploy)\b")
_WORKFLOW_NOUN = re.compile(
    r"\b(workflow|mission|automation|pipeline|schedule|daily report|notification)s?\b"
)
_REMINDER_LIKE = re.compile(
    r"\b(remind me to|reminder to|set a reminder|remember to|dont let me forget|don't let me forget)\b"
)
_SCHEDULE_LIKE = re.compile(
    r"\b(every day|daily|every morning|every night|weekly|at\s+\d{1,2}(:\d{2})?\s*(am|pm)?|"
    r"tomorrow morning|tomorrow night)\b"
)
_DELIVERY_LIKE = re.compile(
    r"\b(to telegram|on telegram|to discord|on discord|to novachat|to chat|as a notification)\b"
)
_MISSION_TERMS = re.compile(r"\b(mission|workflow|automation|schedule|scheduled)\b")
_TASK_LIKE = re.compile(r"\b(quote|speech|reminder|bill|loan|payment|pay)\b")
_QUESTION_ONLY = re.compile(r"^(what|why|how|when|where)\b|\b(explain|difference between)\b")
_DRAFT_ONLY = re.compile(r"(draft|preview|don't deploy|do not deploy|just show|show me first)")


def is_workflow_build(text: str) -> bool:
    """Both a creation verb and an automation noun are required."""
    n = _norm(text)
    return bool(_BUILD_VERB.search(n)) and bool(_WORKFLOW_NOUN.search(n))


def should_confirm_workflow(text: str) -> bool:
    """Scheduling phrasing that should be confirmed, not built outright."""
    n = _norm(text)
    if not n or is_workflow_build(n):
        return False
    if _QUESTION_ONLY.search(n):
        return False
    schedule_like = bool(_SCHEDULE_LIKE.search(n))
    task_like = bool(_TASK_LIKE.search(n))
    return (
        bool(_REMINDER_LIKE.search(n))
        or (schedule_like and (bool(_DELIVERY_LIKE.search(n)) or task_like))
        or (bool(_MISSION_TERMS.search(n)) and task_like)
    )


def should_draft_only_workflow(text: str) -> bool:
    return bool(_DRAFT_ONLY.search(_norm(text)))


# ─── Memory update ───────────────────────────────────────────────

_MEMORY_UPDATE = re.compile(r"\b(update (your|ur) memory|remember this|remember that)\b")


def is_memory_update(text: str) -> bool:
    return bool(_MEMORY_UPDATE.search(_norm(text)))


# ─── Enrichment helpers ──────────────────────────────────────────

_WEB_LEXICON = re.compile(
    r"\b(latest|most recent|today|tonight|tomorrow|yesterday|last night|current|breaking|"
    r"update|updates|live|score|scores|recap|price|prices|market|news|weather|forecast)\b"
)

NO_LIVE_ACCESS_PHRASES = (
    "don't have live access",
    "do not have live access",
    "don't have access to the internet",
    "no live access to the internet",
    "can't access current",
    "cannot access current",
    "cannot browse",
    "can't browse",
    "without web access",
)


def should_preload_web_search(text: str) -> bool:
    n = _norm(text)
    return bool(n) and bool(_WEB_LEXICON.search(n))


def reply_claims_no_live_access(text: str) -> bool:
    n = _norm(text).replace("\u2019", "'")
    return bool(n) and any(p in n for p in NO_LIVE_ACCESS_PHRASES)


# ─── Router ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class LaneRule:
    lane: Lane
    matches: Callable[[str], bool]


DEFAULT_RULES: tuple[LaneRule, ...] = (
    LaneRule(Lane.SHUTDOWN, is_shutdown),
    LaneRule(Lane.MEDIA_CONTROL, is_media_control),
    LaneRule(Lane.WORKFLOW_BUILD, is_workflow_build),
    LaneRule(Lane.MEMORY_UPDATE, is_memory_update),
    # Scheduling talk without build verbs: the workflow handler asks first.
    LaneRule(Lane.WORKFLOW_BUILD, should_confirm_workflow),
)


class IntentRouter:
    """Evaluates lane rules in priority order; falls through to CHAT."""

    def __init__(self, rules: tuple[LaneRule, ...] | list[LaneRule] = DEFAULT_RULES):
        self._rules = list(rules)

    def register(self, rule: LaneRule, before: Lane | None = None) -> None:
        """Add a rule, optionally ahead of an existing lane."""
        if before is None:
            self._rules.append(rule)
            return
        for i, existing in enumerate(self._rules):
            if existing.lane == before:
                self._rules.insert(i, rule)
                return
        self._rules.append(rule)

    def classify(self, text: str) -> Lane:
        for rule in self._rules:
            if rule.matches(text):
                return rule.lane
        return Lane.CHAT


def _norm(text: str) -> str:
    return str(text or "").strip().lower()
