"""
Session management: transcripts and usage.

Key components:
- SessionStore: SQLite-backed transcript and usage rows
- SessionRecorder: end-of-turn writes (transcript, usage, captured facts)
"""

from nova.session.models import Role, TranscriptEntry, UsageRecord, UsageTotals
from nova.session.store import SessionStore

__all__ = [
    "Role",
    "TranscriptEntry",
    "UsageRecord",
    "UsageTotals",
    "SessionStore",
]
