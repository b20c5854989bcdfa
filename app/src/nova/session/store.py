"""
Session Store: SQLite-backed transcripts and usage rows.

Usage:
    store = SessionStore()
    await store.start()

    await store.append_turn(TranscriptEntry("hud:alex", role="user", text="hello"))
    entries = await store.get_turns("hud:alex")
    await store.limit_turns("hud:alex", max_turns=20)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

import nova.core.config as config_module
from nova.session.models import TranscriptEntry, UsageRecord, UsageTotals

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Two tables:
    - transcript: ordered utterances per session key
    - usage: one accounting row per provider-backed turn
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path or config_module.config.session.db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Initialize the database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS transcript (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_key TEXT NOT NULL,
                role TEXT NOT NULL,
                text TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                timestamp REAL NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_key TEXT NOT NULL,
                user_context_id TEXT NOT NULL DEFAULT '',
                route TEXT NOT NULL,
                provider TEXT NOT NULL DEFAULT '',
                model TEXT NOT NULL DEFAULT '',
                prompt_tokens INTEGER NOT NULL DEFAULT 0,
                completion_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                estimated_cost_usd REAL,
                ok INTEGER NOT NULL DEFAULT 1,
                created_at REAL NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_transcript_session
            ON transcript(session_key, id)
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_session
            ON usage(session_key)
        """)

        await self._db.commit()
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # ─── Transcript ───────────────────────────────────────────────

    async def append_turn(self, entry: TranscriptEntry) -> None:
        assert self._db is not None, "SessionStore not started"
        await self._db.execute(
            "INSERT INTO transcript (session_key, role, text, metadata, timestamp) VALUES (?, ?, ?, ?, ?)",
            (
                entry.session_key,
                entry.role,
                entry.text,
                json.dumps(entry.metadata or {}),
                entry.timestamp,
            ),
        )
        await self._db.commit()

    async def get_turns(self, session_key: str, limit: int | None = None) -> list[TranscriptEntry]:
        """Transcript entries oldest first; ``limit`` keeps the newest N."""
        assert self._db is not None, "SessionStore not started"
        if limit is not None:
            query = (
                "SELECT session_key, role, text, metadata, timestamp FROM ("
                " SELECT * FROM transcript WHERE session_key = ? ORDER BY id DESC LIMIT ?"
                ") ORDER BY id ASC"
            )
            params: tuple = (session_key, max(0, limit))
        else:
            query = (
                "SELECT session_key, role, text, metadata, timestamp FROM transcript "
                "WHERE session_key = ? ORDER BY id ASC"
            )
            params = (session_key,)

        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [
            TranscriptEntry(
                session_key=row[0],
                role=row[1],
                text=row[2],
                metadata=json.loads(row[3]) if row[3] else {},
                timestamp=row[4],
            )
            for row in rows
        ]

    async def limit_turns(self, session_key: str, max_turns: int) -> int:
        """Drop the oldest entries beyond max_turns. Returns rows removed."""
        assert self._db is not None, "SessionStore not started"
        cursor = await self._db.execute(
            """
            DELETE FROM transcript WHERE session_key = ? AND id NOT IN (
                SELECT id FROM transcript WHERE session_key = ? ORDER BY id DESC LIMIT ?
            )
            """,
            (session_key, session_key, max(0, max_turns)),
        )
        await self._db.commit()
        removed = cursor.rowcount or 0
        if removed:
            logger.debug(f"Trimmed {removed} transcript entries for {session_key}")
        return removed

    # ─── Usage ────────────────────────────────────────────────────

    async def persist_usage(self, record: UsageRecord) -> None:
        assert self._db is not None, "SessionStore not started"
        await self._db.execute(
            """
            INSERT INTO usage
                (session_key, user_context_id, route, provider, model, prompt_tokens,
                 completion_tokens, total_tokens, estimated_cost_usd, ok, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.session_key,
                record.user_context_id,
                record.route,
                record.provider,
                record.model,
                record.prompt_tokens,
                record.completion_tokens,
                record.total_tokens,
                record.estimated_cost_usd,
                1 if record.ok else 0,
                record.created_at,
            ),
        )
        await self._db.commit()

    async def usage_totals(self, session_key: str | None = None) -> UsageTotals:
        """Aggregate usage for one session, or for all sessions."""
        assert self._db is not None, "SessionStore not started"
        query = (
            "SELECT COUNT(*), COALESCE(SUM(prompt_tokens), 0), COALESCE(SUM(completion_tokens), 0), "
            "COALESCE(SUM(total_tokens), 0), COALESCE(SUM(estimated_cost_usd), 0) FROM usage"
        )
        params: tuple = ()
        if session_key is not None:
            query += " WHERE session_key = ?"
            params = (session_key,)
        async with self._db.execute(query, params) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return UsageTotals()
        return UsageTotals(
            turns=int(row[0]),
            prompt_tokens=int(row[1]),
            completion_tokens=int(row[2]),
            total_tokens=int(row[3]),
            estimated_cost_usd=round(float(row[4]), 6),
        )
