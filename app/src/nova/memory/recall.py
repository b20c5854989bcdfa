"""
Memory Recall Index: SQLite + embeddings, cosine similarity search.

Facts are stored per user context with their embedding vector. Keyed
facts replace the previous value for the same key, mirroring MEMORY.md.
The prompt builder calls ``search()`` under a short timeout; the
recorder calls ``add_fact()`` after a turn.

The embedder is any async callable ``text -> list[float]``. By default
it calls the OpenAI embeddings endpoint of the configured provider.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable

import aiosqlite
import numpy as np
from openai import AsyncOpenAI

import nova.core.config as config_module

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


class MemoryIndex:
    def __init__(
        self,
        db_path: Path | str | None = None,
        embedder: Embedder | None = None,
        similarity_threshold: float | None = None,
    ):
        self.db_path = Path(db_path or config_module.config.memory.db_path)
        self._embedder = embedder
        self._threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else config_module.config.memory.similarity_threshold
        )
        self._openai: AsyncOpenAI | None = None
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS facts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_context_id TEXT NOT NULL,
                fact TEXT NOT NULL,
                fact_key TEXT NOT NULL DEFAULT '',
                embedding TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_facts_user ON facts(user_context_id)"
        )
        await self._db.commit()
        logger.info(f"Memory index initialized at {self.db_path}")

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def started(self) -> bool:
        return self._db is not None

    async def add_fact(self, user_context_id: str, fact: str, fact_key: str = "") -> None:
        """Store a fact. A non-empty key replaces the older fact for that key."""
        if not self._db:
            raise RuntimeError("Memory index not started")

        fact = fact.strip()
        if not fact:
            return
        embedding = await self._embed(fact)
        now = time.time()

        if fact_key:
            await self._db.execute(
                "DELETE FROM facts WHERE user_context_id = ? AND fact_key = ?",
                (user_context_id, fact_key),
            )
        else:
            await self._db.execute(
                "DELETE FROM facts WHERE user_context_id = ? AND fact_key = '' AND lower(fact) = ?",
                (user_context_id, fact.lower()),
            )
        await self._db.execute(
            "INSERT INTO facts (user_context_id, fact, fact_key, embedding, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_context_id, fact, fact_key, json.dumps(embedding), now, now),
        )
        await self._db.commit()
        logger.debug(f"Indexed fact (key={fact_key or 'general'}): {fact[:50]}")

    async def search(self, user_context_id: str, query: str, limit: int = 3) -> list[dict]:
        """Facts for this user ranked by cosine similarity to the query."""
        if not self._db:
            raise RuntimeError("Memory index not started")

        cursor = await self._db.execute(
            "SELECT fact, fact_key, embedding, updated_at FROM facts WHERE user_context_id = ?",
            (user_context_id,),
        )
        rows = await cursor.fetchall()
        if not rows:
            return []

        query_vec = np.array(await self._embed(query))
        results = []
        for row in rows:
            stored_vec = np.array(json.loads(row[2]))
            similarity = float(
                np.dot(query_vec, stored_vec)
                / (np.linalg.norm(query_vec) * np.linalg.norm(stored_vec) + 1e-8)
            )
            if similarity > self._threshold:
                results.append(
                    {
                        "fact": row[0],
                        "key": row[1],
                        "similarity": similarity,
                        "timestamp": row[3],
                    }
                )

        results.sort(key=lambda x: x["similarity"], reverse=True)
        return results[:limit]

    async def count(self, user_context_id: str) -> int:
        if not self._db:
            return 0
        cursor = await self._db.execute(
            "SELECT COUNT(*) FROM facts WHERE user_context_id = ?", (user_context_id,)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _embed(self, text: str) -> list[float]:
        if self._embedder is not None:
            return await self._embedder(text)
        response = await self._get_openai_client().embeddings.create(
            model=config_module.config.memory.embedding_model,
            input=text,
        )
        return response.data[0].embedding

    def _get_openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            settings = config_module.config.providers.openai
            if settings.base_url:
                self._openai = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)
            else:
                self._openai = AsyncOpenAI(api_key=settings.api_key)
        return self._openai
