"""
Performance Store: SQLite persistence for delegation performance.

Async context manager over aiosqlite, one row per agent.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from negotiator.delegation.performance import PerformanceRecord


class PerformanceStore:
    """Persists ``PerformanceRecord`` rows across runs."""

    DB_PATH = Path.home() / ".negotiator" / "data" / "performance.db"

    def __init__(self, db_path: Optional[str | Path] = None) -> None:
        self.db_path = Path(db_path) if db_path else self.DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> "PerformanceStore":
        await self._init_db()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        await self.close()

    async def _init_db(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS delegation_performance (
                agent_id TEXT PRIMARY KEY,
                task_count INTEGER DEFAULT 0,
                success_count INTEGER DEFAULT 0,
                success_rate REAL DEFAULT 0.0,
                avg_completion_time REAL DEFAULT 0.0,
                last_updated REAL NOT NULL,
                CHECK (task_count >= 0),
                CHECK (success_count <= task_count),
                CHECK (success_rate BETWEEN 0.0 AND 1.0),
                CHECK (avg_completion_time >= 0.0)
            )
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, record: PerformanceRecord) -> None:
        assert self._db is not None
        await self._db.execute(
            """INSERT INTO delegation_performance
               (agent_id, task_count, success_count, success_rate,
                avg_completion_time, last_updated)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(agent_id) DO UPDATE SET
                   task_count = excluded.task_count,
                   success_count = excluded.success_count,
                   success_rate = excluded.success_rate,
                   avg_completion_time = excluded.avg_completion_time,
                   last_updated = excluded.last_updated""",
            (
                record.agent_id,
                record.task_count,
                record.success_count,
                record.success_rate,
                record.avg_completion_time,
                record.last_updated,
            ),
        )
        await self._db.commit()

    async def load_all(self) -> List[PerformanceRecord]:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT agent_id, task_count, success_count, success_rate, "
            "avg_completion_time, last_updated FROM delegation_performance"
        )
        rows = await cursor.fetchall()
        return [
            PerformanceRecord(
                agent_id=row[0],
                task_count=row[1],
                success_count=row[2],
                success_rate=row[3],
                avg_completion_time=row[4],
                last_updated=row[5],
            )
            for row in rows
        ]

    async def get_top_agents(self, limit: int = 5, min_tasks: int = 0) -> List[Dict[str, Any]]:
        """Highest-scoring agents with at least ``min_tasks`` delegations."""
        records = [r for r in await self.load_all() if r.task_count >= min_tasks]
        records.sort(key=lambda r: (-r.score, r.agent_id))
        return [r.to_dict() for r in records[:limit]]
