"""Conversation history: an in-memory turn list with optional SQLite persistence."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

from ..config import DEFAULT_MAX_TURNS, HistoryConfig
from .schema import Turn, TurnRole, utc_now

__all__ = ["DEFAULT_DB_PATH", "DEFAULT_MAX_TURNS", "ConversationHistory", "HistoryStore"]

DEFAULT_DB_PATH = Path("data/planpilot.sqlite")
LOGGER = logging.getLogger(__name__)


class HistoryStore:
    """SQLite-backed storage for the most recent conversation turns."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH, *, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        self.db_path = Path(db_path).resolve()
        self.max_turns = max(1, max_turns)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._bootstrap()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base: Path | None = None) -> "HistoryStore":
        paths = config.get("paths") or {}
        raw_path = paths.get("db_path") or Path(paths.get("data") or "data") / "planpilot.sqlite"
        db_path = Path(raw_path)
        if base is not None and not db_path.is_absolute():
            db_path = base / db_path
        return cls(db_path, max_turns=HistoryConfig.from_config(config).max_turns)

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "HistoryStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("History store is closed.")
        return self._conn

    def _bootstrap(self) -> None:
        self._connection().executescript(
            """
            CREATE TABLE IF NOT EXISTS turns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                role TEXT NOT NULL,
                text TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            """
        )

    def load(self) -> List[Turn]:
        """Return stored turns oldest-first."""
        rows = self._connection().execute(
            "SELECT role, text FROM turns ORDER BY id DESC LIMIT ?",
            (self.max_turns,),
        ).fetchall()
        return [Turn(role=row["role"], text=row["text"]) for row in reversed(rows)]

    def save(self, turns: Iterable[Turn]) -> None:
        """Replace the stored history with the last ``max_turns`` of ``turns``."""
        kept = list(turns)[-self.max_turns :]
        timestamp = utc_now().isoformat()
        conn = self._connection()
        with conn:
            conn.execute("DELETE FROM turns")
            conn.executemany(
                "INSERT INTO turns (role, text, created_at) VALUES (?, ?, ?)",
                [(turn.role, turn.text, timestamp) for turn in kept],
            )

    def clear(self) -> None:
        conn = self._connection()
        with conn:
            conn.execute("DELETE FROM turns")


class ConversationHistory:
    """Ordered turns shared by plan generation and repair.

    When a store is attached, every change is written through to it.
    """

    def __init__(self, turns: Iterable[Turn] = (), *, store: Optional[HistoryStore] = None) -> None:
        self._turns: List[Turn] = list(turns)
        self._store = store

    @classmethod
    def load(cls, store: HistoryStore) -> "ConversationHistory":
        return cls(store.load(), store=store)

    @property
    def turns(self) -> List[Turn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append(self, role: TurnRole, text: str) -> Turn:
        turn = Turn(role=role, text=text)
        self._turns.append(turn)
        self._persist()
        return turn

    def clear(self) -> None:
        self._turns.clear()
        if self._store is not None:
            self._store.clear()

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self._turns)
        except sqlite3.Error as error:
            LOGGER.warning("Failed to persist conversation history: %s", error)
