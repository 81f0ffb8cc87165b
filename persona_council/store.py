"""Collaborators the round needs: persona directory, credit ledger, run store.

``SQLiteCouncilStore`` implements all three over one SQLite database so a
round's commit (run rows, persona stats, credit decrement) is a single
database transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from persona_council.errors import InsufficientCreditsError
from persona_council.models import (
    ACTIVE,
    INACTIVE,
    Persona,
    PersonaOutcome,
    RunDetail,
    RunSummary,
    StatsDelta,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS personas (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    system_prompt TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    runs INTEGER NOT NULL DEFAULT 0,
    wins INTEGER NOT NULL DEFAULT 0,
    vote_score INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    credits INTEGER NOT NULL,
    reserved INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    user_query TEXT NOT NULL,
    winner_id TEXT NOT NULL REFERENCES personas(id),
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS persona_answers (
    run_id TEXT NOT NULL REFERENCES runs(id),
    persona_id TEXT NOT NULL REFERENCES personas(id),
    answer TEXT NOT NULL,
    vote_label TEXT,
    vote_explanation TEXT NOT NULL,
    voted_for TEXT,
    is_winner INTEGER NOT NULL,
    PRIMARY KEY (run_id, persona_id)
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersonaDirectory(ABC):
    @abstractmethod
    def list_active_personas(self) -> list[Persona]:
        """Active personas in stable (creation) order."""
        ...


class CreditLedger(ABC):
    @abstractmethod
    def check_and_reserve(self, user_id: str) -> bool:
        """Hold one credit for a round. False when no unheld credit is left."""
        ...

    @abstractmethod
    def release_reservation(self, user_id: str) -> None:
        """Drop a hold taken by ``check_and_reserve`` without charging it."""
        ...

    @abstractmethod
    def commit_decrement(self, user_id: str, amount: int = 1) -> int:
        """Take ``amount`` credits, releasing as many holds, and return the balance.

        Raises:
            InsufficientCreditsError: If the balance no longer covers it.
        """
        ...


class RunStore(ABC):
    @abstractmethod
    def commit_run(
        self,
        user_id: str,
        user_query: str,
        winner_id: str,
        outcomes: Sequence[PersonaOutcome],
    ) -> str:
        """Record one round and return its run id."""
        ...

    @abstractmethod
    def increment_stats(self, persona_id: str, delta: StatsDelta) -> None:
        ...


class CouncilStore(PersonaDirectory, CreditLedger, RunStore):
    """All three collaborators plus a transaction spanning them."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Everything done inside commits together or not at all."""
        ...


class SQLiteCouncilStore(CouncilStore):
    """SQLite-backed store with WAL and one connection per transaction."""

    def __init__(self, db_path: Path, starting_credits: int = 10) -> None:
        self.db_path = Path(db_path)
        self.starting_credits = starting_credits
        self._lock = threading.RLock()
        self._tx: sqlite3.Connection | None = None
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA busy_timeout=5000;")
        return conn

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(users)")}
            if "reserved" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN reserved INTEGER NOT NULL DEFAULT 0")

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """The open transaction's connection, or a short-lived committing one."""
        with self._lock:
            if self._tx is not None:
                yield self._tx
                return
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._tx is not None:
                raise RuntimeError("Nested transactions are not supported")
            conn = self._connect()
            self._tx = conn
            try:
                with conn:
                    yield
            finally:
                self._tx = None
                conn.close()

    # --- personas ---

    @staticmethod
    def _persona(row: sqlite3.Row) -> Persona:
        return Persona(
            id=row["id"],
            name=row["name"],
            system_prompt=row["system_prompt"],
            status=row["status"],
            runs=row["runs"],
            wins=row["wins"],
            vote_score=row["vote_score"],
        )

    def seed_personas(self, personas: Mapping[str, str]) -> int:
        """Insert name -> directive pairs missing from the table. Returns rows added."""
        added = 0
        with self._conn() as conn:
            for name, system_prompt in personas.items():
                cur = conn.execute(
                    "INSERT OR IGNORE INTO personas (id, name, system_prompt, status, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (uuid.uuid4().hex, name, system_prompt, ACTIVE, _now()),
                )
                added += cur.rowcount
        if added:
            logger.info("Seeded %d persona(s)", added)
        return added

    def list_personas(self) -> list[Persona]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM personas ORDER BY rowid").fetchall()
        return [self._persona(r) for r in rows]

    def list_active_personas(self) -> list[Persona]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM personas WHERE status = ? ORDER BY rowid", (ACTIVE,)
            ).fetchall()
        return [self._persona(r) for r in rows]

    def set_persona_status(self, name: str, status: str) -> Persona | None:
        if status not in (ACTIVE, INACTIVE):
            raise ValueError(f'Status must be "{ACTIVE}" or "{INACTIVE}"')
        with self._conn() as conn:
            conn.execute("UPDATE personas SET status = ? WHERE name = ?", (status, name))
            row = conn.execute("SELECT * FROM personas WHERE name = ?", (name,)).fetchone()
        return self._persona(row) if row is not None else None

    # --- credits ---

    def ensure_user(self, user_id: str) -> int:
        """Create the user with the starting balance if needed; return the balance."""
        with self._conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (user_id, credits, created_at) VALUES (?, ?, ?)",
                (user_id, self.starting_credits, _now()),
            )
            row = conn.execute("SELECT credits FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["credits"])

    def get_credits(self, user_id: str) -> int:
        return self.ensure_user(user_id)

    def add_credits(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        self.ensure_user(user_id)
        with self._conn() as conn:
            conn.execute("UPDATE users SET credits = credits + ? WHERE user_id = ?", (amount, user_id))
            row = conn.execute("SELECT credits FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["credits"])

    def check_and_reserve(self, user_id: str) -> bool:
        self.ensure_user(user_id)
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE users SET reserved = reserved + 1 WHERE user_id = ? AND credits - reserved >= 1",
                (user_id,),
            )
        return cur.rowcount == 1

    def release_reservation(self, user_id: str) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE users SET reserved = MAX(reserved - 1, 0) WHERE user_id = ?", (user_id,)
            )

    def commit_decrement(self, user_id: str, amount: int = 1) -> int:
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE users SET credits = credits - ?, reserved = MAX(reserved - ?, 0) "
                "WHERE user_id = ? AND credits >= ?",
                (amount, amount, user_id, amount),
            )
            if cur.rowcount != 1:
                raise InsufficientCreditsError(user_id)
            row = conn.execute("SELECT credits FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["credits"])

    # --- runs ---

    def commit_run(
        self,
        user_id: str,
        user_query: str,
        winner_id: str,
        outcomes: Sequence[PersonaOutcome],
    ) -> str:
        run_id = uuid.uuid4().hex
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO runs (id, user_id, user_query, winner_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (run_id, user_id, user_query, winner_id, _now()),
            )
            conn.executemany(
                "INSERT INTO persona_answers "
                "(run_id, persona_id, answer, vote_label, vote_explanation, voted_for, is_winner) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        run_id,
                        o.persona_id,
                        o.answer,
                        o.vote_label,
                        o.vote_explanation,
                        o.voted_for,
                        int(o.is_winner),
                    )
                    for o in outcomes
                ],
            )
        return run_id

    def increment_stats(self, persona_id: str, delta: StatsDelta) -> None:
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE personas SET runs = runs + ?, wins = wins + ?, vote_score = vote_score + ? "
                "WHERE id = ?",
                (delta.runs, delta.wins, delta.vote_score, persona_id),
            )
            if cur.rowcount != 1:
                raise KeyError(f"Unknown persona {persona_id!r}")

    def list_runs(self, limit: int = 25) -> list[RunSummary]:
        """Most recent runs first, each with the winning answer."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT r.id, r.created_at, r.user_query, COALESCE(a.answer, '') AS winner_answer "
                "FROM runs r LEFT JOIN persona_answers a ON a.run_id = r.id AND a.is_winner = 1 "
                "ORDER BY r.created_at DESC, r.rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            RunSummary(
                id=r["id"],
                created_at=r["created_at"],
                user_query=r["user_query"],
                winner_answer=r["winner_answer"],
            )
            for r in rows
        ]

    def get_run(self, run_id: str) -> RunDetail | None:
        with self._conn() as conn:
            run = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
            if run is None:
                return None
            rows = conn.execute(
                "SELECT a.*, p.name FROM persona_answers a JOIN personas p ON p.id = a.persona_id "
                "WHERE a.run_id = ? ORDER BY a.rowid",
                (run_id,),
            ).fetchall()

        outcomes = [
            PersonaOutcome(
                persona_id=r["persona_id"],
                name=r["name"],
                answer=r["answer"],
                vote_label=r["vote_label"],
                voted_for=r["voted_for"],
                vote_explanation=r["vote_explanation"],
                is_winner=bool(r["is_winner"]),
            )
            for r in rows
        ]
        vote_counts = {o.persona_id: 0 for o in outcomes}
        for o in outcomes:
            if o.voted_for in vote_counts:
                vote_counts[o.voted_for] += 1
        winner_answer = next((o.answer for o in outcomes if o.is_winner), "")

        return RunDetail(
            id=run["id"],
            created_at=run["created_at"],
            user_query=run["user_query"],
            winner_id=run["winner_id"],
            winner_answer=winner_answer,
            vote_counts=vote_counts,
            personas=outcomes,
        )
