"""
SMX Chart Votes - SQLite Database

Votes and user accounts live in an embedded SQLite database.  Uses aiosqlite
for async operations within FastAPI and plain sqlite3 for schema setup.

Votes are a flat table keyed by (chart_id, voter_id).  The voter id is
either an anonymous session id or a user id, depending on IDENTITY_MODE;
the store does not care which.
"""

import sqlite3
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import aiosqlite
from loguru import logger

from chartvote.config import DB_PATH, VOTE_DIRECTIONS
from chartvote.errors import ConflictError
from chartvote.models import Vote, VoteCount, VoteResult

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS votes (
    id TEXT PRIMARY KEY,
    chart_id INTEGER NOT NULL,
    voter_id TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('up', 'down')),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (chart_id, voter_id)
);

CREATE INDEX IF NOT EXISTS idx_votes_chart_id ON votes(chart_id);

CREATE TRIGGER IF NOT EXISTS update_votes_timestamp
    AFTER UPDATE ON votes
    FOR EACH ROW
BEGIN
    UPDATE votes SET updated_at = CURRENT_TIMESTAMP WHERE id = OLD.id;
END;

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

# ---------------------------------------------------------------------------
# Migration helpers
# ---------------------------------------------------------------------------
_MIGRATIONS = [
    # Migration 1: index votes by voter so per-user lookups don't scan
    {
        "check": "SELECT COUNT(*) FROM pragma_index_list('votes') WHERE name='idx_votes_voter_id'",
        "apply": [
            "CREATE INDEX IF NOT EXISTS idx_votes_voter_id ON votes(voter_id)",
        ],
        "description": "Add votes.voter_id index",
    },
]


def _run_migrations(conn: sqlite3.Connection) -> None:
    """Run any pending schema migrations."""
    for migration in _MIGRATIONS:
        cursor = conn.execute(str(migration["check"]))
        (count,) = cursor.fetchone()
        if count == 0:
            logger.info("🔄 Running migration: {}", migration["description"])
            for stmt in migration["apply"]:
                conn.execute(stmt)
            conn.commit()
            logger.success("✅ Migration applied: {}", migration["description"])


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------
def init_db() -> None:
    """Initialize the SQLite database, create tables, and run migrations."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    try:
        with sqlite3.connect(str(DB_PATH)) as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
            _run_migrations(conn)
        logger.success(f"✅ Database initialized at {DB_PATH}")
    except Exception as e:
        logger.critical(f"❌ Failed to initialize database: {e}")
        raise


# ---------------------------------------------------------------------------
# Async context manager (for use in FastAPI routes)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def get_async_connection():
    """Async context manager for an aiosqlite connection with row factory."""
    db = await aiosqlite.connect(str(DB_PATH))
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


def row_to_dict(row) -> Dict[str, Any]:
    """Convert a database row to a plain dictionary."""
    if row is None:
        return {}
    return dict(row)


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
async def _fetch_vote(db, chart_id: int, voter_id: str) -> Optional[Vote]:
    cursor = await db.execute(
        "SELECT * FROM votes WHERE chart_id = ? AND voter_id = ?",
        (chart_id, voter_id),
    )
    row = await cursor.fetchone()
    return Vote(**row_to_dict(row)) if row else None


async def get_vote(chart_id: int, voter_id: str) -> Optional[Vote]:
    """Fetch the vote a voter has on a chart, if any."""
    async with get_async_connection() as db:
        return await _fetch_vote(db, chart_id, voter_id)


async def cast_vote(chart_id: int, voter_id: str, direction: str) -> VoteResult:
    """
    Record a vote with toggle semantics.

    - no existing vote: insert it (``created``)
    - same direction as the existing vote: delete it (``removed``); the
      deleted record is returned
    - opposite direction: flip the existing record in place (``flipped``)

    The read and the write happen inside one IMMEDIATE transaction so two
    submissions for the same key cannot both insert.
    """
    if direction not in VOTE_DIRECTIONS:
        raise ValueError(f"Invalid vote direction: {direction!r}")

    async with get_async_connection() as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            existing = await _fetch_vote(db, chart_id, voter_id)

            if existing is None:
                await db.execute(
                    """
                    INSERT INTO votes (id, chart_id, voter_id, direction)
                    VALUES (?, ?, ?, ?)
                    """,
                    (str(uuid.uuid4()), chart_id, voter_id, direction),
                )
                action = "created"
            elif existing.direction == direction:
                await db.execute("DELETE FROM votes WHERE id = ?", (existing.id,))
                action = "removed"
            else:
                await db.execute(
                    "UPDATE votes SET direction = ? WHERE id = ?",
                    (direction, existing.id),
                )
                action = "flipped"

            vote = existing if action == "removed" else await _fetch_vote(
                db, chart_id, voter_id
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.debug(
        "🗳️ Vote {} (chart={}, voter={}, direction={})",
        action,
        chart_id,
        voter_id,
        direction,
    )
    return VoteResult(action=action, vote=vote)


async def get_vote_counts(voter_id: Optional[str] = None) -> List[VoteCount]:
    """
    Tally up/down votes for every chart that has at least one vote.

    ``user_vote`` carries *voter_id*'s own direction on each chart.  An
    empty or missing voter id never matches.
    """
    async with get_async_connection() as db:
        cursor = await db.execute(
            """
            SELECT chart_id,
                   SUM(CASE WHEN direction = 'up' THEN 1 ELSE 0 END) AS upvotes,
                   SUM(CASE WHEN direction = 'down' THEN 1 ELSE 0 END) AS downvotes,
                   MAX(CASE WHEN voter_id = ? THEN direction END) AS user_vote
            FROM votes
            GROUP BY chart_id
            ORDER BY chart_id
            """,
            (voter_id or None,),
        )
        rows = await cursor.fetchall()
        return [VoteCount(**row_to_dict(r)) for r in rows]


async def count_votes() -> int:
    """Return the total number of stored votes."""
    async with get_async_connection() as db:
        cursor = await db.execute("SELECT COUNT(*) FROM votes")
        (total,) = await cursor.fetchone()
        return total


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
async def create_user(username: str, password_hash: str) -> Dict[str, Any]:
    """Create an account. Raises ConflictError if the username is taken."""
    user_id = str(uuid.uuid4())
    async with get_async_connection() as db:
        try:
            await db.execute(
                "INSERT INTO users (id, username, password_hash) VALUES (?, ?, ?)",
                (user_id, username, password_hash),
            )
            await db.commit()
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Username already taken: {username}") from e

        cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()

    logger.success(f"✅ User registered (id={user_id}): {username}")
    return row_to_dict(row)


async def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    """Fetch a user by id."""
    async with get_async_connection() as db:
        cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return row_to_dict(row) if row else None


async def get_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    """Fetch a user by username (case-insensitive)."""
    async with get_async_connection() as db:
        cursor = await db.execute(
            "SELECT * FROM users WHERE username = ?", (username,)
        )
        row = await cursor.fetchone()
        return row_to_dict(row) if row else None
