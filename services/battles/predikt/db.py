from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from predikt.config import DATABASE_URL

# The journal is advisory: it remembers what this client submitted so the
# outcome can be reconciled later. It never decides battle status.

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS battle_submission (
      submission_id  INTEGER PRIMARY KEY AUTOINCREMENT,
      action         TEXT NOT NULL,
      battle_id      INTEGER,
      account        TEXT NOT NULL,
      tx_hash        TEXT,
      status         TEXT NOT NULL DEFAULT 'pending',
      error          TEXT,
      created_tms    TEXT NOT NULL DEFAULT (datetime('now')),
      updated_tms    TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
]

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS battle_submission (
      submission_id  BIGSERIAL PRIMARY KEY,
      action         TEXT NOT NULL,
      battle_id      BIGINT,
      account        TEXT NOT NULL,
      tx_hash        TEXT,
      status         TEXT NOT NULL DEFAULT 'pending',
      error          TEXT,
      created_tms    TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_tms    TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
]


# -------------------------------------------------------------------
# Lazy engine/session creation
# -------------------------------------------------------------------

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _get_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine

    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set")

    _engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        future=True,
    )
    return _engine


def _get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is not None:
        return _SessionLocal

    engine = _get_engine()
    ensure_schema(engine)
    _SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
    )
    return _SessionLocal


def ensure_schema(engine: Engine) -> None:
    statements = POSTGRES_SCHEMA if engine.dialect.name == "postgresql" else SCHEMA
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))


# -------------------------------------------------------------------
# Submission journal
# -------------------------------------------------------------------

def _row_to_dict(row) -> Dict[str, Any]:
    m = row._mapping
    return {
        "submission_id": int(m["submission_id"]),
        "action": str(m["action"]),
        "battle_id": int(m["battle_id"]) if m["battle_id"] is not None else None,
        "account": str(m["account"]),
        "tx_hash": m["tx_hash"],
        "status": str(m["status"]),
        "error": m["error"],
        "created_tms": str(m["created_tms"]),
        "updated_tms": str(m["updated_tms"]),
    }


def record_submission(
    db: Session,
    *,
    action: str,
    battle_id: Optional[int],
    account: str,
) -> int:
    """
    Insert a pending row before the transaction is handed to the wallet.
    Returns submission_id.
    """
    row = db.execute(
        text(
            """
            INSERT INTO battle_submission (action, battle_id, account, status)
            VALUES (:action, :battle_id, :account, 'pending')
            RETURNING submission_id
            """
        ),
        {"action": action, "battle_id": battle_id, "account": account.lower()},
    ).fetchone()

    if not row:
        raise RuntimeError("Failed to insert battle_submission")

    db.commit()
    return int(row[0])


def finish_submission(
    db: Session,
    *,
    submission_id: int,
    status: str,
    tx_hash: Optional[str] = None,
    battle_id: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    if status not in ("confirmed", "failed"):
        raise ValueError(f"Invalid final status {status!r}")

    db.execute(
        text(
            """
            UPDATE battle_submission
            SET status = :status,
                tx_hash = COALESCE(:tx_hash, tx_hash),
                battle_id = COALESCE(:battle_id, battle_id),
                error = :error,
                updated_tms = CURRENT_TIMESTAMP
            WHERE submission_id = :id
            """
        ),
        {
            "id": submission_id,
            "status": status,
            "tx_hash": tx_hash,
            "battle_id": battle_id,
            "error": error,
        },
    )
    db.commit()


def list_submissions(db: Session, *, account: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    if account:
        rows = db.execute(
            text(
                """
                SELECT * FROM battle_submission
                WHERE account = :account
                ORDER BY submission_id DESC
                LIMIT :limit
                """
            ),
            {"account": account.lower(), "limit": limit},
        ).fetchall()
    else:
        rows = db.execute(
            text(
                """
                SELECT * FROM battle_submission
                ORDER BY submission_id DESC
                LIMIT :limit
                """
            ),
            {"limit": limit},
        ).fetchall()
    return [_row_to_dict(r) for r in rows]


def pending_submissions(db: Session) -> List[Dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT * FROM battle_submission
            WHERE status = 'pending'
            ORDER BY submission_id ASC
            """
        )
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


class SubmissionJournal:
    """
    Session-per-call wrapper so BattleActions does not hold a Session
    across awaits.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, *, action: str, battle_id: Optional[int], account: str) -> int:
        with self._session_factory() as db:
            return record_submission(db, action=action, battle_id=battle_id, account=account)

    def finish(self, submission_id: int, **kwargs) -> None:
        with self._session_factory() as db:
            finish_submission(db, submission_id=submission_id, **kwargs)

    def list(self, *, account: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            return list_submissions(db, account=account, limit=limit)

    def pending(self) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            return pending_submissions(db)


def get_journal() -> SubmissionJournal:
    return SubmissionJournal(_get_session_factory())
