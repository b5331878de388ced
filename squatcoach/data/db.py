from __future__ import annotations
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

_DB_PATH = Path("./squatcoach.db")

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  started_at REAL NOT NULL,
  stopped_at REAL,
  target_reps INTEGER,
  correct INTEGER NOT NULL DEFAULT 0,
  incorrect INTEGER NOT NULL DEFAULT 0,
  outcome TEXT
);

CREATE TABLE IF NOT EXISTS reps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  rep_index INTEGER NOT NULL,
  t REAL NOT NULL,
  outcome TEXT NOT NULL,
  fault TEXT,
  knee_deg REAL,
  hip_deg REAL,
  ankle_deg REAL,
  FOREIGN KEY(session_id) REFERENCES sessions(id)
);
"""

_conn: Optional[sqlite3.Connection] = None
_lock = threading.Lock()

def configure(path: str | Path):
    """Point the module at another database file (closes any open connection)."""
    global _DB_PATH
    close()
    _DB_PATH = Path(path)


def close():
    global _conn
    if _conn is not None:
        _conn.close()
        _conn = None


def get_conn() -> sqlite3.Connection:
    global _conn
    if _conn is None:
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _conn = sqlite3.connect(_DB_PATH.as_posix(), check_same_thread=False)
        _conn.row_factory = sqlite3.Row
        _conn.execute("PRAGMA foreign_keys=ON;")
        _conn.executescript(SCHEMA)
        _conn.commit()
    return _conn

# Session-level writes

def insert_session(session_id: str, started_at: float, target_reps: Optional[int]):
    with _lock:
        conn = get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO sessions (id, started_at, target_reps) VALUES (?,?,?)",
            (session_id, started_at, target_reps),
        )
        conn.commit()


def stop_session(session_id: str, stopped_at: float, correct: int, incorrect: int, outcome: Optional[str]):
    with _lock:
        conn = get_conn()
        conn.execute(
            "UPDATE sessions SET stopped_at=?, correct=?, incorrect=?, outcome=? WHERE id=?",
            (stopped_at, correct, incorrect, outcome, session_id),
        )
        conn.commit()

# Rep writes

def insert_rep(
    session_id: str,
    rep_index: int,
    t: float,
    outcome: str,
    fault: Optional[str],
    knee_deg: float,
    hip_deg: float,
    ankle_deg: float,
):
    with _lock:
        conn = get_conn()
        conn.execute(
            """
            INSERT INTO reps (session_id, rep_index, t, outcome, fault, knee_deg, hip_deg, ankle_deg)
            VALUES (?,?,?,?,?,?,?,?)
            """,
            (session_id, rep_index, t, outcome, fault, knee_deg, hip_deg, ankle_deg),
        )
        if outcome == "correct":
            conn.execute("UPDATE sessions SET correct = correct + 1 WHERE id=?", (session_id,))
        else:
            conn.execute("UPDATE sessions SET incorrect = incorrect + 1 WHERE id=?", (session_id,))
        conn.commit()

# Reads

def get_session(session_id: str) -> Optional[dict]:
    with _lock:
        row = get_conn().execute("SELECT * FROM sessions WHERE id=?", (session_id,)).fetchone()
    return dict(row) if row else None


def list_reps(session_id: str) -> List[dict]:
    with _lock:
        rows = get_conn().execute(
            "SELECT rep_index, t, outcome, fault, knee_deg, hip_deg, ankle_deg FROM reps "
            "WHERE session_id=? ORDER BY rep_index",
            (session_id,),
        ).fetchall()
    return [dict(r) for r in rows]
