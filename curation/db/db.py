import sqlite3
import json
import logging
from typing import Iterable, List

from .. import config
from ..models import DURABLE_STATES, CuratedEntry, SourceKind
from ..store import deserialize_entry, serialize_entry

logger = logging.getLogger(__name__)


def init_db(db_path: str = config.DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)  # type: ignore[call-arg]

    # One row per curated entry; position keeps the user's display order
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS curated_entries (
            user_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            external_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            entry_json TEXT NOT NULL,
            updated_at TEXT DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, kind, external_id)
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_curated_entries_order
        ON curated_entries(user_id, kind, position)
        """
    )
    conn.commit()
    return conn


def reset_db(db_path: str = config.DB_PATH) -> None:
    conn = sqlite3.connect(db_path)  # type: ignore[call-arg]
    try:
        conn.execute("DROP TABLE IF EXISTS curated_entries")
        conn.commit()
    finally:
        conn.close()
    conn = init_db(db_path)
    conn.execute("VACUUM")
    conn.commit()
    conn.close()


def save_collection(
    conn: sqlite3.Connection,
    *,
    user_id: str,
    kind: SourceKind,
    entries: Iterable[CuratedEntry],
) -> int:
    """Replace the stored collection for (user, kind). Returns rows written."""
    rows = []
    for entry in entries:
        if entry.lifecycle_state not in DURABLE_STATES:
            logger.debug(f"Not saving {entry.lifecycle_state.value} entry {entry.id}")
            continue
        rows.append((user_id, kind.value, entry.id, len(rows), json.dumps(serialize_entry(entry))))
    with conn:
        conn.execute(
            "DELETE FROM curated_entries WHERE user_id = ? AND kind = ?",
            (user_id, kind.value),
        )
        conn.executemany(
            """
            INSERT INTO curated_entries(user_id, kind, external_id, position, entry_json)
            VALUES(?, ?, ?, ?, ?)
            """,
            rows,
        )
    return len(rows)


def load_collection(conn: sqlite3.Connection, *, user_id: str, kind: SourceKind) -> List[CuratedEntry]:
    cur = conn.execute(
        """
        SELECT external_id, entry_json
          FROM curated_entries
         WHERE user_id = ? AND kind = ?
         ORDER BY position
        """,
        (user_id, kind.value),
    )
    entries: List[CuratedEntry] = []
    for external_id, entry_json in cur.fetchall():
        try:
            data = json.loads(entry_json)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Dropping stored entry {external_id!r}: unreadable JSON")
            continue
        entry = deserialize_entry(data)
        if entry is None:
            continue
        if entry.lifecycle_state not in DURABLE_STATES:
            logger.warning(f"Dropping stored entry {external_id!r}: state {entry.lifecycle_state.value}")
            continue
        if entry.kind != kind:
            logger.warning(f"Dropping stored entry {external_id!r}: kind {entry.kind.value}")
            continue
        entries.append(entry)
    return entries
