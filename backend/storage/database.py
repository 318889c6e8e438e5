import json
import logging
import time
from typing import Any, Dict, List, Optional

import aiosqlite

from config import settings

logger = logging.getLogger(__name__)

_db_connection: Optional[aiosqlite.Connection] = None


async def get_db() -> aiosqlite.Connection:
    global _db_connection
    if _db_connection is None:
        _db_connection = await aiosqlite.connect(settings.db_path)
        _db_connection.row_factory = aiosqlite.Row
    return _db_connection


async def close_db() -> None:
    global _db_connection
    if _db_connection is not None:
        await _db_connection.close()
        _db_connection = None


async def init_database() -> None:
    db = await get_db()

    await db.execute("""
        CREATE TABLE IF NOT EXISTS blobs (
            path TEXT NOT NULL,
            key TEXT NOT NULL,
            data BLOB NOT NULL,
            created_at REAL NOT NULL,
            PRIMARY KEY (path, key)
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS compose_sessions (
            cache_id TEXT PRIMARY KEY,
            data TEXT NOT NULL,
            updated_at REAL NOT NULL
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS sentmail (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sender TEXT NOT NULL,
            action TEXT NOT NULL,
            message_id TEXT,
            recipient TEXT NOT NULL,
            success BOOLEAN NOT NULL,
            sent_at REAL NOT NULL
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS maillog (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            message_id TEXT NOT NULL,
            recipients TEXT,
            logged_at REAL NOT NULL
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS contacts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source TEXT NOT NULL,
            name TEXT,
            email TEXT NOT NULL,
            created_at REAL NOT NULL,
            UNIQUE (source, email)
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS known_recipients (
            email TEXT PRIMARY KEY,
            certificate TEXT NOT NULL,
            fingerprint TEXT,
            last_seen REAL
        )
    """)

    await db.commit()
    logger.info("Database schema initialized")


# Blobs

async def write_blob(path: str, key: str, data: bytes) -> None:
    db = await get_db()

    await db.execute("""
        INSERT INTO blobs (path, key, data, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(path, key) DO UPDATE SET
            data = excluded.data,
            created_at = excluded.created_at
    """, (path, key, data, time.time()))

    await db.commit()


async def read_blob(path: str, key: str) -> Optional[bytes]:
    db = await get_db()

    cursor = await db.execute(
        "SELECT data FROM blobs WHERE path = ? AND key = ?",
        (path, key)
    )
    row = await cursor.fetchone()
    return bytes(row["data"]) if row else None


async def delete_blob(path: str, key: str) -> bool:
    db = await get_db()

    cursor = await db.execute(
        "DELETE FROM blobs WHERE path = ? AND key = ?",
        (path, key)
    )
    await db.commit()
    return cursor.rowcount > 0


async def rename_blob(path: str, key: str, new_path: str, new_key: str) -> bool:
    db = await get_db()

    cursor = await db.execute("""
        UPDATE OR REPLACE blobs SET path = ?, key = ?
        WHERE path = ? AND key = ?
    """, (new_path, new_key, path, key))
    await db.commit()
    return cursor.rowcount > 0


async def purge_blobs(path: str, older_than: float) -> int:
    db = await get_db()

    cursor = await db.execute(
        "DELETE FROM blobs WHERE path = ? AND created_at < ?",
        (path, older_than)
    )
    await db.commit()
    return cursor.rowcount


# Compose sessions

async def save_compose_session(cache_id: str, data: Dict[str, Any]) -> None:
    db = await get_db()

    await db.execute("""
        INSERT INTO compose_sessions (cache_id, data, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(cache_id) DO UPDATE SET
            data = excluded.data,
            updated_at = excluded.updated_at
    """, (cache_id, json.dumps(data), time.time()))

    await db.commit()


async def load_compose_session(cache_id: str) -> Optional[Dict[str, Any]]:
    db = await get_db()

    cursor = await db.execute(
        "SELECT data FROM compose_sessions WHERE cache_id = ?",
        (cache_id,)
    )
    row = await cursor.fetchone()
    return json.loads(row["data"]) if row else None


async def delete_compose_session(cache_id: str) -> None:
    db = await get_db()

    await db.execute("DELETE FROM compose_sessions WHERE cache_id = ?", (cache_id,))
    await db.commit()


# Delivery history

async def log_sentmail(
    sender: str,
    action: str,
    message_id: str,
    recipients: List[str],
    success: bool,
) -> None:
    db = await get_db()

    now = time.time()
    await db.executemany("""
        INSERT INTO sentmail (sender, action, message_id, recipient, success, sent_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, [(sender, action, message_id, r, success, now) for r in recipients])

    await db.commit()


async def count_sentmail_recipients(sender: str, since: float) -> int:
    db = await get_db()

    cursor = await db.execute("""
        SELECT COUNT(*) AS total FROM sentmail
        WHERE sender = ? AND success = 1 AND sent_at >= ?
    """, (sender, since))
    row = await cursor.fetchone()
    return row["total"]


async def log_maillog(action: str, message_id: str, recipients: str) -> None:
    db = await get_db()

    await db.execute(
        "INSERT INTO maillog (action, message_id, recipients, logged_at) VALUES (?, ?, ?, ?)",
        (action, message_id, recipients, time.time())
    )
    await db.commit()


async def get_maillog(message_id: str) -> List[Dict[str, Any]]:
    db = await get_db()

    cursor = await db.execute(
        "SELECT action, recipients, logged_at FROM maillog WHERE message_id = ? ORDER BY id",
        (message_id,)
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


# Contacts

async def search_contacts(source: str, term: str) -> List[Dict[str, Any]]:
    db = await get_db()

    pattern = f"%{term}%"
    cursor = await db.execute("""
        SELECT name, email FROM contacts
        WHERE source = ? AND (email LIKE ? OR name LIKE ?)
        ORDER BY name
    """, (source, pattern, pattern))
    rows = await cursor.fetchall()
    return [{"name": row["name"], "email": row["email"]} for row in rows]


async def contacts_with_emails(source: str, emails: List[str]) -> List[str]:
    if not emails:
        return []

    db = await get_db()

    placeholders = ", ".join("?" for _ in emails)
    cursor = await db.execute(
        f"SELECT email FROM contacts WHERE source = ? AND lower(email) IN ({placeholders})",
        (source, *[e.lower() for e in emails])
    )
    rows = await cursor.fetchall()
    return [row["email"].lower() for row in rows]


async def import_contact(source: str, name: str, email: str) -> None:
    db = await get_db()

    await db.execute(
        "INSERT INTO contacts (source, name, email, created_at) VALUES (?, ?, ?, ?)",
        (source, name, email, time.time())
    )
    await db.commit()


# Recipient certificates

async def get_recipient_certificate(email: str) -> Optional[str]:
    db = await get_db()

    cursor = await db.execute(
        "SELECT certificate FROM known_recipients WHERE email = ?",
        (email.lower(),)
    )
    row = await cursor.fetchone()
    return row["certificate"] if row else None

