"""
PostgreSQL session store adapter - Implements SessionStore protocol.

This module provides the PostgreSQL implementation of the domain's
session store port using psycopg3 with raw SQL.

Storage layout
--------------
One key/value row per entry in ``session_store``, scoped by namespace
(one namespace per onboarding flow):

- access_token   bearer token issued at verification
- refresh_token  token used to renew the access token
- user           JSON user record {"id", "name", "email", "role"}

save() writes all three rows in a single transaction; load() returns None
unless all three are present. Driver and pool failures surface as
SessionStorageError.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg
from psycopg_pool import ConnectionPool

from src.domain.exceptions import SessionStorageError
from src.domain.models import Role, Session

logger = logging.getLogger(__name__)

_KEYS = ("access_token", "refresh_token", "user")

# src/adapters/session/postgres.py -> <root>/migrations
MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "migrations"


class PostgresSessionStore:
    """
    Implements SessionStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries.
    """

    def __init__(self, pool: ConnectionPool, namespace: str) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
            namespace: Scope of the stored keys (onboarding flow id)
        """
        self._pool = pool
        self._namespace = namespace

    def save(self, session: Session) -> None:
        """Upsert tokens and the user record atomically."""
        sql = """
            INSERT INTO session_store (namespace, key, value, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (namespace, key) DO UPDATE
            SET value = EXCLUDED.value,
                updated_at = NOW()
        """
        rows = [
            (self._namespace, "access_token", session.access_token),
            (self._namespace, "refresh_token", session.refresh_token),
            (self._namespace, "user", json.dumps(session.user_record())),
        ]

        with self._storage("save"), self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.executemany(sql, rows)
            conn.commit()

    def load(self) -> Session | None:
        """Return the stored session, or None if absent or unreadable."""
        sql = """
            SELECT key, value
            FROM session_store
            WHERE namespace = %s
        """

        with self._storage("load"), self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (self._namespace,))
            values = dict(cursor.fetchall())

        if any(key not in values for key in _KEYS):
            return None

        try:
            user = json.loads(values["user"])
            return Session(
                user_id=user["id"],
                display_name=user["name"],
                email=user["email"],
                role=Role(user["role"]),
                access_token=values["access_token"],
                refresh_token=values["refresh_token"],
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable session record in namespace %s", self._namespace)
            return None

    def clear(self) -> None:
        """Delete every key in this namespace."""
        with self._storage("clear"), self._pool.connection() as conn:
            conn.execute("DELETE FROM session_store WHERE namespace = %s", (self._namespace,))
            conn.commit()

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        try:
            yield
        except psycopg.Error as e:
            logger.error("Session %s failed for namespace %s: %s", action, self._namespace, e)
            raise SessionStorageError() from e


def run_migrations(pool: ConnectionPool, directory: Path = MIGRATIONS_DIR) -> list[str]:
    """
    Create or update the session_store schema.

    Every ``*.sql`` file in directory runs in filename order inside one
    transaction, on every startup, so each file must be idempotent.

    Returns:
        Names of the files applied

    Raises:
        RuntimeError: A file failed; nothing was committed
    """
    scripts = sorted(directory.glob("*.sql")) if directory.is_dir() else []
    if not scripts:
        logger.warning("No session store migrations in %s", directory)
        return []

    applied: list[str] = []
    with pool.connection() as conn:
        for script in scripts:
            try:
                conn.execute(script.read_text())
            except psycopg.Error as e:
                logger.error("Session store migration %s failed: %s", script.name, e)
                raise RuntimeError(f"Session store migration failed: {script.name}") from e
            applied.append(script.name)

    logger.info("Session store schema ready (%s)", ", ".join(applied))
    return applied
