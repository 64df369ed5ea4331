"""Session store adapters - Database implementations."""

from .postgres import PostgresSessionStore, run_migrations

__all__ = ["PostgresSessionStore", "run_migrations"]
