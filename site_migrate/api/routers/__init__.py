"""API routers."""

from . import chunks, health, history, lock, migrations, snapshots

__all__ = ["chunks", "health", "history", "lock", "migrations", "snapshots"]
