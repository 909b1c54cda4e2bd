import os
from datetime import datetime, timezone
from typing import List

from ..common.config import MIGRATION_DOWNGRADES, MIGRATION_UPGRADES
from ..schemas.database import Migration


def get_migrations(direction: str) -> List[Migration]:
    migrations = []
    migration_path = MIGRATION_UPGRADES if direction == "up" else MIGRATION_DOWNGRADES
    files = sorted(os.listdir(migration_path))
    for file in files:
        if file.endswith(".sql"):
            with open(os.path.join(migration_path, file), "r", encoding="utf-8") as f:
                sql = f.read()
            migrations.append(Migration(name=file, sql=sql))
    return migrations


def get_upgrade_migrations() -> List[Migration]:
    return get_migrations("up")


def get_downgrade_migrations() -> List[Migration]:
    return get_migrations("down")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    """Serialise a datetime as fixed-width UTC ISO-8601.

    Fixed width keeps lexical and chronological order identical, which the
    store relies on for ``next_run <= ?`` style comparisons.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def chunked(items: List[str], size: int) -> List[List[str]]:
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]
