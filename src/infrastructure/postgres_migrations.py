from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).with_name("postgres_migrations")


@dataclass(frozen=True)
class PostgresMigration:
    version: str
    sql_path: Path
    checksum: str


def apply_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    """Apply forward-only migrations for a namespace under an advisory lock.

    Returns the versions applied by this call.
    """
    lock_key = _migration_lock_key(namespace=namespace)
    connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
    try:
        applied_now = _apply_locked(connection=connection, namespace=namespace)
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))
    return applied_now


def pending_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    _ensure_ledger(connection)
    applied = _applied_checksums(connection=connection, namespace=namespace)
    pending: list[str] = []
    for migration in _load_migrations(namespace=namespace):
        _check_checksum(namespace=namespace, migration=migration, applied=applied)
        if migration.version not in applied:
            pending.append(migration.version)
    return pending


def _apply_locked(*, connection: Any, namespace: str) -> list[str]:
    _ensure_ledger(connection)
    applied = _applied_checksums(connection=connection, namespace=namespace)
    applied_now: list[str] = []
    for migration in _load_migrations(namespace=namespace):
        _check_checksum(namespace=namespace, migration=migration, applied=applied)
        if migration.version in applied:
            continue
        for statement in _split_statements(migration.sql_path.read_text(encoding="utf-8")):
            connection.execute(statement)
        connection.execute(
            """
            INSERT INTO schema_migrations (
                version,
                namespace,
                checksum,
                applied_at
            ) VALUES (%s, %s, %s, %s)
            """,
            (
                f"{namespace}:{migration.version}",
                namespace,
                migration.checksum,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        applied_now.append(migration.version)
        logger.info(
            "postgres.migration.applied",
            extra={"extra_fields": {"namespace": namespace, "version": migration.version}},
        )
    connection.commit()
    return applied_now


def _ensure_ledger(connection: Any) -> None:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            namespace TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
        """
    )


def _applied_checksums(*, connection: Any, namespace: str) -> dict[str, str]:
    rows = connection.execute(
        """
        SELECT version, checksum
        FROM schema_migrations
        WHERE namespace = %s
        ORDER BY version ASC
        """,
        (namespace,),
    ).fetchall()
    prefix = f"{namespace}:"
    applied: dict[str, str] = {}
    for row in rows:
        version = str(row["version"]).removeprefix(prefix)
        checksum = str(row["checksum"])
        if applied.get(version, checksum) != checksum:
            raise RuntimeError(f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{version}")
        applied[version] = checksum
    return applied


def _check_checksum(
    *, namespace: str, migration: PostgresMigration, applied: dict[str, str]
) -> None:
    existing = applied.get(migration.version)
    if existing is not None and existing != migration.checksum:
        raise RuntimeError(
            f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{migration.version}"
        )


def _split_statements(sql: str) -> list[str]:
    # migration files never use semicolons inside a statement
    return [statement.strip() for statement in sql.split(";") if statement.strip()]


def _load_migrations(*, namespace: str) -> list[PostgresMigration]:
    namespace_path = MIGRATIONS_ROOT / namespace
    if not namespace_path.exists():
        raise RuntimeError(f"POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:{namespace}")
    migrations: list[PostgresMigration] = []
    for sql_path in sorted(namespace_path.glob("*.sql")):
        sql = sql_path.read_text(encoding="utf-8")
        migrations.append(
            PostgresMigration(
                version=sql_path.stem.split("_", maxsplit=1)[0],
                sql_path=sql_path,
                checksum=hashlib.sha256(sql.encode("utf-8")).hexdigest(),
            )
        )
    return migrations


def _migration_lock_key(*, namespace: str) -> int:
    digest = hashlib.sha256(namespace.encode("utf-8")).digest()[:8]
    return int.from_bytes(digest, byteorder="big", signed=True)
