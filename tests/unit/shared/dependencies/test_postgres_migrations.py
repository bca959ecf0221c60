from pathlib import Path

import pytest

import src.infrastructure.postgres_migrations as migrations_module
from src.infrastructure.postgres_migrations import (
    PostgresMigration,
    _migration_lock_key,
    _split_statements,
    apply_postgres_migrations,
    pending_postgres_migrations,
)


class _FakeCursor:
    def __init__(self, rows=None):
        self._rows = rows or []

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self):
        self.ledger: dict[str, tuple[str, str]] = {}
        self.applied_statements: list[str] = []
        self.commit_count = 0
        self.rollback_count = 0
        self.lock_calls: list[int] = []
        self.unlock_calls: list[int] = []

    def execute(self, query, args=None):
        sql = " ".join(str(query).split())
        if sql == "SELECT pg_advisory_lock(%s::bigint)":
            self.lock_calls.append(int(args[0]))
            return _FakeCursor()
        if sql == "SELECT pg_advisory_unlock(%s::bigint)":
            self.unlock_calls.append(int(args[0]))
            return _FakeCursor()
        if sql.startswith("CREATE TABLE IF NOT EXISTS schema_migrations"):
            return _FakeCursor()
        if "FROM schema_migrations" in sql:
            rows = [
                {"version": version, "checksum": checksum}
                for version, (namespace, checksum) in self.ledger.items()
                if namespace == args[0]
            ]
            return _FakeCursor(rows=sorted(rows, key=lambda row: row["version"]))
        if "INSERT INTO schema_migrations" in sql:
            self.ledger[args[0]] = (args[1], args[2])
            return _FakeCursor()
        self.applied_statements.append(sql)
        return _FakeCursor()

    def commit(self):
        self.commit_count += 1

    def rollback(self):
        self.rollback_count += 1


def test_apply_postgres_migrations_is_forward_only_and_idempotent():
    connection = _FakeConnection()

    applied = apply_postgres_migrations(connection=connection, namespace="service_requests")
    first_count = len(connection.applied_statements)
    assert applied == ["0001"]
    assert first_count > 0
    assert "service_requests:0001" in connection.ledger
    assert connection.commit_count == 1
    assert connection.lock_calls == [_migration_lock_key(namespace="service_requests")]
    assert connection.unlock_calls == [_migration_lock_key(namespace="service_requests")]

    assert apply_postgres_migrations(connection=connection, namespace="service_requests") == []
    assert len(connection.applied_statements) == first_count
    assert connection.commit_count == 2


def test_service_request_migration_creates_lifecycle_tables():
    connection = _FakeConnection()

    apply_postgres_migrations(connection=connection, namespace="service_requests")

    created = " ".join(connection.applied_statements)
    for table in (
        "service_requests",
        "billing_estimates",
        "service_request_status_history",
        "service_request_actions",
        "artisan_refusals",
    ):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in created


def test_pending_postgres_migrations_lists_unapplied_versions():
    connection = _FakeConnection()

    assert pending_postgres_migrations(connection=connection, namespace="service_requests") == [
        "0001"
    ]
    apply_postgres_migrations(connection=connection, namespace="service_requests")
    assert pending_postgres_migrations(connection=connection, namespace="service_requests") == []


def test_apply_postgres_migrations_detects_checksum_mismatch(monkeypatch, tmp_path: Path):
    sql_path = tmp_path / "0001_test.sql"
    sql_path.write_text("CREATE TABLE IF NOT EXISTS sample_table (id TEXT PRIMARY KEY);")
    migration = PostgresMigration(version="0001", sql_path=sql_path, checksum="checksum-new")
    monkeypatch.setattr(migrations_module, "_load_migrations", lambda namespace: [migration])

    connection = _FakeConnection()
    connection.ledger["custom:0001"] = ("custom", "checksum-old")

    with pytest.raises(RuntimeError) as exc:
        apply_postgres_migrations(connection=connection, namespace="custom")
    assert str(exc.value) == "POSTGRES_MIGRATION_CHECKSUM_MISMATCH:custom:0001"
    assert connection.rollback_count == 1
    assert connection.unlock_calls == [_migration_lock_key(namespace="custom")]


def test_unknown_namespace_is_rejected():
    with pytest.raises(RuntimeError) as exc:
        apply_postgres_migrations(connection=_FakeConnection(), namespace="missing")
    assert str(exc.value) == "POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:missing"


def test_split_statements_drops_blank_fragments():
    assert _split_statements("CREATE TABLE a (id TEXT);\n\n CREATE INDEX b ON a (id);\n") == [
        "CREATE TABLE a (id TEXT)",
        "CREATE INDEX b ON a (id)",
    ]


def test_migration_lock_key_is_stable_and_namespace_scoped():
    assert _migration_lock_key(namespace="service_requests") == _migration_lock_key(
        namespace="service_requests"
    )
    assert _migration_lock_key(namespace="service_requests") != _migration_lock_key(
        namespace="other"
    )
