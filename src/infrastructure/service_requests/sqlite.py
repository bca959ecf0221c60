import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Iterator, Optional

from src.core.service_requests.errors import ConcurrencyConflictError, PersistenceError
from src.core.service_requests.models import (
    ActionRecordData,
    ArtisanRefusalRecord,
    BillingEstimateRecord,
    ServiceRequestRecord,
    ServiceRequestStatus,
    ServiceRequestTransitionWrite,
    StatusHistoryRecord,
)
from src.core.service_requests.repository import ServiceRequestRepository
from src.infrastructure.service_requests.rows import (
    ACTION_COLUMNS,
    BILLING_ESTIMATE_COLUMNS,
    REFUSAL_COLUMNS,
    SERVICE_REQUEST_COLUMNS,
    STATUS_HISTORY_COLUMNS,
    action_params,
    estimate_params,
    refusal_params,
    service_request_params,
    status_history_params,
    to_action,
    to_estimate,
    to_refusal,
    to_service_request,
    to_status_history,
)


class SqliteServiceRequestRepository(ServiceRequestRepository):
    def __init__(self, *, database_path: str) -> None:
        self._lock = Lock()
        self._database_path = database_path
        self._init_db()

    def get_service_request(self, *, service_request_id: str) -> Optional[ServiceRequestRecord]:
        query = f"""
            SELECT {SERVICE_REQUEST_COLUMNS}
            FROM service_requests
            WHERE service_request_id = ?
        """
        with self._connection() as connection:
            row = connection.execute(query, (service_request_id,)).fetchone()
        return to_service_request(row)

    def list_service_requests(
        self,
        *,
        status: Optional[ServiceRequestStatus],
        client_id: Optional[str],
        assigned_artisan_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ServiceRequestRecord], Optional[str]]:
        filters: list[str] = []
        args: list[object] = []
        if status is not None:
            filters.append("status = ?")
            args.append(status)
        if client_id is not None:
            filters.append("client_id = ?")
            args.append(client_id)
        if assigned_artisan_id is not None:
            filters.append("assigned_artisan_id = ?")
            args.append(assigned_artisan_id)
        where_clause = f"WHERE {' AND '.join(filters)}" if filters else ""
        query = f"""
            SELECT {SERVICE_REQUEST_COLUMNS}
            FROM service_requests
            {where_clause}
            ORDER BY created_at DESC, service_request_id DESC
        """
        with self._connection() as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        records = [to_service_request(row) for row in rows]
        if cursor:
            row_ids = [record.service_request_id for record in records]
            if cursor in row_ids:
                records = records[row_ids.index(cursor) + 1 :]
        page = records[:limit]
        next_cursor = page[-1].service_request_id if len(records) > limit else None
        return page, next_cursor

    def get_estimate(self, *, estimate_id: str) -> Optional[BillingEstimateRecord]:
        query = f"""
            SELECT {BILLING_ESTIMATE_COLUMNS}
            FROM billing_estimates
            WHERE estimate_id = ?
        """
        with self._connection() as connection:
            row = connection.execute(query, (estimate_id,)).fetchone()
        return to_estimate(row)

    def list_estimates(self, *, service_request_id: str) -> list[BillingEstimateRecord]:
        query = f"""
            SELECT {BILLING_ESTIMATE_COLUMNS}
            FROM billing_estimates
            WHERE service_request_id = ?
            ORDER BY rowid ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_estimate(row) for row in rows]

    def list_lapsed_pending_estimates(self, *, now: datetime) -> list[BillingEstimateRecord]:
        query = f"""
            SELECT {BILLING_ESTIMATE_COLUMNS}
            FROM billing_estimates
            WHERE status = 'pending' AND valid_until IS NOT NULL
            ORDER BY valid_until ASC, estimate_id ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query).fetchall()
        estimates = [to_estimate(row) for row in rows]
        return [estimate for estimate in estimates if estimate.valid_until < now]

    def list_status_history(self, *, service_request_id: str) -> list[StatusHistoryRecord]:
        query = f"""
            SELECT {STATUS_HISTORY_COLUMNS}
            FROM service_request_status_history
            WHERE service_request_id = ?
            ORDER BY rowid ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_status_history(row) for row in rows]

    def list_actions(self, *, service_request_id: str) -> list[ActionRecordData]:
        query = f"""
            SELECT {ACTION_COLUMNS}
            FROM service_request_actions
            WHERE service_request_id = ?
            ORDER BY rowid ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_action(row) for row in rows]

    def list_refusals(self, *, service_request_id: str) -> list[ArtisanRefusalRecord]:
        query = f"""
            SELECT {REFUSAL_COLUMNS}
            FROM artisan_refusals
            WHERE service_request_id = ?
            ORDER BY rowid ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_refusal(row) for row in rows]

    def has_refusal(self, *, service_request_id: str, artisan_id: str) -> bool:
        query = """
            SELECT artisan_id
            FROM artisan_refusals
            WHERE service_request_id = ? AND artisan_id = ?
        """
        with self._connection() as connection:
            row = connection.execute(query, (service_request_id, artisan_id)).fetchone()
        return row is not None

    def commit_transition(self, write: ServiceRequestTransitionWrite) -> None:
        with self._lock, self._connection() as connection:
            try:
                connection.execute("BEGIN IMMEDIATE")
                self._write_service_request(connection=connection, write=write)
                if write.estimate is not None:
                    self._write_estimate(connection=connection, write=write)
                if write.status_history is not None:
                    connection.execute(
                        f"""
                        INSERT INTO service_request_status_history ({STATUS_HISTORY_COLUMNS})
                        VALUES (?, ?, ?, ?)
                        """,
                        status_history_params(write.status_history),
                    )
                for action in write.actions:
                    connection.execute(
                        f"""
                        INSERT INTO service_request_actions ({ACTION_COLUMNS})
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        action_params(action),
                    )
                if write.refusal is not None:
                    connection.execute(
                        f"""
                        INSERT INTO artisan_refusals ({REFUSAL_COLUMNS})
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT (artisan_id, service_request_id) DO NOTHING
                        """,
                        refusal_params(write.refusal),
                    )
                connection.execute("COMMIT")
            except ConcurrencyConflictError:
                connection.execute("ROLLBACK")
                raise
            except sqlite3.Error:
                if connection.in_transaction:
                    connection.execute("ROLLBACK")
                raise

    def _write_service_request(self, *, connection, write: ServiceRequestTransitionWrite) -> None:
        record = write.service_request
        if write.expected_row_version is None:
            cursor = connection.execute(
                f"""
                INSERT INTO service_requests ({SERVICE_REQUEST_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (service_request_id) DO NOTHING
                """,
                service_request_params(record),
            )
        else:
            cursor = connection.execute(
                """
                UPDATE service_requests SET
                    client_id = ?,
                    assigned_artisan_id = ?,
                    status = ?,
                    service_type = ?,
                    title = ?,
                    description = ?,
                    estimated_price = ?,
                    down_payment_reference = ?,
                    created_at = ?,
                    updated_at = ?,
                    row_version = ?
                WHERE service_request_id = ? AND row_version = ?
                """,
                service_request_params(record)[1:]
                + (record.service_request_id, write.expected_row_version),
            )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(record.service_request_id)

    def _write_estimate(self, *, connection, write: ServiceRequestTransitionWrite) -> None:
        estimate = write.estimate
        if write.expected_estimate_row_version is None:
            cursor = connection.execute(
                f"""
                INSERT INTO billing_estimates ({BILLING_ESTIMATE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                estimate_params(estimate),
            )
        else:
            cursor = connection.execute(
                """
                UPDATE billing_estimates SET
                    service_request_id = ?,
                    author_id = ?,
                    estimated_price = ?,
                    description = ?,
                    valid_until = ?,
                    status = ?,
                    revision_number = ?,
                    client_accepted = ?,
                    artisan_accepted = ?,
                    client_response_date = ?,
                    artisan_response_date = ?,
                    client_response = ?,
                    artisan_rejection_reason = ?,
                    rejected_by_artisan_id = ?,
                    rejected_at = ?,
                    created_at = ?,
                    updated_at = ?,
                    row_version = ?
                WHERE estimate_id = ? AND row_version = ?
                """,
                estimate_params(estimate)[1:]
                + (estimate.estimate_id, write.expected_estimate_row_version),
            )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(estimate.estimate_id)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(self._connect()) as connection:
                yield connection
        except sqlite3.Error as exc:
            raise PersistenceError(
                "SERVICE_REQUEST_PERSISTENCE_FAILED", type(exc).__name__
            ) from exc

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, timeout=30, isolation_level=None)
        connection.row_factory = sqlite3.Row
        return connection

    def _init_db(self) -> None:
        Path(self._database_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS service_requests (
                    service_request_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    assigned_artisan_id TEXT NULL,
                    status TEXT NOT NULL,
                    service_type TEXT NOT NULL,
                    title TEXT NULL,
                    description TEXT NULL,
                    estimated_price TEXT NULL,
                    down_payment_reference TEXT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    row_version INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS billing_estimates (
                    estimate_id TEXT PRIMARY KEY,
                    service_request_id TEXT NOT NULL,
                    author_id TEXT NOT NULL,
                    estimated_price TEXT NOT NULL,
                    description TEXT NOT NULL,
                    valid_until TEXT NULL,
                    status TEXT NOT NULL,
                    revision_number INTEGER NOT NULL,
                    client_accepted INTEGER NULL,
                    artisan_accepted INTEGER NULL,
                    client_response_date TEXT NULL,
                    artisan_response_date TEXT NULL,
                    client_response TEXT NULL,
                    artisan_rejection_reason TEXT NULL,
                    rejected_by_artisan_id TEXT NULL,
                    rejected_at TEXT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    row_version INTEGER NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS uq_billing_estimates_one_pending
                ON billing_estimates (service_request_id)
                WHERE status = 'pending';

                CREATE TABLE IF NOT EXISTS service_request_status_history (
                    history_id TEXT PRIMARY KEY,
                    service_request_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS service_request_actions (
                    action_id TEXT PRIMARY KEY,
                    service_request_id TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    actor_type TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    estimate_id TEXT NULL,
                    dispute_reason TEXT NULL,
                    dispute_details TEXT NULL,
                    completion_notes TEXT NULL,
                    additional_data_json TEXT NOT NULL,
                    occurred_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS artisan_refusals (
                    artisan_id TEXT NOT NULL,
                    service_request_id TEXT NOT NULL,
                    source TEXT NOT NULL,
                    refused_at TEXT NOT NULL,
                    PRIMARY KEY (artisan_id, service_request_id)
                );
                """
            )
