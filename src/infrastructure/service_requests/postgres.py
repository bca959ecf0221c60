from contextlib import closing, contextmanager
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Iterator, Optional

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
from src.infrastructure.postgres_migrations import apply_postgres_migrations
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


class PostgresServiceRequestRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("SERVICE_REQUEST_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("SERVICE_REQUEST_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def get_service_request(self, *, service_request_id: str) -> Optional[ServiceRequestRecord]:
        query = f"""
            SELECT {SERVICE_REQUEST_COLUMNS}
            FROM service_requests
            WHERE service_request_id = %s
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
            filters.append("status = %s")
            args.append(status)
        if client_id is not None:
            filters.append("client_id = %s")
            args.append(client_id)
        if assigned_artisan_id is not None:
            filters.append("assigned_artisan_id = %s")
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
            WHERE estimate_id = %s
        """
        with self._connection() as connection:
            row = connection.execute(query, (estimate_id,)).fetchone()
        return to_estimate(row)

    def list_estimates(self, *, service_request_id: str) -> list[BillingEstimateRecord]:
        query = f"""
            SELECT {BILLING_ESTIMATE_COLUMNS}
            FROM billing_estimates
            WHERE service_request_id = %s
            ORDER BY estimate_seq ASC
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
            WHERE service_request_id = %s
            ORDER BY history_seq ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_status_history(row) for row in rows]

    def list_actions(self, *, service_request_id: str) -> list[ActionRecordData]:
        query = f"""
            SELECT {ACTION_COLUMNS}
            FROM service_request_actions
            WHERE service_request_id = %s
            ORDER BY action_seq ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_action(row) for row in rows]

    def list_refusals(self, *, service_request_id: str) -> list[ArtisanRefusalRecord]:
        query = f"""
            SELECT {REFUSAL_COLUMNS}
            FROM artisan_refusals
            WHERE service_request_id = %s
            ORDER BY refused_at ASC, artisan_id ASC
        """
        with self._connection() as connection:
            rows = connection.execute(query, (service_request_id,)).fetchall()
        return [to_refusal(row) for row in rows]

    def has_refusal(self, *, service_request_id: str, artisan_id: str) -> bool:
        query = """
            SELECT artisan_id
            FROM artisan_refusals
            WHERE service_request_id = %s AND artisan_id = %s
        """
        with self._connection() as connection:
            row = connection.execute(query, (service_request_id, artisan_id)).fetchone()
        return row is not None

    def commit_transition(self, write: ServiceRequestTransitionWrite) -> None:
        psycopg, _ = _import_psycopg()
        with self._connection() as connection:
            try:
                self._write_service_request(connection=connection, write=write)
                if write.estimate is not None:
                    self._write_estimate(connection=connection, write=write)
                if write.status_history is not None:
                    connection.execute(
                        f"""
                        INSERT INTO service_request_status_history ({STATUS_HISTORY_COLUMNS})
                        VALUES (%s, %s, %s, %s)
                        """,
                        status_history_params(write.status_history),
                    )
                for action in write.actions:
                    connection.execute(
                        f"""
                        INSERT INTO service_request_actions ({ACTION_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        action_params(action),
                    )
                if write.refusal is not None:
                    connection.execute(
                        f"""
                        INSERT INTO artisan_refusals ({REFUSAL_COLUMNS})
                        VALUES (%s, %s, %s, %s)
                        ON CONFLICT (artisan_id, service_request_id) DO NOTHING
                        """,
                        refusal_params(write.refusal),
                    )
                connection.commit()
            except ConcurrencyConflictError:
                connection.rollback()
                raise
            except psycopg.Error:
                connection.rollback()
                raise

    def _write_service_request(self, *, connection, write: ServiceRequestTransitionWrite) -> None:
        record = write.service_request
        if write.expected_row_version is None:
            cursor = connection.execute(
                f"""
                INSERT INTO service_requests ({SERVICE_REQUEST_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (service_request_id) DO NOTHING
                """,
                service_request_params(record),
            )
        else:
            cursor = connection.execute(
                """
                UPDATE service_requests SET
                    client_id = %s,
                    assigned_artisan_id = %s,
                    status = %s,
                    service_type = %s,
                    title = %s,
                    description = %s,
                    estimated_price = %s,
                    down_payment_reference = %s,
                    created_at = %s,
                    updated_at = %s,
                    row_version = %s
                WHERE service_request_id = %s AND row_version = %s
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
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT DO NOTHING
                """,
                estimate_params(estimate),
            )
        else:
            cursor = connection.execute(
                """
                UPDATE billing_estimates SET
                    service_request_id = %s,
                    author_id = %s,
                    estimated_price = %s,
                    description = %s,
                    valid_until = %s,
                    status = %s,
                    revision_number = %s,
                    client_accepted = %s,
                    artisan_accepted = %s,
                    client_response_date = %s,
                    artisan_response_date = %s,
                    client_response = %s,
                    artisan_rejection_reason = %s,
                    rejected_by_artisan_id = %s,
                    rejected_at = %s,
                    created_at = %s,
                    updated_at = %s,
                    row_version = %s
                WHERE estimate_id = %s AND row_version = %s
                """,
                estimate_params(estimate)[1:]
                + (estimate.estimate_id, write.expected_estimate_row_version),
            )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(estimate.estimate_id)

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        psycopg, _ = _import_psycopg()
        try:
            with closing(self._connect()) as connection:
                yield connection
        except psycopg.Error as exc:
            raise PersistenceError(
                "SERVICE_REQUEST_PERSISTENCE_FAILED", type(exc).__name__
            ) from exc

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="service_requests")


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row
