from src.infrastructure.service_requests.in_memory import InMemoryServiceRequestRepository
from src.infrastructure.service_requests.postgres import PostgresServiceRequestRepository
from src.infrastructure.service_requests.sqlite import SqliteServiceRequestRepository

__all__ = [
    "InMemoryServiceRequestRepository",
    "PostgresServiceRequestRepository",
    "SqliteServiceRequestRepository",
]
