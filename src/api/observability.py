import json
import logging
import os
import time
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[str]], ...] = (
    ("correlation_id", correlation_id_var),
    ("request_id", request_id_var),
    ("trace_id", trace_id_var),
    ("actor_id", actor_id_var),
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, enriched with the current request context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", "artisan-service-lifecycle"),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field, var in _CONTEXT_FIELDS:
            payload[field] = var.get() or None
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(
            {key: value for key, value in payload.items() if value is not None}, default=str
        )


def trace_id_from_traceparent(traceparent: str) -> str | None:
    parts = traceparent.split("-")
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return None


def _configure_json_logging() -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


def _bind_request_context(request: Request) -> dict[str, str]:
    headers = request.headers
    return {
        "correlation_id": headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}",
        "request_id": headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}",
        "trace_id": trace_id_from_traceparent(headers.get("traceparent", "")) or uuid4().hex,
        "actor_id": headers.get("X-Actor-Id", "").strip(),
    }


def setup_observability(app: FastAPI) -> None:
    _configure_json_logging()
    Instrumentator().instrument(app).expose(app)
    access_logger = logging.getLogger("http.access")

    @app.middleware("http")
    async def _request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        context = _bind_request_context(request)
        tokens: list[tuple[ContextVar[str], Token[str]]] = [
            (var, var.set(context[field])) for field, var in _CONTEXT_FIELDS
        ]
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            access_logger.info(
                "request.completed",
                extra={
                    "extra_fields": {
                        "http_method": request.method,
                        "endpoint": request.url.path,
                        "status_code": status_code,
                        "actor_role": request.headers.get("X-Actor-Role"),
                        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                    }
                },
            )
            for var, token in reversed(tokens):
                var.reset(token)

        response.headers["X-Correlation-Id"] = context["correlation_id"]
        response.headers["X-Request-Id"] = context["request_id"]
        response.headers["X-Trace-Id"] = context["trace_id"]
        response.headers["traceparent"] = f"00-{context['trace_id']}-0000000000000001-01"
        return response
