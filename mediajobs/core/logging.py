"""structlog setup for the service.

Two identifiers travel with log entries: the HTTP request id, held in a
context variable set by the request middleware, and the job id, bound to
structlog's contextvars while a worker processes that job. Both are
task-local, so concurrent requests and jobs never see each other's ids.
"""

import contextvars
import logging
import sys
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog

REQUEST_ID_PREFIX = "req_"

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def add_request_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor: copy the current request id into the entry."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Route structlog through stdlib logging on stdout.

    ``log_format`` is ``"json"`` for one JSON object per line, anything
    else for the human-readable console renderer.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_id,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """Use ``request_id`` for this request, or generate one. Returns the id in effect."""
    if not request_id:
        request_id = f"{REQUEST_ID_PREFIX}{uuid4().hex[:12]}"
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


def bind_job_context(job_id: str) -> None:
    """Attach job_id to every log entry emitted by the current task."""
    structlog.contextvars.bind_contextvars(job_id=job_id)


def clear_job_context() -> None:
    structlog.contextvars.unbind_contextvars("job_id")
