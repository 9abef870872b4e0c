"""Observability helpers."""

from colsync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_collection_operation,
    record_parser_failure,
    record_watch_event,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_collection_operation",
    "record_parser_failure",
    "record_watch_event",
]
