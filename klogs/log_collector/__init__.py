"""Log collection: request options, stream fetching and disk persistence."""

from .options import RetrievalRequest, parse_duration, resolve_request
from .models import AggregateResult, PodTarget, StreamTask, TaskOutcome, TaskStatus
from .disk_writer import DiskWriter
from .stream_fetcher import LogStream, PodLogFetcher

__all__ = [
    "AggregateResult",
    "DiskWriter",
    "LogStream",
    "PodLogFetcher",
    "PodTarget",
    "RetrievalRequest",
    "StreamTask",
    "TaskOutcome",
    "TaskStatus",
    "parse_duration",
    "resolve_request",
]
