"""Data types passed between discovery, stream tasks and reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .options import RetrievalRequest


def log_file_name(pod_name: str, container_name: str) -> str:
    return f"{pod_name}-{container_name}.log"


@dataclass(frozen=True)
class PodTarget:
    """A pod selected for collection and the containers to read."""

    pod_name: str
    containers: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.containers:
            raise ValueError(f"pod {self.pod_name} has no containers")
        # Accept any sequence from callers, store an immutable tuple.
        object.__setattr__(self, "containers", tuple(self.containers))


@dataclass(frozen=True)
class StreamTask:
    pod_name: str
    container_name: str
    request: RetrievalRequest

    @property
    def key(self) -> str:
        return f"{self.pod_name}/{self.container_name}"


class TaskStatus(str, Enum):
    EMPTY = "empty"
    WRITTEN = "written"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal result of one stream task."""

    pod_name: str
    container_name: str
    status: TaskStatus
    bytes_written: int = 0
    reason: str | None = None
    path: str | None = None

    @property
    def key(self) -> str:
        return f"{self.pod_name}/{self.container_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pod": self.pod_name,
            "container": self.container_name,
            "status": self.status.value,
            "bytes_written": self.bytes_written,
            "reason": self.reason,
            "path": self.path,
        }


@dataclass
class AggregateResult:
    """Outcomes of a retrieval run, in completion order."""

    outcomes: list[TaskOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def any_log_found(self) -> bool:
        return any(o.status is TaskStatus.WRITTEN for o in self.outcomes)

    @property
    def written(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.status is TaskStatus.WRITTEN]

    @property
    def empty(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.status is TaskStatus.EMPTY]

    @property
    def failed(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.status is TaskStatus.FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "any_log_found": self.any_log_found,
            "cancelled": self.cancelled,
            "total": len(self.outcomes),
            "written": len(self.written),
            "empty": len(self.empty),
            "failed": len(self.failed),
            "bytes_written": sum(o.bytes_written for o in self.outcomes),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def build_stream_tasks(pod_targets: list[PodTarget], request: RetrievalRequest) -> list[StreamTask]:
    """One task per (pod, container) pair, in pod then container order.

    A pair listed more than once gets a single task, since both would write
    the same file.
    """
    tasks: list[StreamTask] = []
    seen: set[tuple[str, str]] = set()
    for target in pod_targets:
        for container in target.containers:
            if (target.pod_name, container) in seen:
                continue
            seen.add((target.pod_name, container))
            tasks.append(StreamTask(pod_name=target.pod_name, container_name=container, request=request))
    return tasks
