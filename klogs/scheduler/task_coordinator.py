"""Fan-out of log stream tasks across every selected pod and container."""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config import KlogsConfig
from ..errors import FetchError
from ..log_collector.disk_writer import DiskWriter
from ..log_collector.models import (
    AggregateResult,
    PodTarget,
    StreamTask,
    TaskOutcome,
    TaskStatus,
    build_stream_tasks,
)
from ..log_collector.options import RetrievalRequest
from ..log_collector.stream_fetcher import LogStream, PodLogFetcher
from ..reporting.progress import ProgressReporter

logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 1000


class TaskCoordinator:
    """Runs one fetch-and-write pipeline per container, all concurrently.

    Each pipeline gets its own worker thread because log reads block, and
    follow-mode streams block indefinitely. Outcomes are collected in
    completion order; a failing container never affects its siblings.
    """

    def __init__(
        self,
        fetcher: PodLogFetcher,
        config: Optional[KlogsConfig] = None,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.fetcher = fetcher
        self.config = config or KlogsConfig()
        self.reporter = reporter or ProgressReporter(enabled=False)

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self.running_tasks: Dict[str, Dict[str, Any]] = {}
        self.task_history: List[Dict[str, Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def cancel(self) -> None:
        """Stop every stream; safe to call from a signal handler or another thread."""
        if self._stop_event.is_set():
            return
        logger.info("Stopping log streams", running=len(self.running_tasks))
        self._stop_event.set()
        with self._lock:
            streams = [info["stream"] for info in self.running_tasks.values() if info.get("stream") is not None]
        for stream in streams:
            stream.abort()

    async def run_retrieval(
        self,
        pod_targets: List[PodTarget],
        request: RetrievalRequest,
        output_dir: str | Path,
    ) -> AggregateResult:
        """Collect the logs of every container of ``pod_targets`` into ``output_dir``.

        Returns once every task has an outcome. In follow mode that is when
        all streams were closed remotely or :meth:`cancel` was called.
        """
        tasks = build_stream_tasks(pod_targets, request)
        result = AggregateResult()
        if not tasks:
            logger.warning("No containers to collect logs from")
            return result

        writer = DiskWriter(output_dir, chunk_size=self.config.retrieval.chunk_size)
        for target in pod_targets:
            self.reporter.add_pod(target.pod_name, target.containers)

        logger.info(
            "Starting log collection",
            pods=len(pod_targets),
            containers=len(tasks),
            output_dir=str(output_dir),
            follow=request.follow,
        )

        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="klogs-stream")
        try:
            futures = [loop.run_in_executor(executor, self._run_task, task, writer) for task in tasks]
            if request.follow:
                self.reporter.notice("Press [green]Ctrl+C[/green] to stop streaming logs.")
            try:
                for fut in asyncio.as_completed(futures):
                    outcome = await fut
                    result.outcomes.append(outcome)
            except asyncio.CancelledError:
                # Unblock the workers so the executor can shut down.
                self.cancel()
                raise
        finally:
            executor.shutdown(wait=True)

        result.cancelled = self.cancelled
        logger.info(
            "Log collection finished",
            written=len(result.written),
            empty=len(result.empty),
            failed=len(result.failed),
            cancelled=result.cancelled,
        )
        return result

    def _run_task(self, task: StreamTask, writer: DiskWriter) -> TaskOutcome:
        """Open, copy and close one container log. Runs in a worker thread."""
        self._start_task(task)
        try:
            outcome = self._fetch_and_write(task, writer)
        except Exception as e:
            logger.exception("Unexpected error in log task", pod=task.pod_name, container=task.container_name)
            outcome = TaskOutcome(task.pod_name, task.container_name, TaskStatus.FAILED, reason=f"unexpected error: {e}")

        self._complete_task(task, outcome)
        self.reporter.complete(outcome)
        return outcome

    def _fetch_and_write(self, task: StreamTask, writer: DiskWriter) -> TaskOutcome:
        if self._stop_event.is_set():
            return TaskOutcome(task.pod_name, task.container_name, TaskStatus.EMPTY)

        try:
            stream = self.fetcher.open(task.pod_name, task.container_name, task.request)
        except FetchError as e:
            logger.error("Error getting logs", pod=task.pod_name, container=task.container_name, error=e.reason)
            return TaskOutcome(task.pod_name, task.container_name, TaskStatus.FAILED, reason=e.reason)

        self._attach_stream(task, stream)
        return writer.consume(
            stream,
            task.pod_name,
            task.container_name,
            on_progress=partial(self.reporter.update, task.pod_name, task.container_name),
            stop_event=self._stop_event,
        )

    def _start_task(self, task: StreamTask) -> None:
        with self._lock:
            self.running_tasks[task.key] = {
                "pod": task.pod_name,
                "container": task.container_name,
                "start_time": datetime.now(timezone.utc),
                "status": "running",
                "stream": None,
            }

    def _attach_stream(self, task: StreamTask, stream: LogStream) -> None:
        with self._lock:
            info = self.running_tasks.get(task.key)
            if info is not None:
                info["stream"] = stream
        # cancel() may have run between open() and registration.
        if self._stop_event.is_set():
            stream.abort()

    def _complete_task(self, task: StreamTask, outcome: TaskOutcome) -> None:
        """Mark a task as complete and add to history."""
        with self._lock:
            task_info = self.running_tasks.pop(task.key, None)
            if task_info is None:
                return
            task_info.pop("stream", None)
            task_info["end_time"] = datetime.now(timezone.utc)
            task_info["duration"] = (task_info["end_time"] - task_info["start_time"]).total_seconds()
            task_info["status"] = outcome.status.value
            task_info.update(outcome.to_dict())

            self.task_history.append(task_info)
            if len(self.task_history) > HISTORY_LIMIT:
                self.task_history = self.task_history[-HISTORY_LIMIT:]

    def get_task_status(self, pod_name: str, container_name: str) -> Optional[Dict[str, Any]]:
        """Get status of a specific task."""
        key = f"{pod_name}/{container_name}"
        with self._lock:
            if key in self.running_tasks:
                return dict(self.running_tasks[key])
            for task in reversed(self.task_history):
                if task.get("pod") == pod_name and task.get("container") == container_name:
                    return task
        return None


async def run_retrieval(
    pod_targets: List[PodTarget],
    request: RetrievalRequest,
    output_dir: str | Path,
    fetcher: PodLogFetcher,
    config: Optional[KlogsConfig] = None,
    reporter: Optional[ProgressReporter] = None,
) -> AggregateResult:
    """Run a one-off retrieval with a fresh :class:`TaskCoordinator`."""
    coordinator = TaskCoordinator(fetcher, config=config, reporter=reporter)
    return await coordinator.run_retrieval(pod_targets, request, output_dir)
