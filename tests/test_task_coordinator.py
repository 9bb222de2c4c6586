from __future__ import annotations

import asyncio
import io
import threading
from pathlib import Path

import pytest

from klogs.config import KlogsConfig, RetrievalConfig
from klogs.errors import FetchError
from klogs.log_collector.models import PodTarget, TaskStatus
from klogs.log_collector.options import RetrievalRequest
from klogs.reporting.progress import ProgressReporter
from klogs.scheduler.task_coordinator import TaskCoordinator, run_retrieval


class FakeStream:
    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)
        self.closed = False
        self.aborted = False

    def read(self, size: int) -> bytes:
        return self._buf.read(size)

    def abort(self) -> None:
        self.aborted = True

    def close(self) -> None:
        self.closed = True


class FollowStream(FakeStream):
    """Serves its data, then blocks like a follow-mode stream until aborted."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self._abort = threading.Event()
        self.drained = threading.Event()

    def read(self, size: int) -> bytes:
        chunk = self._buf.read(size)
        if chunk:
            return chunk
        self.drained.set()
        self._abort.wait(timeout=10)
        raise FetchError("pod", "container", "connection aborted")

    def abort(self) -> None:
        self.aborted = True
        self._abort.set()


class FakeFetcher:
    def __init__(self, logs: dict[tuple[str, str], bytes], missing: tuple[str, ...] = (), follow: bool = False) -> None:
        self.logs = logs
        self.missing = missing
        self.follow = follow
        self.calls: list[tuple[str, str, RetrievalRequest]] = []
        self.streams: list[FakeStream] = []
        self._lock = threading.Lock()

    def open(self, pod_name: str, container_name: str, request: RetrievalRequest) -> FakeStream:
        with self._lock:
            self.calls.append((pod_name, container_name, request))
        if container_name in self.missing:
            raise FetchError(pod_name, container_name, f'container "{container_name}" in pod "{pod_name}" not found')
        data = self.logs.get((pod_name, container_name), b"")
        stream = FollowStream(data) if self.follow else FakeStream(data)
        with self._lock:
            self.streams.append(stream)
        return stream


@pytest.mark.asyncio
async def test_mixed_pod_writes_app_and_skips_empty_sidecar(tmp_path: Path) -> None:
    fetcher = FakeFetcher({("web-1", "app"): b"x" * 500, ("web-1", "sidecar"): b""})
    coordinator = TaskCoordinator(fetcher)

    result = await coordinator.run_retrieval(
        [PodTarget("web-1", ("app", "sidecar"))], RetrievalRequest(tail_lines=10), tmp_path
    )

    assert (tmp_path / "web-1-app.log").stat().st_size == 500
    assert not (tmp_path / "web-1-sidecar.log").exists()
    assert result.any_log_found is True
    statuses = {o.container_name: o.status for o in result.outcomes}
    assert statuses == {"app": TaskStatus.WRITTEN, "sidecar": TaskStatus.EMPTY}
    assert all(call[2] == RetrievalRequest(tail_lines=10) for call in fetcher.calls)


@pytest.mark.asyncio
async def test_fetch_failure_is_isolated_to_its_container(tmp_path: Path) -> None:
    fetcher = FakeFetcher({("web-1", "app"): b"hello\n"}, missing=("missing",))
    coordinator = TaskCoordinator(fetcher)

    result = await coordinator.run_retrieval([PodTarget("web-1", ("app", "missing"))], RetrievalRequest(), tmp_path)

    by_container = {o.container_name: o for o in result.outcomes}
    assert by_container["missing"].status is TaskStatus.FAILED
    assert "not found" in (by_container["missing"].reason or "")
    assert by_container["app"].status is TaskStatus.WRITTEN
    assert (tmp_path / "web-1-app.log").read_bytes() == b"hello\n"
    assert result.any_log_found is True


@pytest.mark.asyncio
async def test_one_outcome_per_pod_and_container(tmp_path: Path) -> None:
    pods = [PodTarget(f"web-{i}", ("app", "sidecar", "missing")) for i in range(4)]
    logs = {(f"web-{i}", "app"): b"line\n" * (i + 1) for i in range(4)}
    fetcher = FakeFetcher(logs, missing=("missing",))
    coordinator = TaskCoordinator(fetcher)

    result = await coordinator.run_retrieval(pods, RetrievalRequest(), tmp_path)

    assert len(result.outcomes) == 12
    assert {o.key for o in result.outcomes} == {f"web-{i}/{c}" for i in range(4) for c in ("app", "sidecar", "missing")}
    assert len(result.written) == 4
    assert len(result.empty) == 4
    assert len(result.failed) == 4
    for i in range(4):
        assert (tmp_path / f"web-{i}-app.log").read_bytes() == b"line\n" * (i + 1)
    assert all(stream.closed for stream in fetcher.streams)


@pytest.mark.asyncio
async def test_all_empty_streams_leave_no_output_dir(tmp_path: Path) -> None:
    out = tmp_path / "logs"
    fetcher = FakeFetcher({})
    coordinator = TaskCoordinator(fetcher)

    result = await coordinator.run_retrieval([PodTarget("web-1", ("app",)), PodTarget("web-2", ("app",))], RetrievalRequest(), out)

    assert result.any_log_found is False
    assert len(result.empty) == 2
    assert not out.exists()


@pytest.mark.asyncio
async def test_no_targets_returns_empty_result(tmp_path: Path) -> None:
    result = await TaskCoordinator(FakeFetcher({})).run_retrieval([], RetrievalRequest(), tmp_path)
    assert result.outcomes == []
    assert result.any_log_found is False


@pytest.mark.asyncio
async def test_unexpected_worker_error_becomes_failed_outcome(tmp_path: Path) -> None:
    class ExplodingFetcher(FakeFetcher):
        def open(self, pod_name: str, container_name: str, request: RetrievalRequest) -> FakeStream:
            if container_name == "boom":
                raise RuntimeError("kaboom")
            return super().open(pod_name, container_name, request)

    fetcher = ExplodingFetcher({("web-1", "app"): b"ok"})
    result = await TaskCoordinator(fetcher).run_retrieval([PodTarget("web-1", ("app", "boom"))], RetrievalRequest(), tmp_path)

    by_container = {o.container_name: o for o in result.outcomes}
    assert by_container["boom"].status is TaskStatus.FAILED
    assert "kaboom" in (by_container["boom"].reason or "")
    assert by_container["app"].status is TaskStatus.WRITTEN


@pytest.mark.asyncio
async def test_task_history_records_every_outcome(tmp_path: Path) -> None:
    fetcher = FakeFetcher({("web-1", "app"): b"abc"})
    coordinator = TaskCoordinator(fetcher)

    await coordinator.run_retrieval([PodTarget("web-1", ("app", "sidecar"))], RetrievalRequest(), tmp_path)

    assert coordinator.running_tasks == {}
    assert len(coordinator.task_history) == 2
    status = coordinator.get_task_status("web-1", "app")
    assert status is not None
    assert status["status"] == "written"
    assert status["bytes_written"] == 3
    assert "stream" not in status
    assert coordinator.get_task_status("web-9", "app") is None


@pytest.mark.asyncio
async def test_chunk_size_comes_from_config(tmp_path: Path) -> None:
    seen: list[int] = []

    class RecordingReporter(ProgressReporter):
        def update(self, pod_name: str, container_name: str, bytes_written: int) -> None:
            seen.append(bytes_written)

    config = KlogsConfig(retrieval=RetrievalConfig(chunk_size=10))
    fetcher = FakeFetcher({("web-1", "app"): b"z" * 25})
    coordinator = TaskCoordinator(fetcher, config=config, reporter=RecordingReporter(enabled=False))

    await coordinator.run_retrieval([PodTarget("web-1", ("app",))], RetrievalRequest(), tmp_path)

    assert seen == [1, 11, 21, 25]


@pytest.mark.asyncio
async def test_reporter_sees_final_states(tmp_path: Path) -> None:
    reporter = ProgressReporter(enabled=False)
    fetcher = FakeFetcher({("web-1", "app"): b"data"}, missing=("missing",))

    await run_retrieval([PodTarget("web-1", ("app", "sidecar", "missing"))], RetrievalRequest(), tmp_path, fetcher, reporter=reporter)

    states = {row.name: row.state for row in reporter._pods["web-1"]}
    assert states == {"app": "saved", "sidecar": "empty", "missing": "failed"}


@pytest.mark.asyncio
async def test_cancel_stops_follow_streams_and_keeps_partial_logs(tmp_path: Path) -> None:
    pods = [PodTarget("web-1", ("app", "sidecar")), PodTarget("web-2", ("app",))]
    logs = {("web-1", "app"): b"a1\n", ("web-1", "sidecar"): b"s1\n", ("web-2", "app"): b"a2\n"}
    fetcher = FakeFetcher(logs, follow=True)
    coordinator = TaskCoordinator(fetcher)

    run = asyncio.create_task(coordinator.run_retrieval(pods, RetrievalRequest(follow=True), tmp_path))

    async def all_drained() -> None:
        while len(fetcher.streams) < 3:
            await asyncio.sleep(0.01)
        for stream in fetcher.streams:
            await asyncio.to_thread(stream.drained.wait, 5)

    await asyncio.wait_for(all_drained(), timeout=5)
    assert not run.done()

    coordinator.cancel()
    result = await asyncio.wait_for(run, timeout=5)

    assert result.cancelled is True
    assert len(result.outcomes) == 3
    assert all(o.status is TaskStatus.WRITTEN for o in result.outcomes)
    assert (tmp_path / "web-1-app.log").read_bytes() == b"a1\n"
    assert (tmp_path / "web-1-sidecar.log").read_bytes() == b"s1\n"
    assert (tmp_path / "web-2-app.log").read_bytes() == b"a2\n"
    assert all(stream.aborted and stream.closed for stream in fetcher.streams)


@pytest.mark.asyncio
async def test_cancelled_coordinator_does_not_open_new_streams(tmp_path: Path) -> None:
    fetcher = FakeFetcher({("web-1", "app"): b"data"})
    coordinator = TaskCoordinator(fetcher)
    coordinator.cancel()

    result = await coordinator.run_retrieval([PodTarget("web-1", ("app",))], RetrievalRequest(), tmp_path)

    assert fetcher.calls == []
    assert [o.status for o in result.outcomes] == [TaskStatus.EMPTY]
    assert result.cancelled is True


@pytest.mark.asyncio
async def test_repeated_pod_targets_run_each_container_once(tmp_path: Path) -> None:
    fetcher = FakeFetcher({("web-1", "app"): b"once\n", ("web-1", "sidecar"): b"side\n"})
    coordinator = TaskCoordinator(fetcher)
    pods = [PodTarget("web-1", ("app",)), PodTarget("web-1", ("app", "sidecar")), PodTarget("web-1", ("app",))]

    result = await coordinator.run_retrieval(pods, RetrievalRequest(), tmp_path)

    assert sorted(o.key for o in result.outcomes) == ["web-1/app", "web-1/sidecar"]
    assert sorted((pod, container) for pod, container, _ in fetcher.calls) == [("web-1", "app"), ("web-1", "sidecar")]
    assert len(coordinator.task_history) == 2
    assert (tmp_path / "web-1-app.log").read_bytes() == b"once\n"
