"""Live progress display: one tree per pod, one byte counter per container.

Reporting is cosmetic. Every public method swallows and logs its own errors
so a broken terminal can never fail or slow down a log transfer.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

import structlog
from rich.console import Console, Group
from rich.live import Live
from rich.text import Text
from rich.tree import Tree

from ..log_collector.models import TaskOutcome, TaskStatus

logger = structlog.get_logger(__name__)

KB = 1024
MB = 1024 * 1024


def format_bytes(count: int) -> str:
    """Human readable size with binary units, truncated (1500 -> "1 KB")."""
    if count < KB:
        return f"{count} B"
    if count < MB:
        return f"{count // KB} KB"
    return f"{count // MB} MB"


@dataclass
class _ContainerRow:
    name: str
    bytes_written: int = 0
    state: str = "waiting"
    detail: str = ""


_STATE_STYLES = {
    "waiting": "dim",
    "streaming": "bold cyan",
    "saved": "green",
    "empty": "yellow",
    "failed": "red",
}


class ProgressReporter:
    """Renders per-container byte counters grouped by pod."""

    def __init__(self, console: Optional[Console] = None, enabled: bool = True, refresh_per_second: float = 4):
        self.console = console or Console()
        self.enabled = enabled
        self.refresh_per_second = refresh_per_second
        self._pods: dict[str, list[_ContainerRow]] = {}
        self._rows: dict[tuple[str, str], _ContainerRow] = {}
        self._lock = threading.Lock()
        self._live: Optional[Live] = None

    def __enter__(self) -> "ProgressReporter":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def add_pod(self, pod_name: str, containers) -> None:
        """Register a pod and its containers before streaming starts."""
        with self._lock:
            rows = self._pods.setdefault(pod_name, [])
            for container in containers:
                if (pod_name, container) in self._rows:
                    continue
                row = _ContainerRow(name=container)
                rows.append(row)
                self._rows[(pod_name, container)] = row

    def start(self) -> None:
        if not self.enabled or self._live is not None:
            return
        try:
            self._live = Live(
                console=self.console,
                get_renderable=self.render,
                refresh_per_second=self.refresh_per_second,
                transient=False,
            )
            self._live.start()
        except Exception as e:
            logger.warning("Progress display unavailable", error=str(e))
            self._live = None

    def stop(self) -> None:
        live, self._live = self._live, None
        if live is None:
            return
        try:
            live.stop()
        except Exception as e:
            logger.warning("Failed to stop progress display", error=str(e))

    def update(self, pod_name: str, container_name: str, bytes_written: int) -> None:
        """Record the running byte count of a stream. Called from worker threads."""
        try:
            with self._lock:
                row = self._rows.get((pod_name, container_name))
                if row is None:
                    return
                row.bytes_written = bytes_written
                row.state = "streaming"
        except Exception as e:
            logger.warning("Progress update failed", pod=pod_name, container=container_name, error=str(e))

    def complete(self, outcome: TaskOutcome) -> None:
        """Mark a stream finished with the state of its outcome."""
        try:
            with self._lock:
                row = self._rows.get((outcome.pod_name, outcome.container_name))
                if row is None:
                    return
                row.bytes_written = outcome.bytes_written
                if outcome.status is TaskStatus.WRITTEN:
                    row.state = "saved"
                elif outcome.status is TaskStatus.EMPTY:
                    row.state = "empty"
                else:
                    row.state = "failed"
                    row.detail = outcome.reason or ""
        except Exception as e:
            logger.warning("Progress update failed", pod=outcome.pod_name, container=outcome.container_name, error=str(e))

    def notice(self, message: str) -> None:
        """Print a one-off line above the live display."""
        if not self.enabled:
            return
        try:
            self.console.print(message)
        except Exception as e:
            logger.warning("Failed to print notice", error=str(e))

    def render(self) -> Group:
        with self._lock:
            trees = []
            for pod_name, rows in self._pods.items():
                tree = Tree(Text.assemble(("[Pod] ", "bold blue"), pod_name))
                for row in rows:
                    tree.add(self._row_text(row))
                trees.append(tree)
        return Group(*trees)

    @staticmethod
    def _row_text(row: _ContainerRow) -> Text:
        text = Text(row.name)
        text.append(f" ({format_bytes(row.bytes_written)})", style="bold" if row.bytes_written else "red")
        text.append(f" {row.state}", style=_STATE_STYLES.get(row.state, ""))
        if row.detail:
            text.append(f": {row.detail}", style="red")
        return text
