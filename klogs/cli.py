"""Command line entry point: collect pod logs into a local directory.

Usage:
    klogs -a                              # every ready pod in the current namespace
    klogs -n shop -l app=web -t 500       # pods matching a label, last 500 lines
    klogs --pod web-1 --pod web-2 -s 1h   # named pods, last hour
    klogs -a -f                           # stream until Ctrl+C
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

import structlog
import yaml
from pydantic import ValidationError
from rich.console import Console

from . import __version__
from .config import KlogsConfig, apply_overrides, load_config
from .errors import ClusterUnavailableError, ConfigurationError
from .log_collector.models import AggregateResult, PodTarget, log_file_name
from .log_collector.options import RetrievalRequest, resolve_request
from .log_collector.stream_fetcher import PodLogFetcher
from .remote_logs.discovery import discover_targets, resolve_namespace
from .remote_logs.kube_client import ClusterClient
from .reporting.progress import ProgressReporter, format_bytes
from .scheduler.task_coordinator import TaskCoordinator

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def configure_logging(level: str) -> None:
    """Structured logs on stderr; stdout is left to the progress display."""
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    # The kubernetes client logs through the stdlib logger.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="klogs",
        description="Get logs from Pods, super fast! Collects every container of the selected pods at once.",
    )
    parser.add_argument("-n", "--namespace", help="Select namespace (default: current kubeconfig context)")
    parser.add_argument("-l", "--label", action="append", dest="labels", help="Select pods by label (repeatable)")
    parser.add_argument("--pod", action="append", dest="pods", help="Select a pod by name (repeatable)")
    parser.add_argument("-a", "--all", action="store_true", dest="all_pods", default=None,
                        help="Get logs for all ready pods in the namespace")
    parser.add_argument("-p", "--logpath", dest="log_path", help="Custom log path (default: logs/<timestamp>)")
    parser.add_argument("--kubeconfig", help="Absolute path to the kubeconfig file")
    parser.add_argument("-s", "--since",
                        help="Only return logs newer than a relative duration like 5s, 2m, or 3h. Defaults to all logs.")
    parser.add_argument("-t", "--tail", type=int, help="Lines of the most recent log to save (default: all)")
    parser.add_argument("-f", "--follow", action="store_true", default=None, help="Stream logs until interrupted")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--log-level", help="Logging level (INFO, WARNING, ...)")
    parser.add_argument("--no-progress", action="store_false", dest="show_progress", default=None,
                        help="Disable the live progress display")
    parser.add_argument("--json", action="store_true", dest="json_summary",
                        help="Print a JSON summary of every container on stdout")
    parser.add_argument("--version", action="version", version=f"klogs {__version__}")
    return parser


def build_config(args: argparse.Namespace) -> KlogsConfig:
    """Layer command line values over file and environment configuration."""
    config = load_config(args.config)
    return apply_overrides(
        config,
        kubeconfig=args.kubeconfig,
        namespace=args.namespace,
        labels=args.labels,
        pods=args.pods,
        all_pods=args.all_pods,
        log_path=args.log_path,
        log_level=args.log_level,
        show_progress=args.show_progress,
        since=args.since,
        tail=args.tail,
        follow=args.follow,
    )


def exit_code(result: AggregateResult) -> int:
    """0 if anything was saved or every stream was empty, 1 if nothing saved and something failed."""
    if not result.outcomes:
        return EXIT_FAILURE
    if result.any_log_found:
        return EXIT_OK
    return EXIT_FAILURE if result.failed else EXIT_OK


def print_summary(console: Console, result: AggregateResult, log_path: str) -> None:
    for outcome in result.failed:
        console.print(
            f"[red]Error getting logs for container {outcome.container_name} "
            f"of pod {outcome.pod_name}:[/red] {outcome.reason}"
        )
    for outcome in result.empty:
        console.print(f"[yellow]Empty logs for {log_file_name(outcome.pod_name, outcome.container_name)}[/yellow]")

    console.print(
        f"Containers: {len(result.outcomes)}  saved: {len(result.written)}  "
        f"empty: {len(result.empty)}  failed: {len(result.failed)}  "
        f"({format_bytes(sum(o.bytes_written for o in result.outcomes))})"
    )
    if result.any_log_found:
        console.print(f"Logs saved to [green]{log_path}[/green]")


def handle_interrupt(coordinator: TaskCoordinator) -> None:
    """First Ctrl+C stops the streams; a second one exits right away.

    A worker still waiting on the API server to open its stream has nothing
    to abort, and the coordinator waits for every worker before returning.
    """
    if not coordinator.cancelled:
        coordinator.cancel()
        return

    logger.warning("Interrupted again, exiting without waiting for pending requests")
    coordinator.reporter.stop()
    os._exit(EXIT_INTERRUPTED)


async def collect(
    coordinator: TaskCoordinator,
    targets: list[PodTarget],
    request: RetrievalRequest,
    output_dir: str,
) -> AggregateResult:
    """Run the coordinator with Ctrl+C wired to a clean cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle_interrupt, coordinator)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        with coordinator.reporter:
            return await coordinator.run_retrieval(targets, request, output_dir)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    # With --json, stdout carries only the summary document.
    console = Console(stderr=args.json_summary)

    try:
        config = build_config(args)
    except (ValidationError, yaml.YAMLError, OSError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        return EXIT_CONFIG

    configure_logging(config.log_level)
    console.print(f"[bold blue]K[/bold blue][bold]Logs[/bold] version {__version__}")

    try:
        request = resolve_request(config.retrieval.since, config.retrieval.tail, config.retrieval.follow)
        cluster = ClusterClient.from_kubeconfig(config.kubeconfig, connect_timeout=config.connect_timeout)
        namespace = resolve_namespace(cluster, config.namespace, config.kubeconfig)
        console.print(f"Using namespace: [green]{namespace}[/green]")
        targets = discover_targets(
            cluster,
            namespace,
            labels=config.labels,
            pod_names=config.pods,
            all_pods=config.all_pods,
        )
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        return EXIT_CONFIG
    except ClusterUnavailableError as e:
        console.print(f"[red]Cluster unavailable:[/red] {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED

    if not targets:
        console.print("[red]No pods selected[/red]")
        return EXIT_FAILURE

    reporter = ProgressReporter(console=console, enabled=config.show_progress)
    coordinator = TaskCoordinator(PodLogFetcher(cluster, namespace), config=config, reporter=reporter)

    try:
        result = asyncio.run(collect(coordinator, targets, request, config.log_path))
    except KeyboardInterrupt:
        logger.warning("Interrupted before all streams were closed")
        return EXIT_INTERRUPTED

    print_summary(console, result, str(Path(config.log_path)))
    if args.json_summary:
        print(json.dumps(result.to_dict(), indent=2))
    return exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
