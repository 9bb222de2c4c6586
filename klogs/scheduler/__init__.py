"""Scheduler module for running log stream tasks concurrently."""

from .task_coordinator import TaskCoordinator, run_retrieval

__all__ = ["TaskCoordinator", "run_retrieval"]
