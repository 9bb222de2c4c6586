"""Read-only access to the Kubernetes API: namespaces, pods and log streams."""

from .kube_client import ClusterClient, current_namespace
from .discovery import discover_targets, resolve_namespace

__all__ = ["ClusterClient", "current_namespace", "discover_targets", "resolve_namespace"]
