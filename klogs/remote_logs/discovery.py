"""Resolve the namespace and the pods whose logs should be collected."""

from typing import Iterable, List, Optional, Sequence

import structlog
from kubernetes import client

from ..errors import ConfigurationError
from ..log_collector.models import PodTarget
from .kube_client import ClusterClient, current_namespace

logger = structlog.get_logger(__name__)


def resolve_namespace(cluster: ClusterClient, namespace: str, kubeconfig: Optional[str] = None) -> str:
    """Return ``namespace`` (or the kubeconfig's current one) after checking it exists.

    Raises:
        ConfigurationError: if the namespace does not exist; the message lists
            the namespaces that do.
    """
    if not namespace:
        namespace = current_namespace(kubeconfig)

    if cluster.get_namespace(namespace) is None:
        available = cluster.list_namespaces()
        logger.warning("Namespace not found", namespace=namespace, available=available)
        raise ConfigurationError(
            f"Namespace {namespace} not found. Available namespaces: {', '.join(available) or 'none'}"
        )

    logger.info("Using namespace", namespace=namespace)
    return namespace


def is_pod_ready(pod: client.V1Pod) -> bool:
    """True when the pod's ``Ready`` condition is ``True``."""
    conditions = (pod.status.conditions if pod.status else None) or []
    return any(c.type == "Ready" and c.status == "True" for c in conditions)


def to_pod_target(pod: client.V1Pod) -> Optional[PodTarget]:
    """Pod target with the pod's (non-init) containers, ``None`` if it has none."""
    containers = [c.name for c in ((pod.spec.containers if pod.spec else None) or [])]
    if not containers:
        logger.warning("Pod has no containers", pod=pod.metadata.name)
        return None
    return PodTarget(pod_name=pod.metadata.name, containers=tuple(containers))


def _targets(pods: Iterable[client.V1Pod]) -> List[PodTarget]:
    targets = []
    seen = set()
    for pod in pods:
        name = pod.metadata.name
        if name in seen:
            continue
        seen.add(name)
        target = to_pod_target(pod)
        if target is not None:
            targets.append(target)
    return targets


def list_ready_pods(cluster: ClusterClient, namespace: str) -> List[client.V1Pod]:
    pods = [pod for pod in cluster.list_pods(namespace) if is_pod_ready(pod)]
    if not pods:
        logger.error("No pods found in namespace", namespace=namespace)
    return pods


def find_pods_by_labels(cluster: ClusterClient, namespace: str, labels: Sequence[str]) -> List[client.V1Pod]:
    """Pods matching any of the label selectors, each pod listed once."""
    pods: List[client.V1Pod] = []
    for label in labels:
        logger.info("Getting pods by label", namespace=namespace, label=label)
        matched = cluster.list_pods(namespace, label_selector=label)
        if not matched:
            logger.error("No pods found with label", namespace=namespace, label=label)
        pods.extend(matched)
    return pods


def discover_targets(
    cluster: ClusterClient,
    namespace: str,
    labels: Sequence[str] = (),
    pod_names: Sequence[str] = (),
    all_pods: bool = False,
) -> List[PodTarget]:
    """Pods to collect, selected by label, by name, or all ready pods.

    Label selection takes precedence, as in the interactive tool; label
    matches are not filtered on readiness. Named pods are picked from the
    ready pods and unknown names are reported and skipped.

    Raises:
        ConfigurationError: when no selection mode is given.
    """
    if labels:
        return _targets(find_pods_by_labels(cluster, namespace, labels))

    if not pod_names and not all_pods:
        raise ConfigurationError("Select pods with --all, --label or --pod")

    ready = list_ready_pods(cluster, namespace)
    if all_pods:
        return _targets(ready)

    by_name = {pod.metadata.name: pod for pod in ready}
    missing = [name for name in pod_names if name not in by_name]
    if missing:
        logger.error("Pods not found or not ready", namespace=namespace, pods=missing)
    return _targets(by_name[name] for name in pod_names if name in by_name)
