"""Kubernetes API access for namespace, pod and log stream lookups.

Only read operations are used: namespaces and pods are listed, container logs
are streamed. Nothing in the cluster is modified.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Optional

import structlog
import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ..errors import ClusterUnavailableError

if TYPE_CHECKING:
    from ..log_collector.options import RetrievalRequest

logger = structlog.get_logger(__name__)

# Seconds to wait for the API server to accept a connection. Log reads have no
# timeout since follow streams may stay idle indefinitely.
DEFAULT_CONNECT_TIMEOUT = 10.0


def api_error_message(error: ApiException) -> str:
    """Best human readable message for an API error (Status.message when present)."""
    body = getattr(error, "body", None)
    if body:
        try:
            status = json.loads(body)
        except (TypeError, ValueError):
            status = None
        if isinstance(status, dict) and status.get("message"):
            return str(status["message"])
    if error.reason:
        return f"{error.status} {error.reason}"
    return str(error)


def current_namespace(kubeconfig: Optional[str] = None) -> str:
    """Namespace of the active kubeconfig context, ``default`` when unset."""
    try:
        _, active_context = config.list_kube_config_contexts(config_file=kubeconfig)
    except (ConfigException, OSError) as e:
        raise ClusterUnavailableError(f"Could not read kubeconfig: {e}") from e

    namespace = ((active_context or {}).get("context") or {}).get("namespace")
    return namespace or "default"


class ClusterClient:
    """Thin wrapper over ``CoreV1Api`` with the calls klogs needs."""

    def __init__(self, core_api: client.CoreV1Api, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.core_api = core_api
        self.connect_timeout = connect_timeout

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Optional[str] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> ClusterClient:
        """Build a client from a kubeconfig file.

        Args:
            kubeconfig: Path to the kubeconfig; ``None`` uses ``KUBECONFIG``
                or ``~/.kube/config``.
            connect_timeout: Connect timeout in seconds for log streams.

        Raises:
            ClusterUnavailableError: if the kubeconfig cannot be loaded.
        """
        try:
            api_client = config.new_client_from_config(config_file=kubeconfig)
        except (ConfigException, OSError) as e:
            logger.error("Failed to load kubeconfig", kubeconfig=kubeconfig, error=str(e))
            raise ClusterUnavailableError(f"Could not load kubeconfig: {e}") from e

        logger.debug("Cluster client configured", host=api_client.configuration.host)
        return cls(client.CoreV1Api(api_client), connect_timeout=connect_timeout)

    def _call(self, description: str, func, *args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except ApiException:
            raise
        except (urllib3.exceptions.HTTPError, OSError) as e:
            logger.error("Cluster API unreachable", call=description, error=str(e))
            raise ClusterUnavailableError(f"{description} failed: {e}") from e

    def get_namespace(self, name: str) -> Optional[client.V1Namespace]:
        """Return the namespace object, or ``None`` if it does not exist."""
        try:
            return self._call("get namespace", self.core_api.read_namespace, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterUnavailableError(f"Could not read namespace {name}: {api_error_message(e)}") from e

    def list_namespaces(self) -> list[str]:
        try:
            namespaces = self._call("list namespaces", self.core_api.list_namespace)
        except ApiException as e:
            raise ClusterUnavailableError(f"Could not list namespaces: {api_error_message(e)}") from e
        return [ns.metadata.name for ns in namespaces.items]

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> list[client.V1Pod]:
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            pods = self._call("list pods", self.core_api.list_namespaced_pod, namespace, **kwargs)
        except ApiException as e:
            raise ClusterUnavailableError(
                f"Error getting pods in namespace {namespace}: {api_error_message(e)}"
            ) from e
        return list(pods.items)

    def open_pod_log(
        self,
        namespace: str,
        pod_name: str,
        container_name: str,
        request: RetrievalRequest,
    ) -> urllib3.response.HTTPResponse:
        """Open a raw log stream for one container.

        API and transport errors propagate unchanged; callers tag them with
        the pod and container.
        """
        return self.core_api.read_namespaced_pod_log(
            name=pod_name,
            namespace=namespace,
            container=container_name,
            _preload_content=False,
            _request_timeout=(self.connect_timeout, None),
            **request.to_api_kwargs(),
        )
