"""Open container log streams against the cluster log API."""

from __future__ import annotations

import threading

import structlog
import urllib3
from kubernetes.client.rest import ApiException

from ..errors import FetchError
from ..remote_logs.kube_client import ClusterClient, api_error_message
from .options import RetrievalRequest

logger = structlog.get_logger(__name__)


class LogStream:
    """Byte stream over one container's log response.

    ``read`` returns whatever is available up to ``size`` bytes, so follow
    mode sees new lines as soon as the API sends them. ``abort`` may be called
    from another thread to unblock a pending ``read``.
    """

    def __init__(self, response: urllib3.response.HTTPResponse, pod_name: str, container_name: str):
        self._response = response
        self.pod_name = pod_name
        self.container_name = container_name
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means end of data."""
        try:
            return self._response.read1(size)
        except (urllib3.exceptions.HTTPError, OSError, ValueError) as e:
            raise FetchError(self.pod_name, self.container_name, f"log stream read failed: {e}") from e

    def abort(self) -> None:
        """Shut the connection down so a blocked ``read`` returns."""
        try:
            self._response.shutdown()
        except OSError as e:
            logger.debug("Stream shutdown failed", pod=self.pod_name, container=self.container_name, error=str(e))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._response.close()
            self._response.release_conn()
        except (urllib3.exceptions.HTTPError, OSError) as e:
            logger.warning("Failed to close log stream", pod=self.pod_name, container=self.container_name, error=str(e))


class PodLogFetcher:
    """Opens one log stream per (pod, container) in a fixed namespace."""

    def __init__(self, cluster: ClusterClient, namespace: str):
        self.cluster = cluster
        self.namespace = namespace

    def open(self, pod_name: str, container_name: str, request: RetrievalRequest) -> LogStream:
        """Open the log stream of one container.

        Raises:
            FetchError: if the API refuses the request (missing pod or
                container, permission denied) or cannot be reached.
        """
        logger.debug(
            "Opening log stream",
            namespace=self.namespace,
            pod=pod_name,
            container=container_name,
            **request.to_api_kwargs(),
        )
        try:
            response = self.cluster.open_pod_log(self.namespace, pod_name, container_name, request)
        except ApiException as e:
            raise FetchError(pod_name, container_name, api_error_message(e)) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise FetchError(pod_name, container_name, f"connection error: {e}") from e

        return LogStream(response, pod_name, container_name)
