"""Exception hierarchy for klogs."""


class KlogsError(Exception):
    """Base class for all klogs errors."""


class ConfigurationError(KlogsError):
    """Invalid user configuration. Raised before any log stream is opened."""


class ClusterUnavailableError(KlogsError):
    """The cluster API could not be configured or reached."""


class TaskError(KlogsError):
    """An error scoped to a single (pod, container) log task."""

    def __init__(self, pod_name: str, container_name: str, reason: str):
        self.pod_name = pod_name
        self.container_name = container_name
        self.reason = reason
        super().__init__(f"{pod_name}/{container_name}: {reason}")


class FetchError(TaskError):
    """Opening or reading a container log stream failed."""


class WriteError(TaskError):
    """Creating or writing the local log file failed."""
