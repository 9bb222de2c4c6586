"""Configuration management for klogs."""

import os
from datetime import datetime
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = "klogs.yaml"
TAIL_UNSPECIFIED = -1


def default_log_path() -> str:
    """Timestamped output directory used when no log path is given."""
    return "logs/" + datetime.now().strftime("%Y-%m-%dT%H:%M")


class RetrievalConfig(BaseModel):
    """Log retrieval settings, as entered by the user."""
    since: str = Field(default="", description="Only return logs newer than a relative duration like 5s, 2m, or 3h")
    tail: int = Field(default=TAIL_UNSPECIFIED, description="Lines of the most recent log to save (-1 = all)")
    follow: bool = Field(default=False, description="Keep streaming logs until interrupted")
    chunk_size: int = Field(default=4096, gt=0, description="Bytes read from a log stream per write")


class KlogsConfig(BaseModel):
    """Main configuration for a log collection run."""

    # Cluster settings
    kubeconfig: Optional[str] = Field(default=None, description="Path to the kubeconfig file (None = KUBECONFIG or ~/.kube/config)")
    namespace: str = Field(default="", description="Namespace to read pods from (empty = current context)")
    connect_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for the API server when opening a log stream")

    # Pod selection
    labels: list[str] = Field(default_factory=list, description="Label selectors, each listed separately")
    pods: list[str] = Field(default_factory=list, description="Explicit pod names")
    all_pods: bool = Field(default=False, description="Collect logs from every ready pod in the namespace")

    # Output settings
    log_path: str = Field(default_factory=default_log_path, description="Directory for collected logs")
    log_level: str = Field(default="INFO", description="Logging level")
    show_progress: bool = Field(default=True, description="Render the live progress tree")

    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_config(config_path: Optional[str] = None) -> KlogsConfig:
    """Load configuration from file and environment variables."""
    if config_path is None:
        config_path = os.getenv("KLOGS_CONFIG", DEFAULT_CONFIG_PATH)

    config_data: dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = {
        "kubeconfig": os.getenv("KUBECONFIG"),
        "namespace": os.getenv("KLOGS_NAMESPACE"),
        "log_path": os.getenv("KLOGS_LOG_PATH"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            config_data[key] = value

    retrieval_overrides = {
        "follow": os.getenv("KLOGS_FOLLOW"),
        "chunk_size": os.getenv("KLOGS_CHUNK_SIZE"),
    }
    for key, value in retrieval_overrides.items():
        if value is not None:
            if key == "follow":
                value = _env_bool(value)
            elif key == "chunk_size":
                value = int(value)
            config_data.setdefault("retrieval", {})[key] = value

    return KlogsConfig(**config_data)


def apply_overrides(config: KlogsConfig, **overrides: Any) -> KlogsConfig:
    """Return a copy of ``config`` with command line values applied.

    ``None`` means "not given on the command line" and leaves the loaded value
    in place. Keys of :class:`RetrievalConfig` are routed to ``retrieval``.
    """
    top: dict[str, Any] = {}
    nested: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key in RetrievalConfig.model_fields:
            nested[key] = value
        elif key in KlogsConfig.model_fields:
            top[key] = value
        else:
            raise KeyError(f"Unknown configuration key: {key}")

    data = config.model_dump()
    data.update(top)
    data["retrieval"].update(nested)
    return KlogsConfig(**data)
