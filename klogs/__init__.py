"""klogs - collect logs from Kubernetes pods, all containers at once."""

__version__ = "0.1.0"
