# -----------------------------------------------------------------------------
# INFRASTRUCTURE LAYER
# -----------------------------------------------------------------------------
# Contains low-level infrastructure wrappers:
# - ContainerDriver: docker / buildah command-line facade
# - DockerProvider: Docker SDK reachability probe
# - ClusterDriver: kubectl facade
# - GitProvider: work tree metadata
# - Log: rich console channels
# -----------------------------------------------------------------------------

from .docker_client import ContainerDriver, DockerProvider, ImageConfig
from .git_client import GitError, GitProvider
from .kube_client import ClusterDriver
from .log import Log

__all__ = [
    "ContainerDriver", "DockerProvider", "ImageConfig",
    "GitError", "GitProvider",
    "ClusterDriver",
    "Log",
]
