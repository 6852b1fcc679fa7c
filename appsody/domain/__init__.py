# -----------------------------------------------------------------------------
# DOMAIN LAYER
# -----------------------------------------------------------------------------
# Contains the YAML document models (Pydantic) and the error taxonomy shared
# by the infrastructure and core layers.
# -----------------------------------------------------------------------------

from .errors import AppsodyError, IndexErrors
from .models import (
    AppsodyApplication,
    CliConfig,
    ContainerEngine,
    DevMode,
    IndexStack,
    ProjectConfig,
    PullPolicy,
    RepositoryEntry,
    RepositoryFile,
    RepositoryIndex,
    StackYaml,
)

__all__ = [
    "AppsodyError", "IndexErrors",
    "AppsodyApplication", "CliConfig", "ContainerEngine", "DevMode", "IndexStack",
    "ProjectConfig", "PullPolicy", "RepositoryEntry", "RepositoryFile",
    "RepositoryIndex", "StackYaml",
]
