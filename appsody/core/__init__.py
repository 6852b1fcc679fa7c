# -----------------------------------------------------------------------------
# CORE LAYER
# -----------------------------------------------------------------------------
# The business logic of the CLI, one module per concern:
# - config / context: global and project configuration, per-run state
# - repository: repository.yaml and stack index resolution
# - installer: template laydown and init scripts
# - devloop: run / debug / test containers
# - pipeline / deploy / operator: extract, build, deploy
# - lint / toolkit / validate: stack authoring
# -----------------------------------------------------------------------------

from .context import Context
from .repository import RepositoryRegistry, ResolvedStack

__all__ = ["Context", "RepositoryRegistry", "ResolvedStack"]
