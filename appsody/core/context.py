# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# COMMAND CONTEXT
# -----------------------------------------------------------------------------
# Responsibility: The one object every command receives. It carries the log
# sink, home and project directories, the dry-run flag, the selected
# container engine, and the per-invocation drivers (with their caches).
# -----------------------------------------------------------------------------

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from appsody import __version__
from appsody.core.config import (
    ProjectConfigStore,
    engine_from_env,
    ensure_config,
    load_cli_config,
    repository_file_path,
)
from appsody.domain.models import CliConfig, ContainerEngine
from appsody.infra.docker_client import ContainerDriver
from appsody.infra.kube_client import ClusterDriver
from appsody.infra.log import Log


@dataclass
class Context:
    """Per-invocation state threaded through every operation."""

    log: Log
    cli_config: CliConfig
    config_file: Path
    project_dir: Path
    dry_run: bool = False
    verbose: bool = False
    engine: ContainerEngine = ContainerEngine.DOCKER
    version: str = __version__
    driver: ContainerDriver = field(init=False)
    cluster: ClusterDriver = field(init=False)
    project: ProjectConfigStore = field(init=False)

    def __post_init__(self) -> None:
        self.driver = ContainerDriver(self.log, self.engine, self.dry_run)
        self.cluster = ClusterDriver(self.log, self.dry_run)
        self.project = ProjectConfigStore(self.log, self.project_dir, self.cli_config.images)

    @classmethod
    def create(
        cls,
        config_file: Optional[Path] = None,
        dry_run: bool = False,
        verbose: bool = False,
        project_dir: Optional[Path] = None,
        log: Optional[Log] = None,
    ) -> "Context":
        """Load config, prepare the home directory and open the verbose log."""
        log = log or Log(verbose=verbose)
        cli_config, path = load_cli_config(config_file)
        ctx = cls(
            log=log,
            cli_config=cli_config,
            config_file=path,
            project_dir=Path(project_dir or Path.cwd()),
            dry_run=dry_run,
            verbose=verbose,
            engine=engine_from_env(),
        )
        ensure_config(log, ctx.home, ctx.config_file, dry_run)
        if verbose and not dry_run:
            log.open_file(ctx.home / "logs")
        log.debug(f"Running with command line args: dryrun={dry_run} verbose={verbose}")
        log.debug(f"Using config file {ctx.config_file}")
        return ctx

    def use_engine(self, engine: ContainerEngine) -> None:
        """Switch engines for commands that take --buildah."""
        if engine != self.engine:
            self.engine = engine
            self.driver = ContainerDriver(self.log, engine, self.dry_run)

    @property
    def is_buildah(self) -> bool:
        return self.engine == ContainerEngine.BUILDAH

    @property
    def home(self) -> Path:
        return Path(self.cli_config.home).expanduser()

    @property
    def repository_file(self) -> Path:
        return repository_file_path(self.home)

    @property
    def extract_root(self) -> Path:
        return self.home / "extract"

    @property
    def stacks_dir(self) -> Path:
        return self.home / "stacks" / "dev.local"

    @property
    def deploy_dir(self) -> Path:
        return self.home / "deploy"

    @property
    def controller_path(self) -> Path:
        return self.home / "appsody-controller"
