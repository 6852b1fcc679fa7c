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
# CONFIG STORE
# -----------------------------------------------------------------------------
# Responsibility: Read and write the two YAML configuration documents:
# - <home>/.appsody.yaml: global CLI settings
# - <projectDir>/.appsody-config.yaml: the project manifest
#
# Global settings can be overridden per key with APPSODY_<KEY> environment
# variables. First use creates the home directory layout and a default
# repository registry.
# -----------------------------------------------------------------------------

import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from appsody.core.names import (
    convert_to_valid_project_name,
    normalize_image_name,
    override_stack_registry,
    validate_label_value,
    validate_project_name,
)
from appsody.domain.errors import IndexSchemaError, NotAnAppsodyProject, UserInputError
from appsody.domain.models import (
    EXPERIMENTAL_REPO_NAME,
    EXPERIMENTAL_REPO_URL,
    INCUBATOR_REPO_NAME,
    INCUBATOR_REPO_URL,
    CliConfig,
    ContainerEngine,
    ProjectConfig,
    RepositoryEntry,
    RepositoryFile,
)
from appsody.infra.log import Log

CONFIG_FILE_NAME = ".appsody.yaml"
PROJECT_CONFIG_FILE = ".appsody-config.yaml"
REPOSITORY_DIR = "repository"
REPOSITORY_FILE = "repository.yaml"
ENV_PREFIX = "APPSODY_"

VERSION_CHECK_FORMAT = "%Y-%m-%d %H:%M:%S %z"
VERSION_CHECK_INTERVAL = timedelta(hours=24)

NOT_A_PROJECT_MESSAGE = (
    "The current directory is not a valid appsody project. Run `appsody init <stack>` "
    "to create one. Run `appsody list` to see the available stacks."
)


def read_yaml(path: Path) -> dict:
    """
    Load a YAML mapping from path; an empty file yields {}.

    Raises:
        IndexSchemaError: If the document does not parse or is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise IndexSchemaError(f"Failed to parse {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise IndexSchemaError(f"Failed to parse {path}: expected a mapping")
    return data


def write_yaml(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def default_home() -> Path:
    override = os.environ.get(ENV_PREFIX + "HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".appsody"


def engine_from_env() -> ContainerEngine:
    """APPSODY_K8S_EXPERIMENTAL=TRUE selects buildah for every command."""
    if os.environ.get("APPSODY_K8S_EXPERIMENTAL", "").strip().upper() == "TRUE":
        return ContainerEngine.BUILDAH
    return ContainerEngine.DOCKER


def load_cli_config(config_file: Optional[Path] = None) -> tuple[CliConfig, Path]:
    """
    Load the global config, applying defaults, env overrides and repairs.

    Returns:
        The config and the path it was (or would be) read from.
    """
    home = default_home()
    path = Path(config_file) if config_file else home / CONFIG_FILE_NAME
    data: dict = {}
    if path.is_file():
        data = read_yaml(path)

    for key in CliConfig.model_fields:
        value = os.environ.get(ENV_PREFIX + key.upper())
        if value:
            data[key] = value

    data.setdefault("home", str(home))
    if not data.get("images"):
        data["images"] = "docker.io"
    if data["images"] == "index.docker.io":
        data["images"] = "docker.io"

    try:
        config = CliConfig.model_validate(data)
    except ValidationError as e:
        raise IndexSchemaError(f"Failed to parse {path}: {e}")
    if config_file is None and Path(config.home).expanduser() != home:
        path = Path(config.home).expanduser() / CONFIG_FILE_NAME
    return config, path


def save_cli_config(path: Path, config: CliConfig) -> None:
    data = {key: value for key, value in config.model_dump().items() if value not in ("", None)}
    write_yaml(path, data)


def repository_file_path(home: Path) -> Path:
    return home / REPOSITORY_DIR / REPOSITORY_FILE


def default_repository_file() -> RepositoryFile:
    return RepositoryFile(
        repositories=[
            RepositoryEntry(name=INCUBATOR_REPO_NAME, url=INCUBATOR_REPO_URL, is_default=True),
            RepositoryEntry(name=EXPERIMENTAL_REPO_NAME, url=EXPERIMENTAL_REPO_URL),
        ]
    )


def ensure_config(log: Log, home: Path, config_file: Path, dry_run: bool = False) -> None:
    """
    Create <home>, <home>/repository, a default repository.yaml and an empty
    global config on first use.
    """
    repo_file = repository_file_path(home)
    for directory in (home, repo_file.parent):
        if not directory.is_dir():
            if dry_run:
                log.info(f"Dry Run - Skipping create of directory {directory}")
                continue
            log.debug(f"Creating {directory}")
            directory.mkdir(parents=True, exist_ok=True)

    if not repo_file.exists():
        if dry_run:
            log.info(f"Dry Run - Skipping creation of {INCUBATOR_REPO_NAME} repo: {INCUBATOR_REPO_URL}")
        else:
            log.debug(f"Creating {repo_file}")
            write_yaml(repo_file, default_repository_file().to_yaml_dict())

    if not config_file.exists():
        if dry_run:
            log.info(f"Dry Run - Skip creation of default config file {config_file}")
        else:
            log.debug(f"Creating {config_file}")
            config_file.parent.mkdir(parents=True, exist_ok=True)
            config_file.write_text("", encoding="utf-8")


def needs_version_check(last_check: str, now: Optional[datetime] = None) -> bool:
    """True when last_check is unparseable or older than 24 hours."""
    now = now or datetime.now().astimezone()
    try:
        last = datetime.strptime(last_check, VERSION_CHECK_FORMAT)
    except (TypeError, ValueError):
        return True
    return now - last > VERSION_CHECK_INTERVAL


def update_message(current: str, latest: str, platform: str) -> str:
    if platform == "darwin":
        how = "Please run `brew upgrade appsody` to upgrade"
    else:
        how = (
            "Please go to https://appsody.dev/docs/getting-started/installation#upgrading-appsody "
            "and upgrade"
        )
    return f"\n*\n*\n*\n\nA new CLI update is available.\n{how} from {current} --> {latest}.\n\n*\n*\n*\n"


class ProjectConfigStore:
    """
    Access to a project's .appsody-config.yaml.

    Loaded lazily and cached; writes go straight back to disk and refresh
    the cache.
    """

    def __init__(self, log: Log, project_dir: Path, default_registry: str = "docker.io") -> None:
        self.log = log
        self.project_dir = Path(project_dir)
        self.default_registry = default_registry or "docker.io"
        self._config: Optional[ProjectConfig] = None

    @property
    def path(self) -> Path:
        return self.project_dir / PROJECT_CONFIG_FILE

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ProjectConfig:
        """
        Raises:
            NotAnAppsodyProject: If the project has no .appsody-config.yaml.
            IndexSchemaError: If the file does not decode.
        """
        if self._config is not None:
            return self._config
        if not self.exists():
            raise NotAnAppsodyProject(NOT_A_PROJECT_MESSAGE)
        self.log.debug(f"Project config file set to: {self.path}")
        try:
            self._config = ProjectConfig.model_validate(read_yaml(self.path))
        except ValidationError as e:
            raise IndexSchemaError(f"Error reading project config {e}")
        return self._config

    def _update(self, key: str, value: str) -> None:
        data = read_yaml(self.path)
        data[key] = value
        write_yaml(self.path, data)
        self._config = None

    def stack_image(self) -> str:
        """The stack image with an explicit registry."""
        stack = self.load().stack
        if len(stack.split("/")) < 3:
            stack = f"{self.default_registry}/{stack}"
        return normalize_image_name(stack)

    def project_name(self) -> str:
        """
        Return project-name, deriving and saving one from the directory when
        the config does not carry it.
        """
        config = self.load()
        if config.project_name:
            validate_project_name(config.project_name)
            return config.project_name
        name = convert_to_valid_project_name(str(self.project_dir.resolve()))
        self.save_project_name(name)
        return name

    def save_project_name(self, name: str) -> None:
        validate_project_name(name)
        self.load()
        self._update("project-name", name)
        self.log.info(f"Your Appsody project name has been set to {name}")

    def save_application_name(self, name: str) -> None:
        try:
            validate_label_value(name)
        except UserInputError as e:
            raise UserInputError(f"Invalid application-name. {e}")
        self.load()
        self._update("application-name", name)
        self.log.info(f"Your Appsody application name has been set to {name}")

    def set_stack_registry(self, registry: str) -> str:
        """
        Point the stack image at another registry host.

        Raises:
            UserInputError: If registry is not host[:port] or the image
                cannot take an override.
        """
        image = normalize_image_name(override_stack_registry(registry, self.load().stack))
        self._update("stack", image)
        self.log.info(f"Your Appsody project stack has been set to {image}")
        return image
