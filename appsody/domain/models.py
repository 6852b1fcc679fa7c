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
# DOMAIN MODELS - STACKS, REPOSITORIES, PROJECTS
# -----------------------------------------------------------------------------
# Pydantic models for every YAML document the CLI reads or writes:
# - repository.yaml (the user's registry of named indices)
# - <repo>-index.yaml (what a repository offers)
# - stack.yaml (a stack author's source metadata)
# - .appsody-config.yaml / .appsody.yaml (project and global config)
# - app-deploy.yaml (the AppsodyApplication custom resource)
#
# YAML keys use dashes or camelCase; Python attributes use snake_case and
# the original key is kept as the alias. Dump with by_alias=True.
# -----------------------------------------------------------------------------

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_INDEX_API_VERSION = "v2"

INCUBATOR_REPO_NAME = "incubator"
INCUBATOR_REPO_URL = "https://github.com/appsody/stacks/releases/latest/download/incubator-index.yaml"
EXPERIMENTAL_REPO_NAME = "experimental"
EXPERIMENTAL_REPO_URL = (
    "https://github.com/appsody/stacks/releases/latest/download/experimental-index.yaml"
)
DEV_LOCAL_REPO_NAME = "dev.local"


def _stringify_timestamp(value: Any) -> Any:
    # yaml.safe_load turns ISO timestamps into datetime objects
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ContainerEngine(str, Enum):
    """The container engine binary the CLI drives."""

    DOCKER = "docker"
    BUILDAH = "buildah"


class PullPolicy(str, Enum):
    """When to contact the registry for a stack image."""

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"


class DevMode(str, Enum):
    """Modes understood by the in-container controller."""

    RUN = "run"
    DEBUG = "debug"
    TEST = "test"


class _YamlModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_yaml_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Maintainer(_YamlModel):
    name: str = ""
    email: str = ""
    github_id: str = Field("", alias="github-id")


class Requirements(_YamlModel):
    """Minimum tool versions a stack needs, as semver range expressions."""

    docker_version: Optional[str] = Field(None, alias="docker-version")
    appsody_version: Optional[str] = Field(None, alias="appsody-version")
    buildah_version: Optional[str] = Field(None, alias="buildah-version")


class Deprecation(_YamlModel):
    date: Optional[str] = None
    message: str = ""

    normalize_date = field_validator("date", mode="before")(_stringify_timestamp)


class Template(_YamlModel):
    id: str
    url: str
    default: Optional[bool] = None


class IndexStack(_YamlModel):
    """One stack entry in a repository index."""

    id: str
    name: str = ""
    version: str = ""
    description: str = ""
    license: str = ""
    language: str = ""
    maintainers: list[Maintainer] = Field(default_factory=list)
    default_template: Optional[str] = Field(None, alias="default-template")
    templates: list[Template] = Field(default_factory=list)
    requirements: Optional[Requirements] = None
    image: Optional[str] = None
    src: Optional[str] = None
    deprecated: Optional[Deprecation] = None
    # v1 indices carry archive URLs instead of templates
    urls: Optional[list[str]] = None

    def default_template_id(self) -> Optional[str]:
        if self.default_template:
            return self.default_template
        for template in self.templates:
            if template.default:
                return template.id
        return None

    def find_template(self, template_id: str) -> Optional[Template]:
        for template in self.templates:
            if template.id == template_id:
                return template
        return None


class RepositoryIndex(_YamlModel):
    """
    A repository's index document.

    v2 indices list stacks under `stacks`. The legacy v1 `projects` map is
    still read so older repositories keep resolving.
    """

    api_version: str = Field(SUPPORTED_INDEX_API_VERSION, alias="apiVersion")
    generated: Optional[str] = None
    projects: dict[str, list[IndexStack]] = Field(default_factory=dict)
    stacks: list[IndexStack] = Field(default_factory=list)

    normalize_generated = field_validator("generated", mode="before")(_stringify_timestamp)

    @field_validator("projects", mode="before")
    @classmethod
    def _empty_projects(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("stacks", mode="before")
    @classmethod
    def _empty_stacks(cls, value: Any) -> Any:
        return [] if value is None else value

    def find_stack(self, stack_id: str) -> Optional[IndexStack]:
        legacy = self.projects.get(stack_id)
        if legacy:
            return legacy[0]
        for stack in self.stacks:
            if stack.id == stack_id:
                return stack
        return None

    def remove_stack(self, stack_id: str) -> bool:
        before = len(self.stacks)
        self.stacks = [s for s in self.stacks if s.id != stack_id]
        return len(self.stacks) != before

    def all_stacks(self) -> list[IndexStack]:
        found = [versions[0] for versions in self.projects.values() if versions]
        return found + list(self.stacks)

    def is_supported(self) -> bool:
        return self.api_version <= SUPPORTED_INDEX_API_VERSION


class RepositoryEntry(_YamlModel):
    name: str
    url: str
    is_default: bool = Field(False, alias="default")

    def to_yaml_dict(self) -> dict:
        data = {"name": self.name, "url": self.url}
        if self.is_default:
            data["default"] = True
        return data


class RepositoryFile(_YamlModel):
    """The user's registry of named repositories (repository.yaml)."""

    api_version: str = Field("v1", alias="apiVersion")
    generated: Optional[str] = None
    repositories: list[RepositoryEntry] = Field(default_factory=list)

    normalize_generated = field_validator("generated", mode="before")(_stringify_timestamp)

    def get(self, name: str) -> Optional[RepositoryEntry]:
        for entry in self.repositories:
            if entry.name == name:
                return entry
        return None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def has_url(self, url: str) -> bool:
        return any(entry.url == url for entry in self.repositories)

    def add(self, entry: RepositoryEntry) -> None:
        self.repositories.append(entry)

    def remove(self, name: str) -> None:
        self.repositories = [entry for entry in self.repositories if entry.name != name]

    def default_entry(self) -> Optional[RepositoryEntry]:
        for entry in self.repositories:
            if entry.is_default:
                return entry
        return None

    def to_yaml_dict(self) -> dict:
        data: dict[str, Any] = {"apiVersion": self.api_version}
        if self.generated:
            data["generated"] = self.generated
        data["repositories"] = [entry.to_yaml_dict() for entry in self.repositories]
        return data


class CliConfig(_YamlModel):
    """Global CLI settings from <home>/.appsody.yaml."""

    home: str = ""
    images: str = "docker.io"
    operator: str = "https://github.com/appsody/appsody-operator/releases/latest/download"
    tektonserver: str = ""
    lastversioncheck: str = "none"

    normalize_check = field_validator("lastversioncheck", mode="before")(_stringify_timestamp)


class ProjectConfig(_YamlModel):
    """A project's .appsody-config.yaml."""

    stack: str = ""
    project_name: Optional[str] = Field(None, alias="project-name")
    application_name: Optional[str] = Field(None, alias="application-name")
    stack_registry: Optional[str] = Field(None, alias="stack-registry")
    version: Optional[str] = None
    description: Optional[str] = None
    license: Optional[str] = None
    maintainers: list[Maintainer] = Field(default_factory=list)


class StackYaml(_YamlModel):
    """A stack author's stack.yaml."""

    name: str = ""
    version: str = ""
    description: str = ""
    license: str = ""
    language: str = ""
    maintainers: list[Maintainer] = Field(default_factory=list)
    default_template: str = Field("", alias="default-template")
    templating_data: Optional[dict[str, Any]] = Field(None, alias="templating-data")
    requirements: Optional[Requirements] = None
    deprecated: Optional[Deprecation] = None


class IndexOutputRepository(_YamlModel):
    repository_name: str = Field(..., alias="repositoryName")
    stacks: list[IndexStack] = Field(default_factory=list)


class IndexOutput(_YamlModel):
    """Machine-readable listing shape for `list -o json|yaml`."""

    api_version: str = Field(SUPPORTED_INDEX_API_VERSION, alias="apiVersion")
    generated: str = ""
    repositories: list[IndexOutputRepository] = Field(default_factory=list)


class ObjectMeta(_YamlModel):
    name: str = ""
    namespace: Optional[str] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ServiceSpec(_YamlModel):
    type: Optional[str] = None
    port: Optional[int] = None


class EnvVar(_YamlModel):
    name: str
    value: str = ""


class AppsodyApplicationSpec(_YamlModel):
    application_image: str = Field("", alias="applicationImage")
    version: Optional[str] = None
    stack: Optional[str] = None
    expose: Optional[bool] = None
    service: Optional[ServiceSpec] = None
    env: list[EnvVar] = Field(default_factory=list)
    pull_policy: Optional[str] = Field(None, alias="pullPolicy")
    pull_secret: Optional[str] = Field(None, alias="pullSecret")
    create_knative_service: Optional[bool] = Field(None, alias="createKnativeService")
    replicas: Optional[int] = None


class AppsodyApplication(_YamlModel):
    """The custom resource consumed by the cluster operator (app-deploy.yaml)."""

    api_version: str = Field("appsody.dev/v1beta1", alias="apiVersion")
    kind: str = "AppsodyApplication"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: AppsodyApplicationSpec = Field(default_factory=AppsodyApplicationSpec)

    def to_yaml_dict(self) -> dict:
        data = self.model_dump(by_alias=True, exclude_none=True)
        spec = data.get("spec", {})
        if not spec.get("env"):
            spec.pop("env", None)
        meta = data.get("metadata", {})
        for key in ("labels", "annotations"):
            if not meta.get(key):
                meta.pop(key, None)
        return data
