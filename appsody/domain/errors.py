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
# ERROR TAXONOMY
# -----------------------------------------------------------------------------
# Every failure the CLI reports to a user is an AppsodyError. The command
# entry point turns these into a single "[Error] ..." line and exit code 1.
#
# Anything else escaping a command is a bug and is allowed to crash loudly.
# -----------------------------------------------------------------------------

from dataclasses import dataclass, field


class AppsodyError(Exception):
    """Base class for all user-facing CLI errors."""

    pass


class UserInputError(AppsodyError):
    """Raised for malformed references, invalid names and bad flag combinations."""

    pass


class MalformedReference(UserInputError):
    """Raised when a [repo/]stack reference cannot be parsed."""

    pass


class StackNotFound(UserInputError):
    """Raised when a stack id is absent from the repository index."""

    pass


class TemplateNotFound(UserInputError):
    """Raised when a named template is not offered by the stack."""

    pass


class NoDefaultTemplate(UserInputError):
    """Raised when no template was given and the stack declares no default."""

    pass


class InvalidOption(UserInputError):
    """Raised when a pass-through option collides with a flag the CLI sets itself."""

    def __init__(self, message: str, option: str) -> None:
        super().__init__(message)
        self.option = option


class NotAnAppsodyProject(AppsodyError):
    """Raised when the working directory holds no .appsody-config.yaml."""

    pass


class NetworkError(AppsodyError):
    """Raised when an index, template or other remote file cannot be downloaded."""

    pass


class IndexUnreadable(NetworkError):
    """Raised when one repository's index cannot be fetched or parsed."""

    def __init__(self, repo_name: str, cause: str) -> None:
        super().__init__(f"Repository {repo_name} could not be read: {cause}")
        self.repo_name = repo_name
        self.cause = cause


class IndexSchemaError(AppsodyError):
    """Raised when an index or config document does not decode."""

    pass


class RequirementsUnmet(AppsodyError):
    """Raised when the local tools do not satisfy a stack's version constraints."""

    def __init__(self, count: int, upgrades: list[str]) -> None:
        super().__init__(
            "One or more technologies need upgrading to use this stack. "
            f"Upgrades required: {count}"
        )
        self.count = count
        self.upgrades = upgrades


class ContainerEngineError(AppsodyError):
    """Raised when a docker or buildah invocation fails."""

    def __init__(self, message: str, op: str = "", exit_code: int = 1, output: str = "") -> None:
        super().__init__(message)
        self.op = op
        self.exit_code = exit_code
        self.output = output


class PullFailed(ContainerEngineError):
    """Raised when an image is neither pullable nor present locally."""

    pass


class InspectFailed(ContainerEngineError):
    """Raised when image inspect output is missing or malformed."""

    pass


class RunFailed(ContainerEngineError):
    """Raised when a container exits with a non-zero status."""

    pass


class BuildFailed(ContainerEngineError):
    """Raised when an image build fails."""

    pass


class NotInstalled(ContainerEngineError):
    """Raised when the selected container engine cannot be reached."""

    pass


class ClusterError(AppsodyError):
    """Raised when a kubectl invocation fails."""

    def __init__(self, message: str, op: str = "") -> None:
        super().__init__(message)
        self.op = op


class NotFound(ClusterError):
    """Raised when no route, ingress or node port exposes a deployment."""

    pass


class ScriptError(AppsodyError):
    """Raised when a stack's init script fails. Callers downgrade it to a warning."""

    pass


class ConflictsExist(AppsodyError):
    """Raised when template files would overwrite files already in the project."""

    def __init__(self, conflicts: list[str]) -> None:
        super().__init__("conflicts exist")
        self.conflicts = conflicts


class DevLoopFailed(AppsodyError):
    """Raised when the dev container exits with a status other than an interrupt."""

    def __init__(self, message: str, code: int) -> None:
        super().__init__(message)
        self.code = code


class InternalError(AppsodyError):
    """Raised on invariant violations in local state."""

    pass


@dataclass
class IndexErrors:
    """Per-repository failures collected while reading several indices."""

    records: list[tuple[str, str]] = field(default_factory=list)

    def add(self, repo_name: str, cause: str) -> None:
        self.records.append((repo_name, cause))

    def __bool__(self) -> bool:
        return bool(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __str__(self) -> str:
        return "\n".join(f"- Repository: {name}\n  Reason: {cause}" for name, cause in self.records)
