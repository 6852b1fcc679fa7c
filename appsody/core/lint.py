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
# STACK LINTER - `appsody stack lint`
# -----------------------------------------------------------------------------
# Responsibility: Check a stack source tree before it is packaged.
#
# Three passes, each adding to one error/warning tally:
# 1. layout (README, stack.yaml, image/, templates/)
# 2. stack.yaml fields
# 3. Dockerfile-stack ENV contract (APPSODY_* variables, mounts, regexes)
#
# The stack passes only with zero errors.
# -----------------------------------------------------------------------------

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import semantic_version
import yaml
from pydantic import ValidationError

from appsody.core.names import is_valid_stack_id
from appsody.domain.errors import NetworkError, UserInputError
from appsody.domain.models import StackYaml
from appsody.infra.download import download_bytes
from appsody.infra.log import Log

SPDX_LICENSES_URL = "https://spdx.org/licenses/licenses.json"

REQUIRED_ENV_VARS = [
    "APPSODY_MOUNTS",
    "APPSODY_RUN",
    "APPSODY_RUN_ON_CHANGE",
    "APPSODY_RUN_KILL",
    "APPSODY_DEBUG",
    "APPSODY_DEBUG_ON_CHANGE",
    "APPSODY_DEBUG_KILL",
    "APPSODY_TEST",
    "APPSODY_TEST_ON_CHANGE",
    "APPSODY_TEST_KILL",
]
OPTIONAL_ENV_VARS = ["APPSODY_DEPS", "APPSODY_WATCH_DIR"]

MAX_NAME_LENGTH = 30
MAX_DESCRIPTION_LENGTH = 70

TEMPLATING_PATTERN = re.compile(r"^[a-zA-Z0-9]*$")


@dataclass
class LintReport:
    errors: int = 0
    warnings: int = 0

    @property
    def passed(self) -> bool:
        return self.errors == 0


def fetch_spdx_ids() -> set[str]:
    """
    Raises:
        NetworkError: If the SPDX list cannot be downloaded or decoded.
    """
    raw = download_bytes(SPDX_LICENSES_URL)
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise NetworkError(f"Could not decode the SPDX license list: {e}")
    return {entry["licenseId"] for entry in data.get("licenses", []) if "licenseId" in entry}


def is_valid_semver(version: str) -> bool:
    return semantic_version.validate(version)


class StackLinter:
    """Accumulates findings for one stack directory."""

    def __init__(
        self,
        log: Log,
        stack_path: Path,
        spdx_loader: Callable[[], set[str]] = fetch_spdx_ids,
    ) -> None:
        self.log = log
        self.stack_path = Path(stack_path).resolve()
        self.spdx_loader = spdx_loader
        self.report = LintReport()

    def error(self, message: str) -> None:
        self.log.error(message)
        self.report.errors += 1

    def warn(self, message: str) -> None:
        self.log.warning(message)
        self.report.warnings += 1

    @property
    def image_path(self) -> Path:
        return self.stack_path / "image"

    @property
    def templates_path(self) -> Path:
        return self.stack_path / "templates"

    def template_dirs(self) -> list[Path]:
        if not self.templates_path.is_dir():
            return []
        return sorted(p for p in self.templates_path.iterdir() if p.is_dir())

    def run(self) -> LintReport:
        self.log.info(f"LINTING {self.stack_path.name}")
        self.lint_layout()
        if (self.stack_path / "stack.yaml").is_file():
            self.lint_stack_yaml()
        if (self.image_path / "Dockerfile-stack").is_file():
            self.lint_dockerfile_stack()
        return self.report

    # -- layout -------------------------------------------------------------

    def lint_layout(self) -> None:
        stack = self.stack_path
        if not is_valid_stack_id(stack.name):
            self.error(
                f"The name of the stack directory {stack.name} must start with a lowercase letter, "
                "contain only lowercase letters, numbers, or dashes, and cannot end in a dash."
            )
        if not (stack / "README.md").is_file():
            self.error(f"Missing README.md in: {stack}")
        if not (stack / "stack.yaml").is_file():
            self.error(f"Missing stack.yaml in: {stack}")
        if not self.image_path.is_dir():
            self.error(f"Missing image directory in {stack}")
        if not (self.image_path / "Dockerfile-stack").is_file():
            self.error(f"Missing Dockerfile-stack in {self.image_path}")
        if not (self.image_path / "LICENSE").is_file():
            self.error(f"Missing LICENSE in {self.image_path}")

        config_path = self.image_path / "config"
        if not (config_path / "app-deploy.yaml").is_file():
            self.warn(f"Missing app-deploy.yaml in {config_path} (Knative deployment will be used over Kubernetes)")
        project_path = self.image_path / "project"
        if not (project_path / "Dockerfile").is_file():
            self.warn(f"Missing Dockerfile in {project_path}")

        if not self.templates_path.is_dir():
            self.error(f"Missing template directory in: {stack}")
        elif not self.template_dirs():
            self.error(f"No templates found in: {self.templates_path}")
        for template in self.template_dirs():
            if (template / ".appsody-config.yaml").exists():
                self.error(f"Unexpected .appsody-config.yaml in {template}")

    # -- stack.yaml ---------------------------------------------------------

    def lint_stack_yaml(self) -> Optional[StackYaml]:
        path = self.stack_path / "stack.yaml"
        self.log.info(f"LINTING stack.yaml: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            stack = StackYaml.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            self.error(f"Error reading stack.yaml: {e}")
            return None

        for field in ("name", "version", "description", "license", "language"):
            if not getattr(stack, field):
                self.error(f"Missing value for field: {field}")
        if not stack.default_template:
            self.error("Missing value for field: default-template")
        elif not (self.templates_path / stack.default_template).is_dir():
            self.error(f"Can not find default template: {stack.default_template} in {self.templates_path}")
        if not stack.maintainers:
            self.error("Missing value for field: maintainers")
        for maintainer in stack.maintainers:
            if not maintainer.email:
                self.error("Email is not provided under field: maintainers")

        if stack.version and not is_valid_semver(stack.version):
            self.error(f"Version must be a valid semver: {stack.version}")
        if len(stack.description) > MAX_DESCRIPTION_LENGTH:
            self.error(f"Description must be under {MAX_DESCRIPTION_LENGTH} characters")
        if len(stack.name) > MAX_NAME_LENGTH:
            self.error(f"Stack name must be under {MAX_NAME_LENGTH} characters")
        if stack.license:
            self.check_license(stack.license)
        self.check_templating_data(stack)
        return stack

    def check_license(self, license_id: str) -> None:
        try:
            known = self.spdx_loader()
        except NetworkError as e:
            self.log.warning(f"Unable to check the license against the SPDX list: {e}")
            return
        if license_id not in known:
            self.error(f"The stack.yaml SPDX license ID is invalid: {license_id}")

    def check_templating_data(self, stack: StackYaml) -> None:
        if stack.templating_data is None:
            return
        if not stack.templating_data:
            self.warn("Templating data is empty")
            return
        for key, value in stack.templating_data.items():
            if not TEMPLATING_PATTERN.match(str(key)):
                self.error(f"Key variable: {key} is not in an alphanumeric format")
            if not TEMPLATING_PATTERN.match(str(value)):
                self.error(f"Value: {value} for key: {key} is not in an alphanumeric format")

    # -- Dockerfile-stack ---------------------------------------------------

    def dockerfile_env(self) -> dict[str, str]:
        """ENV KEY=VALUE lines of Dockerfile-stack; quotes around values dropped."""
        env: dict[str, str] = {}
        path = self.image_path / "Dockerfile-stack"
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line.startswith("ENV"):
                continue
            key, sep, value = line[len("ENV"):].partition("=")
            if not sep:
                continue
            env[key.strip()] = value.strip().strip('"')
        return env

    def lint_dockerfile_stack(self) -> None:
        path = self.image_path / "Dockerfile-stack"
        self.log.info(f"LINTING Dockerfile-stack: {path}")
        env = self.dockerfile_env()

        for name in REQUIRED_ENV_VARS:
            if name not in env:
                self.error(f"Missing {name}")
        for name in OPTIONAL_ENV_VARS:
            if name not in env:
                self.warn(f"Missing {name}")

        if "APPSODY_WATCH_DIR" in env and not any(k.endswith("_ON_CHANGE") for k in env):
            self.error("APPSODY_WATCH_DIR is defined, but no ON_CHANGE variable is defined")

        for key, value in env.items():
            if key == "APPSODY_INSTALL":
                self.warn("APPSODY_INSTALL should be deprecated and APPSODY_PREP should be used instead")
            if key.endswith("_KILL") and value.lower() not in ("true", "false"):
                self.error(f"{key} can only have value true/false")
            if key == "APPSODY_WATCH_REGEX":
                try:
                    re.compile(value)
                except re.error as e:
                    self.error(f"APPSODY_WATCH_REGEX is not a valid regex: {e}")

        self.lint_mounts(env.get("APPSODY_MOUNTS", ""))

    def lint_mounts(self, mounts: str) -> None:
        if not mounts:
            self.log.error("No APPSODY MOUNTS exists, mount paths can not be validated.")
            return
        for template in self.template_dirs():
            for mount in mounts.split(";"):
                mount = mount.strip('"')
                if not mount:
                    continue
                parts = mount.split(":")
                if len(parts) < 2:
                    self.error(f"Mount is not properly formatted it is missing the single colon: {mount}")
                    continue
                local = parts[0]
                if not local:
                    self.error(f"Path for mount {mount} is empty")
                    continue
                if local in ("/", ".") or local.startswith("~"):
                    self.log.debug(f"Path {local} for mount {mount} can not be evaluated at this time.")
                    continue
                target = template / local
                if not target.exists():
                    self.error(f"Could not stat path: {target} for mount {mount}")
                elif not target.is_dir():
                    self.warn(
                        f"Path {target} for mount {mount} points to a single file.  Single file Docker "
                        "mount paths cause unexpected behavior and will be deprecated in the future."
                    )


def lint(log: Log, stack_path: Path, spdx_loader: Callable[[], set[str]] = fetch_spdx_ids) -> LintReport:
    """
    Lint stack_path and log the totals.

    Raises:
        UserInputError: "LINT TEST FAILED" when any error was found.
    """
    report = StackLinter(log, stack_path, spdx_loader).run()
    log.info(f"TOTAL ERRORS: {report.errors}")
    log.info(f"TOTAL WARNINGS: {report.warnings}")
    if not report.passed:
        raise UserInputError("LINT TEST FAILED")
    log.info("LINT TEST PASSED")
    return report
