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
# STACK REQUIREMENTS
# -----------------------------------------------------------------------------
# Responsibility: Check a stack's minimum tool versions (docker, buildah,
# appsody) against what is installed.
#
# Stack authors write npm-style semver ranges (^1.2.0, ~2.1, 1.x,
# 1.0.0 - 2.0.0, a || b), evaluated with semantic_version's NpmSpec.
# -----------------------------------------------------------------------------

import re
from typing import Callable, Optional

from semantic_version import NpmSpec, Version

from appsody.domain.errors import RequirementsUnmet
from appsody.domain.models import ContainerEngine, Requirements
from appsody.infra.log import Log
from appsody.infra.process import ProcessError, run_capture

TOOL_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)")
LOCAL_BUILD_VERSIONS = {"0.0.0", "vlatest"}


def parse_constraint(expression: str) -> NpmSpec:
    """
    Parse a semver range expression. Docker style versions such as 17.09
    lose their leading zeros and ">= 1.2" spacing is joined back to its
    operator.

    Raises:
        ValueError: If the expression is not a valid range.
    """
    expression = re.sub(r"\s+", " ", expression.strip())
    expression = re.sub(r"(>=|<=|>|<|=|\^|~)\s+", r"\1", expression)
    expression = re.sub(r"\b0+(?=\d)", "", expression)
    return NpmSpec(expression)


def satisfies(version: str, expression: str) -> bool:
    """
    Raises:
        ValueError: If expression is not understood or version does not parse.
    """
    return parse_constraint(expression).match(Version.coerce(version))


def tool_version(tool: str) -> str:
    """
    Run `<tool> version` and return the first x.y.z it prints.

    Raises:
        ProcessError: If the tool cannot be run or exits non-zero.
    """
    result = run_capture([tool, "version"])
    if result.returncode != 0:
        raise ProcessError(f"{tool} version failed: {(result.stderr or result.stdout).strip()}")
    match = TOOL_VERSION_PATTERN.search(result.stdout)
    return match.group(0) if match else ""


def check_requirements(
    log: Log,
    requirements: Optional[Requirements],
    engine: ContainerEngine,
    cli_version: str,
    version_of: Callable[[str], str] = tool_version,
) -> None:
    """
    Compare installed tool versions with the stack's constraints.

    Raises:
        RequirementsUnmet: If one or more tools are missing or too old.
    """
    if requirements is None:
        return
    log.info("Checking stack requirements...")

    checks = [
        ("Docker", requirements.docker_version),
        ("Buildah", requirements.buildah_version),
        ("Appsody", requirements.appsody_version),
    ]
    upgrades: list[str] = []
    for technology, constraint in checks:
        if not constraint:
            continue
        if technology == "Docker" and engine == ContainerEngine.BUILDAH:
            log.debug("Skipping Docker requirement - Buildah is being used.")
            continue
        if technology == "Buildah" and engine == ContainerEngine.DOCKER:
            log.debug("Skipping Buildah requirement - Docker is being used.")
            continue
        log.debug(f"Checking version requirement: {technology} {constraint}")

        try:
            parse_constraint(constraint)
        except ValueError as e:
            log.warning(
                f"Skipping {technology} version requirement because the minimum version is invalid: {e}"
            )
            continue

        if technology == "Appsody":
            if cli_version in LOCAL_BUILD_VERSIONS:
                log.warning(
                    f"Skipping appsody version requirement because this is a local build of appsody {cli_version}"
                )
                continue
            found = TOOL_VERSION_PATTERN.search(cli_version)
            installed = found.group(0) if found else ""
        else:
            try:
                installed = version_of(technology.lower())
            except ProcessError as e:
                log.error(f"{e} - Are you sure {technology} is installed?")
                upgrades.append(technology)
                continue

        try:
            ok = satisfies(installed, constraint)
        except ValueError as e:
            log.warning(
                f"Unable to parse {technology} version - This stack may not work in your current "
                f"development environment. {e}"
            )
            continue
        log.debug(f"Found version of {technology} to be {installed}")
        if ok:
            log.info(f"{technology} requirements met")
        else:
            log.error(
                f"The required version of {technology} to use this stack is {constraint} - Please upgrade."
            )
            upgrades.append(technology)

    if upgrades:
        raise RequirementsUnmet(len(upgrades), upgrades)
