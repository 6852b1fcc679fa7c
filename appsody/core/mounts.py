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
# STACK IMAGE ENVIRONMENT
# -----------------------------------------------------------------------------
# Responsibility: Read what a stack image declares about itself through its
# environment (APPSODY_MOUNTS, APPSODY_DEPS, APPSODY_PROJECT_DIR, PORT) and
# turn it into host-side volume arguments.
# -----------------------------------------------------------------------------

import os
from pathlib import Path
from typing import Optional

from appsody.core.context import Context
from appsody.infra.docker_client import ImageConfig
from appsody.infra.log import Log

DEFAULT_PROJECT_DIR = "/project"
DEPRECATED_LABEL = "dev.appsody.stack.deprecated"


def stack_config(ctx: Context) -> ImageConfig:
    """Pull (per policy) and inspect the project's stack image."""
    image = ctx.project.stack_image()
    ctx.driver.pull(image)
    return ctx.driver.inspect(image)


def warn_if_deprecated(log: Log, config: ImageConfig) -> None:
    message = config.labels.get(DEPRECATED_LABEL)
    if message:
        log.warning(f"*\n*\n*\nStack deprecated: {message}\n*\n*\n*")


def stack_project_dir(log: Log, config: ImageConfig) -> str:
    """The directory inside the stack image that holds the project."""
    project_dir = config.env.get("APPSODY_PROJECT_DIR", "")
    if not project_dir:
        log.warning(f"The stack image does not contain APPSODY_PROJECT_DIR. Using {DEFAULT_PROJECT_DIR}")
        return DEFAULT_PROJECT_DIR
    return project_dir


def _local_part(mount: str) -> str:
    parts = mount.split(":")
    # C:\path:/container/path on Windows
    if os.name == "nt" and len(parts) > 2:
        return parts[0] + ":" + parts[1]
    return parts[0]


def mount_list(config: ImageConfig) -> list[str]:
    return [m for m in config.env.get("APPSODY_MOUNTS", "").split(";") if m]


def volume_args(log: Log, config: ImageConfig, project_dir: Path) -> list[str]:
    """
    Map APPSODY_MOUNTS (src:dst;src:dst) onto host paths as -v arguments.

    "~" expands to APPSODY_MOUNT_HOME or the user's home; other sources
    are relative to APPSODY_MOUNT_PROJECT or the project directory.
    Missing sources are skipped unless their root was overridden.
    """
    mounts = mount_list(config)
    if not mounts:
        log.warning("The stack image does not contain APPSODY_MOUNTS")
        return []

    home = str(Path.home())
    home_override = os.environ.get("APPSODY_MOUNT_HOME", "")
    if home_override:
        log.debug(f"Overriding home mount dir from '{home}' to APPSODY_MOUNT_HOME value '{home_override}'")
        home = home_override
    project = str(project_dir)
    project_override = os.environ.get("APPSODY_MOUNT_PROJECT", "")
    if project_override:
        log.debug(
            f"Overriding project mount dir from '{project}' to APPSODY_MOUNT_PROJECT value '{project_override}'"
        )
        project = project_override

    args: list[str] = []
    for mount in mounts:
        if mount.startswith("~"):
            mapped = mount.replace("~", home, 1)
            overridden = bool(home_override)
        else:
            mapped = os.path.join(project, mount)
            overridden = bool(project_override)
        mapped = mapped.replace("\\", "/")
        if not overridden and not Path(_local_part(mapped)).exists():
            log.warning(f"Could not mount {mapped} because the local file was not found.")
            continue
        args += ["-v", mapped]
    log.debug(f"Mapped mount args: {args}")
    return args


def deps_volume_args(config: ImageConfig, volume_name: str) -> list[str]:
    """A named volume for APPSODY_DEPS so dependencies survive between runs."""
    deps = config.env.get("APPSODY_DEPS", "")
    if not deps:
        return []
    return ["-v", f"{volume_name}:{deps}"]


def container_port(config: ImageConfig) -> Optional[int]:
    """PORT from the stack env, or None when unset or not numeric."""
    value = config.env.get("PORT", "")
    try:
        return int(value)
    except ValueError:
        return None
