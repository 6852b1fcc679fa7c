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
# NAME RULES
# -----------------------------------------------------------------------------
# Responsibility: Validation and normalization of the names the CLI hands
# to docker and Kubernetes: project names, stack ids, label values, registry
# hosts and image references.
# -----------------------------------------------------------------------------

import re
from pathlib import Path

from appsody.domain.errors import UserInputError

MAX_PROJECT_NAME = 68
MAX_LABEL_VALUE = 63

PROJECT_NAME_PATTERN = re.compile(r"^[a-z]([a-z0-9-]*[a-z0-9])?$")
STACK_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]*[a-z0-9]$")
LABEL_VALUE_PATTERN = re.compile(r"^[a-z0-9A-Z]([a-z0-9A-Z\-_.]*[a-z0-9A-Z])?$")
HOST_AND_PORT_PATTERN = re.compile(
    r"^(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])\.)*"
    r"([A-Za-z0-9]|[A-Za-z0-9][A-Za-z0-9\-]*[A-Za-z0-9])($|:[0-9]{1,5}$)"
)


def validate_project_name(name: str) -> None:
    """
    Raises:
        UserInputError: Explaining which rule the name breaks.
    """
    if name == "":
        raise UserInputError("Invalid project-name. The name cannot be an empty string")
    if len(name) > MAX_PROJECT_NAME:
        raise UserInputError(
            f'Invalid project-name "{name}". The name must be 68 characters or less'
        )
    if not PROJECT_NAME_PATTERN.match(name):
        raise UserInputError(
            f'Invalid project-name "{name}". The name must start with a lowercase letter, '
            "contain only lowercase letters, numbers, or dashes, and cannot end in a dash."
        )


def is_valid_project_name(name: str) -> bool:
    try:
        validate_project_name(name)
    except UserInputError:
        return False
    return True


def is_valid_stack_id(stack_id: str) -> bool:
    return 0 < len(stack_id) <= MAX_PROJECT_NAME and bool(STACK_ID_PATTERN.match(stack_id))


def convert_to_valid_project_name(project_dir: str) -> str:
    """
    Derive a project name from a directory path.

    Examples:
        /work/MyApp       -> myapp
        /work/1st_app     -> appsody-1st-app
        /work/my app!     -> my-app-app
    """
    name = Path(project_dir).name.lower()
    if is_valid_project_name(name):
        return name
    name = name[:MAX_PROJECT_NAME]
    if not name or not ("a" <= name[0] <= "z"):
        name = "appsody-" + name
    name = re.sub(r"[^a-z0-9]+", "-", name)
    if name.endswith("-"):
        name += "app"
    validate_project_name(name)
    return name


def validate_label_value(value: str) -> None:
    """
    Raises:
        UserInputError: If value is not a valid Kubernetes label value.
    """
    if value == "":
        return
    if len(value) > MAX_LABEL_VALUE:
        raise UserInputError("The label must be 63 characters or less")
    if not LABEL_VALUE_PATTERN.match(value):
        raise UserInputError(
            f'Invalid label "{value}". The label must begin and end with an alphanumeric '
            "character ([a-z0-9A-Z]) with dashes (-), underscores (_), dots (.), and "
            "alphanumerics between."
        )


def is_valid_kubernetes_label_value(value: str) -> bool:
    try:
        validate_label_value(value)
    except UserInputError:
        return False
    return True


def is_valid_host_and_port(host: str) -> bool:
    return bool(HOST_AND_PORT_PATTERN.match(host))


def normalize_image_name(image: str) -> str:
    """
    Give an image reference an explicit registry.

    Raises:
        UserInputError: For references with more than three components.
    """
    parts = image.split("/")
    if len(parts) == 1:
        return f"docker.io/{image}"
    if len(parts) == 2:
        return image
    if len(parts) == 3:
        if parts[0] == "index.docker.io":
            parts[0] = "docker.io"
            return "/".join(parts)
        return image
    raise UserInputError(f"Image name is invalid: {image}")


def override_stack_registry(override: str, image: str) -> str:
    """
    Replace (or prepend) the registry host of an image reference.

    Raises:
        UserInputError: If override is not a host[:port], or image has too
            many components for the override to apply.
    """
    if not override:
        return image
    if not is_valid_host_and_port(override):
        raise UserInputError(f"This is an invalid host name: {override}")
    parts = image.split("/")
    if len(parts) > 3:
        raise UserInputError(
            "Image name is invalid and needs to be changed in the project config file "
            f"(.appsody-config.yaml): {image}. Too many slashes (/) - the override cannot "
            "take place."
        )
    if len(parts) == 3:
        parts[0] = override
    else:
        parts.insert(0, override)
    return "/".join(parts)


def image_tag(image: str) -> str:
    """Return the tag of an image reference, or "latest"."""
    last = image.rsplit("/", 1)[-1]
    if ":" in last:
        return last.rsplit(":", 1)[1]
    return "latest"


def image_without_tag(image: str) -> str:
    head, _, last = image.rpartition("/")
    last = last.split(":", 1)[0]
    return f"{head}/{last}" if head else last
