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
# IMAGE LABELS
# -----------------------------------------------------------------------------
# Responsibility: Compute the OCI / stack / commit labels attached to built
# images, and translate them into Kubernetes labels and annotations for the
# AppsodyApplication resource.
#
# Precedence when merging: stack image labels, then project config labels,
# then git labels.
# -----------------------------------------------------------------------------

import re
from datetime import datetime, timezone
from typing import Optional

from appsody.core.names import validate_label_value
from appsody.domain.errors import UserInputError
from appsody.domain.models import Maintainer, ProjectConfig
from appsody.infra.git_client import GitInfo
from appsody.infra.log import Log

OCI_PREFIX = "org.opencontainers.image."
STACK_PREFIX = "dev.appsody.stack."
COMMIT_PREFIX = "dev.appsody.image.commit."
APP_NAME_LABEL = "dev.appsody.app.name"

# These become CR labels; every other converted label becomes an annotation.
SUPPORTED_KUBE_LABELS = [
    "image.opencontainers.org/title",
    "image.opencontainers.org/version",
    "image.opencontainers.org/licenses",
    "stack.appsody.dev/id",
    "stack.appsody.dev/version",
    "app.appsody.dev/name",
]

_DOMAIN_PREFIX = re.compile(r"^[a-z0-9A-Z][a-z0-9A-Z.]*\.")


def format_maintainers(maintainers: list[Maintainer]) -> str:
    return ", ".join(f"{m.name} <{m.email}>" for m in maintainers)


def config_labels(config: ProjectConfig, now: Optional[datetime] = None) -> dict[str, str]:
    """
    Labels derived from a project (or stack) config.

    Raises:
        UserInputError: If version, license or application-name is not a
            valid label value.
    """
    now = now or datetime.now(timezone.utc)
    labels = {OCI_PREFIX + "created": now.strftime("%Y-%m-%dT%H:%M:%SZ")}

    authors = format_maintainers(config.maintainers)
    if authors:
        labels[OCI_PREFIX + "authors"] = authors

    for key, value, field in (
        ("version", config.version, "version"),
        ("licenses", config.license, "license"),
    ):
        if value:
            try:
                validate_label_value(value)
            except UserInputError as e:
                raise UserInputError(f".appsody-config.yaml {field} value is invalid. {e}")
            labels[OCI_PREFIX + key] = value

    if config.project_name:
        labels[OCI_PREFIX + "title"] = config.project_name
    if config.description:
        labels[OCI_PREFIX + "description"] = config.description
    if config.stack:
        labels[STACK_PREFIX + "configured"] = config.stack
    if config.application_name:
        try:
            validate_label_value(config.application_name)
        except UserInputError as e:
            raise UserInputError(f".appsody-config.yaml application-name value is invalid. {e}")
        labels[APP_NAME_LABEL] = config.application_name
    return labels


def git_labels(info: GitInfo) -> dict[str, str]:
    labels: dict[str, str] = {}
    if info.remote_url:
        labels[OCI_PREFIX + "url"] = info.remote_url
        labels[OCI_PREFIX + "documentation"] = info.remote_url
        branch = info.branch
        upstream = info.upstream.split("/")
        if len(upstream) > 1:
            branch = upstream[1]
        labels[OCI_PREFIX + "source"] = f"{info.remote_url}/tree/{branch}"

    commit = info.commit
    if commit.sha:
        labels[OCI_PREFIX + "revision"] = commit.sha + ("-modified" if info.changes_made else "")
    if commit.author:
        labels[COMMIT_PREFIX + "author"] = commit.author
        if commit.author_email:
            labels[COMMIT_PREFIX + "author"] += f" <{commit.author_email}>"
    if commit.committer:
        labels[COMMIT_PREFIX + "committer"] = commit.committer
        if commit.committer_email:
            labels[COMMIT_PREFIX + "committer"] += f" <{commit.committer_email}>"
    if commit.date:
        labels[COMMIT_PREFIX + "date"] = commit.date
    if commit.message:
        labels[COMMIT_PREFIX + "message"] = commit.message
    if commit.context_dir:
        labels[COMMIT_PREFIX + "contextDir"] = commit.context_dir
    return labels


def merge_build_labels(
    stack: dict[str, str], config: dict[str, str], git: dict[str, str]
) -> dict[str, str]:
    """
    Combine the three label sources for an application image.

    Stack image labels are re-keyed under dev.appsody.stack. so they do not
    clash with the application's own OCI labels.
    """
    labels: dict[str, str] = {}
    config = dict(config)
    for key, value in stack.items():
        key = key.replace(OCI_PREFIX, STACK_PREFIX, 1)
        key = key.replace(COMMIT_PREFIX, STACK_PREFIX + "commit.", 1)
        if key == "appsody.stack":
            key = STACK_PREFIX + "tag"
        config.pop(key, None)
        labels[key] = value
    labels.update(config)
    labels.update(git)
    return labels


def convert_label_to_kube_format(key: str) -> str:
    """
    Reverse a label's domain prefix into a Kubernetes-style prefix.

    org.opencontainers.image.title -> image.opencontainers.org/title

    Raises:
        UserInputError: If the resulting name or prefix is invalid.
    """
    match = _DOMAIN_PREFIX.match(key)
    if match is None:
        prefix, name = "", key
    else:
        domain = key[: match.end()]
        name = key[match.end():]
        sections = [s for s in domain.split(".") if s]
        prefix = ".".join(reversed(sections)) + "/"
    if name == "":
        raise UserInputError("Invalid kubernetes metadata name. Must not be empty")
    if len(prefix) > 253:
        raise UserInputError("Invalid kubernetes metadata prefix. Must be less than 253 characters")
    try:
        validate_label_value(name)
    except UserInputError as e:
        raise UserInputError(f"Invalid kubernetes metadata name. {e}")
    return prefix + name


def to_kube_metadata(log: Log, labels: dict[str, str]) -> tuple[dict[str, str], dict[str, str]]:
    """
    Split image labels into (kube labels, kube annotations).

    Labels whose key cannot be converted are skipped with a debug line.
    """
    converted: dict[str, str] = {}
    for key, value in labels.items():
        try:
            converted[convert_label_to_kube_format(key)] = value
        except UserInputError as e:
            log.debug(f'Skipping image label "{key}" - {e}')

    selected = {}
    for key in SUPPORTED_KUBE_LABELS:
        if converted.get(key):
            selected[key] = converted.pop(key)
    return selected, converted

