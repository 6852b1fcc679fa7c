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
# STACK TOOLKIT - package, add-to-repo, remove-from-repo, create
# -----------------------------------------------------------------------------
# Responsibility: Turn a stack source tree into artifacts the rest of the
# CLI consumes.
#
# package         -> stack image, template tarballs, dev.local-index.yaml,
#                    and the dev.local repository entry pointing at it
# add-to-repo     -> <repo>-index.yaml with release URLs instead of file://
# remove-from-repo-> the same index minus one stack
# create          -> a new stack directory copied from an existing one
# -----------------------------------------------------------------------------

import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from appsody.core.config import write_yaml
from appsody.core.context import Context
from appsody.core.installer import check_members, safe_destination
from appsody.core.labels import COMMIT_PREFIX, OCI_PREFIX, STACK_PREFIX, config_labels, git_labels
from appsody.core.names import is_valid_project_name, validate_project_name
from appsody.core.repository import RepositoryRegistry, parse_index, parse_reference
from appsody.domain.errors import IndexSchemaError, StackNotFound, UserInputError
from appsody.domain.models import (
    DEV_LOCAL_REPO_NAME,
    SUPPORTED_INDEX_API_VERSION,
    IndexStack,
    ProjectConfig,
    RepositoryEntry,
    RepositoryIndex,
    StackYaml,
    Template,
)
from appsody.infra.download import download_bytes, download_to_disk, file_url_path
from appsody.infra.git_client import GitError, GitProvider

DEFAULT_IMAGE_NAMESPACE = "dev.local"
DEFAULT_RELEASE_URL = "https://github.com/appsody/stacks/releases/download/"
DEFAULT_COPY = "incubator/starter"
DEV_LOCAL_INDEX = "dev.local-index.yaml"
NOT_A_STACK_MESSAGE = "Unable to reach templates directory. Current directory must be the root of the stack"


@dataclass
class PackageResult:
    image: str
    tags: list[str]
    index_file: Path
    archives: list[Path] = field(default_factory=list)


def _banner(ctx: Context, title: str) -> None:
    ctx.log.info("******************************************")
    ctx.log.info(f"Running appsody stack {title}")
    ctx.log.info("******************************************")


def require_stack_root(stack_path: Path) -> None:
    if not (stack_path / "templates").is_dir():
        raise UserInputError(NOT_A_STACK_MESSAGE)


def read_stack_yaml(stack_path: Path) -> StackYaml:
    """
    Raises:
        IndexSchemaError: If stack.yaml is missing or malformed.
    """
    path = stack_path / "stack.yaml"
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return StackYaml.model_validate(data)
    except OSError as e:
        raise IndexSchemaError(f"Error trying to read: {e}")
    except (yaml.YAMLError, ValidationError) as e:
        raise IndexSchemaError(f"Error trying to unmarshall: {e}")


def template_names(stack_path: Path) -> list[str]:
    templates = stack_path / "templates"
    return sorted(p.name for p in templates.iterdir() if p.is_dir() and p.name != ".DS_Store")


def image_tags(image_base: str, version: str) -> list[str]:
    """<base>:x, <base>:x.y and <base>:x.y.z for a semver version."""
    parts = version.split(".")
    return [f"{image_base}:{'.'.join(parts[:n])}" for n in range(1, min(len(parts), 3) + 1)]


def template_archive_name(stack_id: str, version: str, template: str) -> str:
    return f"{stack_id}.v{version}.templates.{template}.tar.gz"


def source_archive_name(stack_id: str, version: str) -> str:
    return f"{stack_id}.v{version}.source.tar.gz"


def file_url(path: Path) -> str:
    posix = path.resolve().as_posix()
    if not posix.startswith("/"):
        posix = "/" + posix
    return "file://" + posix


def stack_image_labels(ctx: Context, stack_path: Path, stack_id: str, image: str, stack: StackYaml) -> dict[str, str]:
    """OCI and stack labels for a stack image, with git provenance when available."""
    labels: dict[str, str] = {}
    try:
        git = git_labels(GitProvider(str(stack_path)).get_info())
    except GitError as e:
        ctx.log.info(str(e))
        git = {}
    source = git.get(OCI_PREFIX + "url")
    if source:
        context_dir = git.get(COMMIT_PREFIX + "contextDir")
        if context_dir:
            source += context_dir
            git[OCI_PREFIX + "url"] = source
        git[OCI_PREFIX + "documentation"] = source + "/README.md"
        git[OCI_PREFIX + "source"] = source + "/image"
    labels.update(git)

    project = ProjectConfig(
        project_name=stack.name,
        version=stack.version,
        description=stack.description,
        license=stack.license,
        maintainers=stack.maintainers,
    )
    labels.update(config_labels(project))
    labels[STACK_PREFIX + "id"] = stack_id
    labels[STACK_PREFIX + "tag"] = image
    return labels


def _tar_directory(source: Path, archive: Path) -> None:
    with tarfile.open(archive, "w:gz") as tar:
        for entry in sorted(source.rglob("*")):
            tar.add(str(entry), arcname="./" + entry.relative_to(source).as_posix(), recursive=False)


def load_local_index(path: Path) -> RepositoryIndex:
    if not path.is_file():
        return RepositoryIndex()
    return parse_index(path.read_bytes(), str(path))


def write_index(path: Path, index: RepositoryIndex) -> None:
    data = {
        "apiVersion": SUPPORTED_INDEX_API_VERSION,
        "generated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "stacks": [stack.to_yaml_dict() for stack in index.stacks],
    }
    write_yaml(path, data)


def index_entry(stack_id: str, stack: StackYaml, templates: list[Template], image: str = "", src: str = "") -> IndexStack:
    return IndexStack(
        id=stack_id,
        name=stack.name,
        version=stack.version,
        description=stack.description,
        license=stack.license,
        language=stack.language,
        maintainers=stack.maintainers,
        default_template=stack.default_template or None,
        templates=templates,
        requirements=stack.requirements,
        image=image or None,
        src=src or None,
        deprecated=stack.deprecated,
    )


def package(
    ctx: Context,
    registry: RepositoryRegistry,
    image_namespace: str = DEFAULT_IMAGE_NAMESPACE,
    image_registry: str = "",
) -> PackageResult:
    """
    Build the stack image from ./image and publish the stack into the
    dev.local repository.

    Raises:
        UserInputError: If the working directory is not a stack root.
        BuildFailed: If the stack image does not build.
    """
    _banner(ctx, "package")
    stack_path = ctx.project_dir.resolve()
    require_stack_root(stack_path)
    stack_id = stack_path.name
    stack = read_stack_yaml(stack_path)
    ctx.log.debug(f"stackPath is: {stack_path}")

    dev_local = ctx.stacks_dir
    index_file = dev_local / DEV_LOCAL_INDEX
    if not ctx.dry_run:
        dev_local.mkdir(parents=True, exist_ok=True)

    base = f"{image_namespace}/{stack_id}"
    if image_registry:
        base = f"{image_registry}/{base}"
    tags = image_tags(base, stack.version)
    image = tags[-1]
    pinned = tags[1] if len(tags) > 1 else image

    labels = stack_image_labels(ctx, stack_path, stack_id, image, stack)
    image_dir = stack_path / "image"
    ctx.log.info("Running docker build")
    ctx.driver.build(str(image_dir), str(image_dir / "Dockerfile-stack"), tags, labels=labels)

    result = PackageResult(image=image, tags=tags, index_file=index_file)
    templates = []
    for name in template_names(stack_path):
        archive = dev_local / template_archive_name(stack_id, stack.version, name)
        templates.append(Template(id=name, url=file_url(archive)))
        result.archives.append(archive)
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skipping creation of tar for: {name}")
            continue
        config_yaml = stack_path / "templates" / name / ".appsody-config.yaml"
        ctx.log.info(f"Creating tar for: {name}")
        write_yaml(config_yaml, {"stack": pinned})
        try:
            _tar_directory(config_yaml.parent, archive)
        finally:
            config_yaml.unlink(missing_ok=True)

    source_archive = dev_local / source_archive_name(stack_id, stack.version)
    result.archives.append(source_archive)
    if not ctx.dry_run:
        ctx.log.info(f"Creating source tar for: {stack_id}")
        _tar_directory(stack_path, source_archive)

    index = load_local_index(index_file)
    index.remove_stack(stack_id)
    index.stacks.append(index_entry(stack_id, stack, templates, image=pinned, src=file_url(source_archive)))
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping writing of {index_file}")
    else:
        ctx.log.info(f"Writing: {index_file}")
        write_index(index_file, index)

    ensure_dev_local_repo(ctx, registry, index_file)
    ctx.log.info(f"Your local stack is available as part of repo {DEV_LOCAL_REPO_NAME}")
    return result


def ensure_dev_local_repo(ctx: Context, registry: RepositoryRegistry, index_file: Path) -> None:
    """Point the dev.local repository at index_file, replacing stale entries."""
    url = file_url(index_file)
    repo_file = registry.load()
    entry = repo_file.get(DEV_LOCAL_REPO_NAME)
    if entry is not None and entry.url == url:
        return
    if entry is not None:
        ctx.log.info(f"Appsody repo {DEV_LOCAL_REPO_NAME} is configured with the wrong URL. Deleting and recreating it.")
        repo_file.remove(DEV_LOCAL_REPO_NAME)
    for other in list(repo_file.repositories):
        if other.url == url:
            ctx.log.info(
                f"Appsody repo {other.name} is configured with {DEV_LOCAL_REPO_NAME}'s URL. "
                f"Deleting it to setup {DEV_LOCAL_REPO_NAME}."
            )
            repo_file.remove(other.name)
    ctx.log.info(f"Creating {DEV_LOCAL_REPO_NAME} repository")
    repo_file.add(RepositoryEntry(name=DEV_LOCAL_REPO_NAME, url=url))
    registry.save(repo_file)


def _is_remote(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def add_to_repo(
    ctx: Context,
    registry: RepositoryRegistry,
    repo_name: str,
    release_url: str = DEFAULT_RELEASE_URL,
    use_local_cache: bool = False,
) -> Path:
    """
    Merge the current stack into <repo>-index.yaml with template URLs
    under release_url.

    Returns:
        The index file written.
    """
    _banner(ctx, "add-to-repo")
    stack_path = ctx.project_dir.resolve()
    require_stack_root(stack_path)
    stack_id = stack_path.name
    local_index = ctx.stacks_dir / f"{repo_name}-index.yaml"
    if not ctx.dry_run:
        ctx.stacks_dir.mkdir(parents=True, exist_ok=True)

    entry = registry.load().get(repo_name)
    if entry is not None and not _is_remote(entry.url):
        ctx.log.debug(f"Modify the local file {entry.url}")
        index = registry.fetch_index(repo_name, entry.url)
        local_index = file_url_path(entry.url)
    elif local_index.is_file() and use_local_cache:
        ctx.log.debug(f"{local_index} exists in the appsody directory and use-local-cache is true")
        index = load_local_index(local_index)
    elif entry is not None:
        ctx.log.debug("Downloading the remote index file")
        index = registry.fetch_index(repo_name, entry.url)
    else:
        ctx.log.debug("Creating a new local file in the local directory")
        index = RepositoryIndex()

    stack = read_stack_yaml(stack_path)
    templates = [
        Template(id=name, url=release_url + template_archive_name(stack_id, stack.version, name))
        for name in template_names(stack_path)
    ]
    index.remove_stack(stack_id)
    index.stacks.append(
        index_entry(stack_id, stack, templates, src=release_url + source_archive_name(stack_id, stack.version))
    )
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping writing of {local_index}")
        return local_index
    write_index(local_index, index)
    ctx.log.info(f"Repository index file updated successfully: {local_index}")
    return local_index


def remove_from_repo(
    ctx: Context,
    registry: RepositoryRegistry,
    repo_name: str,
    stack_id: str,
    use_local_cache: bool = False,
) -> Optional[Path]:
    """
    Drop stack_id from <repo>-index.yaml.

    Raises:
        UserInputError: If repo_name is not a configured repository.
    """
    _banner(ctx, "remove-from-repo")
    entry = registry.load().get(repo_name)
    if entry is None:
        raise UserInputError(f"{repo_name} does not exist within the repository list")

    local_index = ctx.stacks_dir / f"{repo_name}-index.yaml"
    if _is_remote(entry.url):
        if not (local_index.is_file() and use_local_cache):
            ctx.log.info(f"Downloading the remote index file from: {entry.url}")
            ctx.log.info(f"Creating repository index file: {local_index}")
            if not ctx.dry_run:
                ctx.stacks_dir.mkdir(parents=True, exist_ok=True)
            download_to_disk(ctx.log, entry.url, local_index, ctx.dry_run)
    else:
        local_index = file_url_path(entry.url)
        if not local_index.is_file():
            ctx.log.info("Repository index file not found - unable to remove stack")
            return None

    if ctx.dry_run and not local_index.is_file():
        return local_index
    ctx.log.info(f"Updating repository index file: {local_index}")
    index = load_local_index(local_index)
    if not index.remove_stack(stack_id):
        ctx.log.info(f"Stack: {stack_id} does not exist in repository index file")
        return local_index
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping writing of {local_index}")
        return local_index
    write_index(local_index, index)
    ctx.log.info("Repository index file updated successfully")
    return local_index


def untar_source(archive: Path, destination: Path) -> None:
    """Unpack a stack source archive, refusing entries outside destination."""
    check_members(archive, destination)
    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            target = safe_destination(destination, member.name)
            if member.isdir():
                target.mkdir(mode=0o755, parents=True, exist_ok=True)
            elif member.isreg():
                source = tar.extractfile(member)
                if source is None:
                    continue
                target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
                with source, open(target, "wb") as out:
                    shutil.copyfileobj(source, out)
                os.chmod(target, member.mode & 0o7777)


def create(ctx: Context, registry: RepositoryRegistry, name: str, copy: str = DEFAULT_COPY) -> Path:
    """
    Scaffold ./<name> from the source archive of an existing stack.

    Raises:
        UserInputError: For an invalid or existing name, or a bad --copy.
        StackNotFound: If the copied stack is not in the index or has no source.
    """
    validate_project_name(name)
    target = ctx.project_dir / name
    if target.exists():
        raise UserInputError(f"A stack named {name} already exists in your directory. Specify a unique stack name")
    repo_name, stack_id = parse_reference(copy)
    if repo_name is None or not is_valid_project_name(stack_id):
        raise UserInputError(f"Invalid stack name: {copy}. Stack name must be in the format <repo>/<stack>")

    resolved_repo = registry.load().get(repo_name)
    if resolved_repo is None:
        raise UserInputError(f"Repository {repo_name} is not in configured list of repositories")
    index = registry.fetch_index(repo_name, resolved_repo.url)
    stack = index.find_stack(stack_id)
    if stack is None:
        raise StackNotFound("Stack not found in index")
    if not stack.src:
        raise StackNotFound(f"No source URL specified for stack {copy}")

    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping download and unpack of {stack.src} to {target}")
        ctx.log.info("Dry run complete")
        return target

    with tempfile.TemporaryDirectory(prefix="appsody-create-") as tmp:
        archive = Path(tmp) / f"{stack_id}.source.tar.gz"
        archive.write_bytes(download_bytes(stack.src))
        staging = Path(tmp) / name
        staging.mkdir()
        untar_source(archive, staging)
        shutil.move(str(staging), str(target))
    ctx.log.info(f"Stack created: {name}")
    return target
