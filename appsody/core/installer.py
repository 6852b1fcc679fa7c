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
# TEMPLATE INSTALLER - `appsody init`
# -----------------------------------------------------------------------------
# Responsibility: Lay a template archive down into the project directory
# without clobbering the user's files, record the stack identity, then run
# the stack's init script.
#
# Safety rules:
# - A non-empty directory is accepted only when every entry is whitelisted
#   (IDE and VCS metadata), unless --overwrite.
# - Every regular file in the archive is checked for an on-disk collision
#   before anything is written.
# - No entry may resolve outside the project directory.
# -----------------------------------------------------------------------------

import os
import re
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from appsody.core.config import PROJECT_CONFIG_FILE, write_yaml
from appsody.core.context import Context
from appsody.core.mounts import stack_config, stack_project_dir
from appsody.core.names import convert_to_valid_project_name, normalize_image_name, validate_project_name
from appsody.core.pipeline import extract
from appsody.core.repository import NO_TEMPLATE, RepositoryRegistry, ResolvedStack
from appsody.core.requirements import check_requirements
from appsody.domain.errors import AppsodyError, ConflictsExist, ScriptError, UserInputError
from appsody.domain.models import IndexStack
from appsody.infra.download import download_to_disk
from appsody.infra.process import ProcessError, run_and_listen

WHITELIST_DOT_FILES = [
    "git",
    "project",
    "DS_Store",
    "classpath",
    "factorypath",
    "gitattributes",
    "gitignore",
    "cw-settings",
    "cw-extension",
]
WHITELIST_DOT_DIRECTORIES = ["github", "vscode", "settings", "metadata"]

WHITELIST_PATTERN = re.compile(
    r"(^(\.[/\\])?\.(" + "|".join(WHITELIST_DOT_FILES) + r")$)"
    r"|(^(\.[/\\])?\.(" + "|".join(WHITELIST_DOT_DIRECTORIES) + r")([/\\].*)?$)"
)

INIT_WORKDIR = ".appsody_init"
EXISTING_PROJECT_MESSAGE = "cannot run `appsody init <stack>` on an existing appsody project"
CONFLICT_MESSAGE = "non-empty directory found with files which may conflict with the template project"


@dataclass
class InitOptions:
    overwrite: bool = False
    no_template: bool = False
    project_name: str = ""
    application_name: str = ""
    stack_registry: str = ""


def in_whitelist(name: str) -> bool:
    return WHITELIST_PATTERN.match(name) is not None


def is_laydown_safe(log, directory: Path) -> bool:
    """True when every entry in directory is whitelisted."""
    safe = True
    for entry in sorted(os.listdir(directory)):
        if in_whitelist(entry):
            log.debug(f"{entry} file exists and is safe to extract the project template over")
        else:
            safe = False
            log.debug(f"{entry} file exists and is not safe to extract the project template over")
    log.debug("It is safe to extract the project template" if safe else "It is not safe to extract the project template")
    return safe


def safe_destination(root: Path, name: str) -> Path:
    """
    Join an archive member name onto root.

    Raises:
        UserInputError: If the member would land outside root.
    """
    root = root.resolve()
    target = (root / name).resolve()
    if target != root and root not in target.parents:
        raise UserInputError(f"Archive entry {name} would be extracted outside of {root}")
    return target


def check_members(archive: Path, untar_dir: Path) -> None:
    """Reject the whole archive if any member would land outside untar_dir."""
    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            safe_destination(untar_dir, member.name)


def pre_check(log, archive: Path, untar_dir: Path) -> None:
    """
    Raises:
        ConflictsExist: If any regular archive member already exists on disk.
    """
    conflicts = []
    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            if not member.isreg():
                continue
            target = safe_destination(untar_dir, member.name)
            if target.exists() and not target.is_dir():
                log.warning(f"Conflict: {member.name} exists in the file system and the template project.")
                conflicts.append(member.name)
    if conflicts:
        raise ConflictsExist(conflicts)


def untar(log, archive: Path, untar_dir: Path, no_template: bool = False, overwrite: bool = False) -> list[str]:
    """
    Extract a gzipped template archive into untar_dir.

    Directories are created 0755 and files keep their header mode. In
    no-template mode only .appsody-config.yaml entries are written.

    Returns:
        Relative names of the files written.
    """
    check_members(archive, untar_dir)
    if not overwrite and not no_template:
        pre_check(log, archive, untar_dir)

    written = []
    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            target = safe_destination(untar_dir, member.name)
            log.debug(f"Untar creating {target}")
            if member.isdir():
                if not no_template:
                    target.mkdir(mode=0o755, parents=True, exist_ok=True)
                continue
            if not member.isreg():
                continue
            if no_template and not member.name.endswith(PROJECT_CONFIG_FILE):
                continue
            source = tar.extractfile(member)
            if source is None:
                continue
            target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
            with source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            os.chmod(target, member.mode & 0o7777)
            written.append(member.name)
    return written


def default_stack_image(stack: IndexStack, images: str = "docker.io") -> str:
    """The image an index entry points at, or appsody/<id>:<major.minor>."""
    if stack.image:
        return normalize_image_name(stack.image)
    major_minor = ".".join(stack.version.split(".")[:2])
    return normalize_image_name(f"{images}/appsody/{stack.id}:{major_minor}")


def default_project_name(ctx: Context) -> str:
    return convert_to_valid_project_name(ctx.project_dir.resolve().name)


def _write_project_config(ctx: Context, stack_image: str) -> None:
    path = ctx.project.path
    if path.exists():
        return
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping creation of {path} with stack: {stack_image}")
        return
    write_yaml(path, {"stack": stack_image})


def init_project(
    ctx: Context, registry: RepositoryRegistry, reference: str, template: Optional[str], options: InitOptions
) -> None:
    """
    Initialize the project directory from reference (and template), then
    run the stack's init script.

    Raises:
        UserInputError: For re-init, bad names or a non-empty directory.
        ConflictsExist: If archive files collide with existing ones.
        RequirementsUnmet: If local tools are too old for the stack.
    """
    if options.no_template:
        ctx.log.warning(
            'The --no-template flag has been deprecated.  Please specify a template value of "none" instead.'
        )
        if template and template != NO_TEMPLATE:
            raise UserInputError(
                "cannot specify `appsody init <stack> <template>` with both a template and --no-template"
            )
        template = NO_TEMPLATE
    project_name = options.project_name or default_project_name(ctx)
    validate_project_name(project_name)

    if ctx.project.exists():
        raise UserInputError(EXISTING_PROJECT_MESSAGE)

    resolved = registry.resolve(reference, template)
    no_template = template == NO_TEMPLATE
    directory = ctx.project_dir

    if not (no_template or options.overwrite or is_laydown_safe(ctx.log, directory)):
        ctx.log.error("Non-empty directory found with files which may conflict with the template project.")
        ctx.log.info("It is recommended that you run `appsody init <stack>` in an empty directory.")
        ctx.log.info(
            "If you wish to proceed and possibly overwrite files in the current directory, try again "
            "with the --overwrite option."
        )
        raise UserInputError(CONFLICT_MESSAGE)

    if resolved.stack.requirements is not None:
        check_requirements(ctx.log, resolved.stack.requirements, ctx.engine, ctx.version)

    _lay_down(ctx, resolved, no_template, options.overwrite)
    _write_project_config(ctx, default_stack_image(resolved.stack, ctx.cli_config.images))

    if not ctx.dry_run:
        if options.stack_registry:
            ctx.project.set_stack_registry(options.stack_registry)
        _save_names(ctx, project_name, options)

    install(ctx)

    if template is None:
        ctx.log.info(f"Successfully initialized Appsody project with the {reference} stack and the default template.")
    elif template != NO_TEMPLATE:
        ctx.log.info(f"Successfully initialized Appsody project with the {reference} stack and the {template} template.")
    else:
        ctx.log.info(f"Successfully initialized Appsody project with the {reference} stack and no template.")


def _archive_url(resolved: ResolvedStack) -> str:
    """The template archive; with no template, the default one still carries the project config."""
    if resolved.template:
        return resolved.template.url
    default_id = resolved.stack.default_template_id()
    default = resolved.stack.find_template(default_id) if default_id else None
    if default:
        return default.url
    return (resolved.stack.urls or [""])[0]


def _lay_down(ctx: Context, resolved: ResolvedStack, no_template: bool, overwrite: bool) -> None:
    stack_id = resolved.stack.id
    url = _archive_url(resolved)
    if not url:
        ctx.log.debug(f"Stack {stack_id} has no template archive to download")
        return
    ctx.log.info("Running appsody init...")
    ctx.log.info(f"Downloading {stack_id} template project from {url}")
    archive = ctx.project_dir / f"{stack_id}.tar.gz"
    try:
        download_to_disk(ctx.log, url, archive, ctx.dry_run)
        if no_template:
            ctx.log.info(
                f"Download complete. Do not unzip the template project. Only extracting "
                f".appsody-config.yaml file from {archive}"
            )
        else:
            ctx.log.info(f"Download complete. Extracting files from {archive}")
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skipping untar of file: {archive}")
            return
        try:
            untar(ctx.log, archive, ctx.project_dir, no_template, overwrite)
        except ConflictsExist:
            ctx.log.info("It is recommended that you run `appsody init <stack>` in an empty directory.")
            ctx.log.info(
                "If you wish to proceed and overwrite files in the current directory, try again with the "
                "--overwrite option."
            )
            raise
    finally:
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skipping remove of temporary file for stack: {stack_id}")
        else:
            archive.unlink(missing_ok=True)


def _save_names(ctx: Context, project_name: str, options: InitOptions) -> None:
    config = ctx.project.load()
    if not config.project_name or options.project_name:
        ctx.project.save_project_name(project_name)
    if options.application_name:
        ctx.project.save_application_name(options.application_name)


def install(ctx: Context) -> None:
    """
    Set up the local development environment for an initialized project.
    Init script failures are reported as warnings.
    """
    ctx.log.info("Setting up the development environment")
    if ctx.dry_run and not ctx.project.exists():
        ctx.log.info("Dry Run - Skipping init script")
        return
    config = ctx.project.load()
    ctx.log.debug(f"Setting up the development environment for projectDir: {ctx.project_dir} and platform: {config.stack}")
    try:
        run_init_script(ctx)
    except AppsodyError as e:
        ctx.log.warning(f"The stack init script failed: {e}")
        ctx.log.warning("Your local IDE may not build properly, but the Appsody container should still work.")
        ctx.log.warning("To try again, resolve the issue then run `appsody init` with no arguments.")


def run_init_script(ctx: Context) -> None:
    """
    Run .appsody-init.sh (.bat on Windows) from an extracted copy of the
    stack plus project, when the stack image ships one.

    Raises:
        ScriptError: If the script exits non-zero.
    """
    script = ".\\.appsody-init.bat" if os.name == "nt" else "./.appsody-init.sh"
    script_name = os.path.basename(script.replace("\\", "/"))
    image = ctx.project.stack_image()

    if not ctx.is_buildah:
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skipping search for {script_name} in {image}")
            return
        container_dir = stack_project_dir(ctx.log, stack_config(ctx))
        found = ctx.driver.run_bash(image, f"find {container_dir} -type f -name {script_name}")
        if not found:
            ctx.log.debug("There is no initialization script in the image - skipping extract and initialize")
            return

    workdir = ctx.project_dir / INIT_WORKDIR
    if ctx.dry_run:
        ctx.log.info("Dry Run skipping extract.")
        return
    if workdir.exists():
        shutil.rmtree(workdir)
    try:
        extract(ctx, target_dir=workdir)
        if (workdir / script_name).exists():
            ctx.log.debug(f"Running appsody_init script {script}")
            try:
                code = run_and_listen(ctx.log, [script], ctx.log.init_script, cwd=str(workdir))
            except ProcessError as e:
                raise ScriptError(str(e))
            if code != 0:
                raise ScriptError(f"exit status {code}")
    finally:
        ctx.log.debug(f"Removing {workdir}")
        shutil.rmtree(workdir, ignore_errors=True)
