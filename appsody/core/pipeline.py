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
# BUILD PIPELINE - extract, build, deployment manifest
# -----------------------------------------------------------------------------
# Responsibility: Turn a project into a deployable image.
#
# Flow:
# 1. extract: copy the stack's project dir (with the user's code mounted
#    into it) out of a stopped container into <home>/extract/<project>
# 2. build: docker build / buildah bud that directory, with OCI labels
# 3. optionally push
# 4. create or update app-deploy.yaml (the AppsodyApplication CR)
#
# Transient containers and the extract dir are removed on every path.
# -----------------------------------------------------------------------------

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from appsody.core.context import Context
from appsody.core.labels import config_labels, git_labels, merge_build_labels, to_kube_metadata
from appsody.core.manifests import (
    extract_docker_env_vars,
    load_application,
    namespace_repository_and_tag,
    save_application,
    split_docker_options,
    stack_name_from_image,
    substitute_placeholders,
)
from appsody.core.mounts import container_port, stack_config, stack_project_dir, volume_args
from appsody.domain.errors import AppsodyError, ContainerEngineError, UserInputError
from appsody.domain.models import AppsodyApplication, EnvVar
from appsody.infra.docker_client import ImageConfig, check_build_options
from appsody.infra.git_client import GitError, GitProvider

CONTAINER_DEPLOY_CONFIG = "/config/app-deploy.yaml"
DEFAULT_DEPLOY_FILE = "app-deploy.yaml"


class DeployConfigMissing(ContainerEngineError):
    """The stack image ships no /config/app-deploy.yaml."""

    pass


@dataclass
class BuildOptions:
    tag: str = ""
    push: bool = False
    push_url: str = ""
    pull_url: str = ""
    docker_options: str = ""
    buildah_options: str = ""
    knative: bool = False
    app_deploy_file: str = DEFAULT_DEPLOY_FILE
    generate_manifest: bool = True


def _remove_container(ctx: Context, name: str) -> None:
    try:
        ctx.driver.remove(name, force=True)
    except AppsodyError as e:
        ctx.log.error(f"containerRemove error {e}")


def _remove_tree(ctx: Context, path: Path) -> None:
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skip deleting extract dir: {path}")
        return
    shutil.rmtree(path, ignore_errors=True)


def _check_target_dir(target_dir: Path) -> Path:
    target = target_dir.resolve()
    if target.exists():
        raise UserInputError(f"Cannot extract to an existing target-dir: {target}")
    if not target.parent.exists():
        raise UserInputError(f"{target.parent} does not exist")
    return target


def _copy_mounts_locally(ctx: Context, volumes: list[str], container_dir: str, extract_dir: Path) -> None:
    """buildah mount does not see bind mounts, so copy them by hand."""
    for item in volumes:
        if ":" not in item:
            continue
        ctx.log.debug(f"Appsody mount: {item}")
        source, dest = item.split(":")[:2]
        if source == ".":
            source = os.getcwd()
        dest_path = Path(dest.replace(container_dir, str(extract_dir)))
        ctx.log.debug(f"Local-adjusted mount destination: {dest_path}")
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skip copying {source} to {dest_path}")
            continue
        if Path(source).is_dir():
            shutil.copytree(source, dest_path, dirs_exist_ok=True)
        else:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest_path)
        ctx.log.debug(f"Copied {source} to {dest_path}")


def extract(
    ctx: Context, target_dir: Optional[Path] = None, container_name: str = ""
) -> Path:
    """
    Extract stack plus project into <home>/extract/<project>, then move it to
    target_dir when one is given.

    Raises:
        UserInputError: If target_dir exists or its parent does not.
        ContainerEngineError: If the container cannot be created or copied.
    """
    project_name = ctx.project.project_name()
    ctx.project.load()
    ctx.log.info("Extracting project from development environment")
    target = _check_target_dir(Path(target_dir)) if target_dir else None

    extract_dir = ctx.extract_root / project_name
    if not ctx.extract_root.exists():
        if ctx.dry_run:
            ctx.log.info(f"Dry Run - Skip creating extract dir: {ctx.extract_root}")
        else:
            ctx.extract_root.mkdir(parents=True, exist_ok=True)
    if extract_dir.exists():
        _remove_tree(ctx, extract_dir)
    if ctx.is_buildah and not ctx.dry_run:
        extract_dir.mkdir(parents=True, exist_ok=True)

    image = ctx.project.stack_image()
    config = stack_config(ctx)
    container_dir = stack_project_dir(ctx.log, config)
    ctx.log.debug(f"Container project dir: {container_dir}")
    volumes = volume_args(ctx.log, config, ctx.project_dir)
    name = container_name or f"{project_name}-extract"

    try:
        try:
            if os.name == "nt":
                # docker cp on Windows does not follow symlinks
                tmp_dir = "/tmp" + container_dir
                ctx.driver.run_bash(
                    image, f"cp -rfL {container_dir} {tmp_dir}", ["--name", name, *volumes], remove=False
                )
                source = tmp_dir
            else:
                ctx.driver.create(name, image, volumes)
                source = container_dir
            ctx.driver.copy_out(name, source, str(extract_dir))
            if ctx.is_buildah:
                _copy_mounts_locally(ctx, volumes, container_dir, extract_dir)
        finally:
            _remove_container(ctx, name)
    except (AppsodyError, OSError):
        if not ctx.dry_run:
            shutil.rmtree(extract_dir, ignore_errors=True)
        raise

    if target is None:
        if not ctx.dry_run:
            ctx.log.info(f"Project extracted to {extract_dir}")
        return extract_dir
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skip moving {extract_dir} to {target}")
        return target
    shutil.move(str(extract_dir), str(target))
    ctx.log.info(f"Project extracted to {target}")
    return target


def image_labels(ctx: Context, config: Optional[ImageConfig] = None) -> dict[str, str]:
    """Stack, project and git labels for the application image."""
    config = config or stack_config(ctx)
    project = ctx.project.load()
    project_labels = config_labels(project)
    try:
        git = git_labels(GitProvider(str(ctx.project_dir)).get_info())
    except GitError as e:
        ctx.log.info(str(e))
        git = {}
    return merge_build_labels(config.labels, project_labels, git)


def _build_options(ctx: Context, options: BuildOptions) -> list[str]:
    if options.docker_options:
        if ctx.is_buildah:
            raise UserInputError("Cannot specify --docker-options flag with --buildah")
        return split_docker_options(options.docker_options)
    if options.buildah_options:
        if not ctx.is_buildah:
            raise UserInputError("Cannot specify --buildah-options flag without --buildah")
        return split_docker_options(options.buildah_options)
    return []


def build(ctx: Context, options: BuildOptions) -> str:
    """
    Extract and build the project image, then write the deployment manifest.

    Returns:
        The image reference that was built.
    """
    build_args = _build_options(ctx, options)
    check_build_options(build_args)
    project_name = ctx.project.project_name()
    extract_dir = ctx.extract_root / project_name

    image = options.tag or project_name
    if options.push_url:
        image = f"{options.push_url}/{image}"

    try:
        extract(ctx)
        labels = image_labels(ctx)
        ctx.driver.build(str(extract_dir), str(extract_dir / "Dockerfile"), [image], build_args, labels)
    finally:
        if not ctx.dry_run:
            shutil.rmtree(extract_dir, ignore_errors=True)

    if options.push_url or options.push:
        try:
            ctx.driver.push(image)
        except ContainerEngineError as e:
            raise ContainerEngineError(
                f"Could not push the docker image - exiting. Error: {e}", op="push", exit_code=e.exit_code
            )
    if not ctx.dry_run:
        ctx.log.info(f"Built docker image {image}")

    if options.generate_manifest:
        generate_deployment_config(ctx, options, labels)
    return image


def deploy_port(ctx: Context, config: ImageConfig) -> int:
    port = container_port(config)
    if port is not None:
        return port
    ctx.log.warning("Could not detect a container port (PORT env var).")
    if not config.exposed_ports:
        ctx.log.warning("This container exposes no ports. The service will not be accessible.")
        return 0
    ctx.log.warning("Picking the first exposed port as the KNative service port. This may not be the correct port.")
    try:
        return int(config.exposed_ports[0])
    except ValueError:
        ctx.log.warning("The exposed port is not a valid integer. The service will not be accessible.")
        return 0


def deploy_file(ctx: Context, options: BuildOptions) -> Path:
    return ctx.project_dir / options.app_deploy_file


def generate_deployment_config(
    ctx: Context, options: BuildOptions, labels: Optional[dict[str, str]] = None
) -> Path:
    """
    Create app-deploy.yaml from the stack's template, or refresh an
    existing one.

    Raises:
        DeployConfigMissing: If the stack image carries no deploy template.
    """
    config_file = deploy_file(ctx, options)
    if config_file.exists():
        ctx.log.info(f"Found existing deployment manifest {config_file}")
        update_deployment_config(ctx, options, labels)
        ctx.log.info(f"Updated existing deployment manifest {config_file}")
        return config_file

    project_name = ctx.project.project_name()
    stack_image = ctx.project.stack_image()
    config = stack_config(ctx)
    name = f"{project_name}-extract"
    try:
        ctx.driver.create(name, stack_image)
        ctx.driver.copy_out(name, CONTAINER_DEPLOY_CONFIG, str(config_file), directory=False)
    except ContainerEngineError as e:
        raise DeployConfigMissing(
            f"Container copy command failed: {e}", op="cp", exit_code=e.exit_code, output=e.output
        )
    finally:
        _remove_container(ctx, name)

    if ctx.dry_run:
        ctx.log.info(f"Dry run skipped construction of file {config_file}")
        return config_file
    if not config_file.is_file():
        raise DeployConfigMissing(f"Config file does not exist {config_file}. ", op="cp")

    text = substitute_placeholders(
        config_file.read_text(encoding="utf-8"),
        project=project_name,
        image=f"dev.local/{project_name}",
        stack=stack_name_from_image(stack_image),
        port=deploy_port(ctx, config),
    )
    config_file.write_text(text, encoding="utf-8")
    update_deployment_config(ctx, options, labels)
    ctx.log.info(f"Created deployment manifest: {config_file}")
    return config_file


def merge_env(app: AppsodyApplication, env: dict[str, str]) -> None:
    """Set env on the CR; names already present keep their position."""
    existing = {var.name: var for var in app.spec.env}
    for name, value in env.items():
        if name in existing:
            existing[name].value = value
        else:
            app.spec.env.append(EnvVar(name=name, value=value))


def update_deployment_config(
    ctx: Context, options: BuildOptions, labels: Optional[dict[str, str]] = None
) -> None:
    """Refresh labels, annotations, env, image and Knative flag in app-deploy.yaml."""
    config_file = deploy_file(ctx, options)
    app = load_application(config_file)
    kube_labels, annotations = to_kube_metadata(ctx.log, labels if labels is not None else image_labels(ctx))
    app.metadata.labels = kube_labels
    app.metadata.annotations = annotations
    app.spec.create_knative_service = options.knative
    merge_env(app, extract_docker_env_vars(options.docker_options))

    image = options.tag or app.spec.application_image
    if options.pull_url:
        image = f"{options.pull_url}/{namespace_repository_and_tag(image)}"
    app.spec.application_image = image
    save_application(ctx.log, config_file, app, ctx.dry_run)
