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
# DEPLOYER - app-deploy.yaml to a running service
# -----------------------------------------------------------------------------
# Responsibility: Ship a built project to Kubernetes.
#
# Two shapes:
# - operator-managed: AppsodyApplication CR applied next to an operator
# - Knative fallback: a generated KService when the stack ships no
#   deploy template
# -----------------------------------------------------------------------------

import time
from dataclasses import dataclass
from pathlib import Path

from appsody.core.context import Context
from appsody.core.manifests import knative_service, load_application, save_application, write_manifest
from appsody.core.mounts import stack_config
from appsody.core.operator import DEFAULT_NAMESPACE, ensure_operator
from appsody.core.pipeline import (
    DEFAULT_DEPLOY_FILE,
    BuildOptions,
    DeployConfigMissing,
    deploy_port,
    build,
    generate_deployment_config,
)
from appsody.domain.errors import ClusterError, UserInputError
from appsody.domain.models import AppsodyApplication


@dataclass
class DeployOptions:
    namespace: str = DEFAULT_NAMESPACE
    tag: str = ""
    push: bool = False
    push_url: str = ""
    pull_url: str = ""
    docker_options: str = ""
    buildah_options: str = ""
    knative: bool = False
    generate_only: bool = False
    force: bool = False
    file: str = DEFAULT_DEPLOY_FILE

    def build_options(self) -> BuildOptions:
        return BuildOptions(
            tag=self.tag,
            push=self.push,
            push_url=self.push_url,
            pull_url=self.pull_url,
            docker_options=self.docker_options,
            buildah_options=self.buildah_options,
            knative=self.knative,
            app_deploy_file=self.file,
        )


def suffix_image(image: str) -> str:
    """Drop the first path component when the image has a registry and namespace."""
    if image.count("/") > 1:
        return image.split("/", 1)[1]
    return image


def generate_only(ctx: Context, options: DeployOptions) -> Path:
    """
    Write app-deploy.yaml without building or deploying.

    Raises:
        UserInputError: If the file exists and --force was not given.
    """
    config_file = ctx.project_dir / options.file
    if config_file.exists():
        if not options.force:
            raise UserInputError(
                f"Error, deploy config file {config_file} already exists. Specify an alternative "
                "file using --file or using --force to overwrite."
            )
        if not ctx.dry_run:
            config_file.unlink()
    return generate_deployment_config(ctx, options.build_options())


def deploy(ctx: Context, options: DeployOptions) -> None:
    """
    Build the project and apply its AppsodyApplication, installing an
    operator first when none watches the target namespace.
    """
    if options.generate_only:
        generate_only(ctx, options)
        return

    ensure_operator(ctx, options.namespace)

    config_file = ctx.project_dir / options.file
    if not config_file.exists() or options.force:
        try:
            generate_only(ctx, _forced(options))
        except DeployConfigMissing:
            ctx.log.warning(
                "No deployment config is present in the stack. Falling back to default deploy config using Knative."
            )
            deploy_with_knative(ctx, options)
            return
    ctx.log.info(f"Found existing deployment manifest {config_file}")

    app = AppsodyApplication()
    deploy_image = options.tag
    if not ctx.dry_run:
        app = load_application(config_file)
        deploy_image = options.tag or app.spec.application_image
        ctx.log.debug(f"Application Image: {app.spec.application_image}")
    suffix = suffix_image(deploy_image)
    if options.pull_url:
        deploy_image = f"{options.pull_url}/{suffix}"
    push_path = f"{options.push_url}/{suffix}" if options.push_url else deploy_image
    if push_path.startswith("dev.local"):
        ctx.log.warning(
            "The push URL begins with dev.local.  Your push operation may fail if you are targeting a remote "
            f"repository.  Make sure the --tag (-t) option is specified.  {push_path}"
        )

    build_options = options.build_options()
    build_options.tag = suffix
    build_options.pull_url = ""
    build(ctx, build_options)

    if not ctx.dry_run:
        app = load_application(config_file)
        app.spec.application_image = deploy_image
        ctx.log.info(f"Using applicationImage of: {deploy_image}")
        app.spec.create_knative_service = options.knative
        save_application(ctx.log, config_file, app)

    try:
        ctx.cluster.apply(str(config_file), options.namespace)
    except ClusterError as e:
        raise ClusterError(f"Failed to deploy to your Kubernetes cluster: {e}", op="apply")
    if not ctx.dry_run:
        ctx.log.info("Deployment succeeded.")
        time.sleep(1)
    ctx.log.info(f"Appsody Deployment name is: {app.metadata.name}")
    url = ctx.cluster.get_deployment_url(app.metadata.name, options.namespace)
    if ctx.dry_run:
        ctx.log.info("Dry run complete")
    else:
        ctx.log.info(f"Deployed project running at {url}")


def _forced(options: DeployOptions) -> DeployOptions:
    forced = DeployOptions(**vars(options))
    forced.force = True
    return forced


def deploy_with_knative(ctx: Context, options: DeployOptions) -> None:
    """Build the image and apply a generated Knative Service for it."""
    project_name = ctx.project.project_name()
    deploy_image = options.tag or project_name
    if not options.push:
        # without a push, Knative can only find images under dev.local
        deploy_image = f"dev.local/{project_name}"

    build_options = options.build_options()
    build_options.tag = deploy_image
    build_options.pull_url = ""
    build_options.generate_manifest = False
    build(ctx, build_options)

    port = deploy_port(ctx, stack_config(ctx))
    if options.pull_url and not deploy_image.startswith(options.pull_url):
        deploy_image = f"{options.pull_url}/{deploy_image}"
    ctx.log.debug(f"Generating Knative yaml: port={port} service={project_name} image={deploy_image}")
    data = knative_service(ctx.log, port, project_name, deploy_image, options.push)
    yaml_file = write_manifest(ctx.log, ctx.project_dir / options.file, data, ctx.dry_run)
    ctx.log.info(f"Generated KNative serving deploy file: {yaml_file}")

    try:
        ctx.cluster.apply(str(yaml_file), options.namespace)
    except ClusterError as e:
        raise ClusterError(f"Failed to deploy to your Kubernetes cluster: {e}", op="apply")
    ctx.log.info("Deployment succeeded.")
    try:
        url = ctx.cluster.get_knative_url(project_name, options.namespace)
    except ClusterError as e:
        raise ClusterError(f"Failed to find deployed service in your Kubernetes cluster: {e}", op="get")
    ctx.log.info(f"Your deployed service is available at the following URL: {url}")


def deploy_delete(ctx: Context, file: str = DEFAULT_DEPLOY_FILE, namespace: str = DEFAULT_NAMESPACE) -> None:
    """
    Raises:
        UserInputError: If the manifest does not exist.
    """
    config_file = ctx.project_dir / file
    if not ctx.dry_run and not config_file.exists():
        raise UserInputError(f"Cannot delete deployment. Deployment manifest not found: {config_file}")
    ctx.log.info(f"Deleting deployment using deployment manifest {config_file}")
    ctx.cluster.delete(str(config_file), namespace)
    ctx.log.info("Deployment deleted")
