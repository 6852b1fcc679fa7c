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
# APPSODY CLI - COMMAND SURFACE
# -----------------------------------------------------------------------------
# Responsibility: Parse the command line and hand off to the core layer.
#
# Commands:
# - init, run, debug, test, extract, build, deploy [delete], stop, ps
# - list, repo {add|remove|list|set-default}
# - operator {install|uninstall}
# - stack {create|lint|package|validate|add-to-repo|remove-from-repo}
# - version
#
# Every AppsodyError becomes one [Error] line and exit status 1.
# -----------------------------------------------------------------------------

import json
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.table import Table
from semantic_version import Version

from appsody.core import deploy as deployer
from appsody.core import installer, operator, pipeline, toolkit
from appsody.core.config import VERSION_CHECK_FORMAT, needs_version_check, save_cli_config, update_message
from appsody.core.context import Context
from appsody.core.devloop import DevOptions, run_dev
from appsody.core.lint import lint as lint_stack
from appsody.core.repository import RepositoryRegistry
from appsody.core.requirements import LOCAL_BUILD_VERSIONS
from appsody.core.validate import ValidateOptions, validate
from appsody.domain.errors import AppsodyError, NetworkError, UserInputError
from appsody.domain.models import ContainerEngine, DevMode
from appsody.infra.download import latest_release_tag
from appsody.infra.log import Log

LATEST_RELEASE_URL = "https://github.com/appsody/appsody/releases/latest"
CONTROLLER_FILTER = "appsody-controller"
MISSING_STACK_MESSAGE = (
    "Required parameter missing. You must specify a stack and an optional template name. "
    "Run `appsody list` to see the available stacks."
)


def _ctx(click_ctx: click.Context) -> Context:
    return click_ctx.obj["ctx"]


def _registry(ctx: Context) -> RepositoryRegistry:
    return RepositoryRegistry(ctx.log, ctx.repository_file, ctx.dry_run)


def _emit(data: dict, output: str) -> None:
    if output == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, sort_keys=False).rstrip())


def check_for_update(ctx: Context) -> None:
    """Warn about a newer release at most once a day."""
    if ctx.version in LOCAL_BUILD_VERSIONS or ctx.dry_run:
        return
    if not needs_version_check(ctx.cli_config.lastversioncheck):
        return
    ctx.log.debug("Checking for a newer appsody release")
    try:
        latest = latest_release_tag(LATEST_RELEASE_URL).lstrip("v")
    except NetworkError as e:
        ctx.log.debug(f"Unable to check for updates: {e}")
        return
    try:
        newer = Version.coerce(latest) > Version.coerce(ctx.version)
    except ValueError:
        ctx.log.debug(f"Unable to compare {latest} with {ctx.version}")
        newer = False
    if newer:
        ctx.log.warning(update_message(ctx.version, latest, sys.platform))
    ctx.cli_config.lastversioncheck = datetime.now().astimezone().strftime(VERSION_CHECK_FORMAT)
    save_cli_config(ctx.config_file, ctx.cli_config)


# -----------------------------------------------------------------------------
# ROOT
# -----------------------------------------------------------------------------


@click.group()
@click.option("--config", "config_file", type=click.Path(dir_okay=False), help="Config file (default <home>/.appsody.yaml)")
@click.option("--dryrun", is_flag=True, help="Show what would happen without changing anything")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def cli(click_ctx: click.Context, config_file: Optional[str], dryrun: bool, verbose: bool) -> None:
    """Appsody: build cloud native applications from stacks."""
    click_ctx.ensure_object(dict)
    ctx = Context.create(
        config_file=Path(config_file) if config_file else None,
        dry_run=dryrun,
        verbose=verbose,
        log=click_ctx.obj.get("log"),
    )
    click_ctx.obj["ctx"] = ctx
    click_ctx.call_on_close(ctx.log.close)
    check_for_update(ctx)


@cli.command()
@click.pass_context
def version(click_ctx: click.Context) -> None:
    """Show the CLI version."""
    click.echo(f"appsody {_ctx(click_ctx).version}")


# -----------------------------------------------------------------------------
# PROJECT LIFECYCLE
# -----------------------------------------------------------------------------


@cli.command()
@click.argument("stack", required=False)
@click.argument("template", required=False)
@click.option("--overwrite", is_flag=True, help="Overwrite files that conflict with the template")
@click.option("--no-template", is_flag=True, help="Only create .appsody-config.yaml (deprecated, use template none)")
@click.option("--project-name", default="", help="Project name, defaults to the directory name")
@click.option("--application-name", default="", help="Application name recorded in .appsody-config.yaml")
@click.option("--stack-registry", default="", help="Registry the stack image is pulled from")
@click.pass_context
def init(click_ctx, stack, template, overwrite, no_template, project_name, application_name, stack_registry):
    """Initialize a project from [repo/]stack and an optional template."""
    ctx = _ctx(click_ctx)
    if not stack:
        if not ctx.project.exists():
            raise UserInputError(MISSING_STACK_MESSAGE)
        ctx.project.load()
        installer.install(ctx)
        return
    options = installer.InitOptions(
        overwrite=overwrite,
        no_template=no_template,
        project_name=project_name,
        application_name=application_name,
        stack_registry=stack_registry,
    )
    installer.init_project(ctx, _registry(ctx), stack, template, options)


def dev_options(func):
    decorators = [
        click.option("--name", "container_name", default="", help="Container name, defaults to <project>"),
        click.option("-p", "--publish", "ports", multiple=True, help="Publish a container port (host:container)"),
        click.option("-P", "--publish-all", is_flag=True, help="Publish every exposed port to a random host port"),
        click.option("--network", default="", help="Docker network for the container"),
        click.option("--deps-volume", default="", help="Named volume for dependencies, defaults to <project>-deps"),
        click.option("--docker-options", default="", help="Extra docker run options"),
        click.option("-i", "--interactive", is_flag=True, help="Attach stdin to the container"),
        click.option("--no-watcher", is_flag=True, help="Do not restart on file changes"),
        click.pass_context,
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _run_mode(click_ctx, mode: DevMode, kwargs: dict) -> None:
    kwargs["ports"] = list(kwargs["ports"])
    run_dev(_ctx(click_ctx), DevOptions(**kwargs), mode)


@cli.command()
@dev_options
def run(click_ctx, **kwargs):
    """Run the project in a development container."""
    _run_mode(click_ctx, DevMode.RUN, kwargs)


@cli.command()
@dev_options
def debug(click_ctx, **kwargs):
    """Run the project in debug mode."""
    _run_mode(click_ctx, DevMode.DEBUG, kwargs)


@cli.command()
@dev_options
def test(click_ctx, **kwargs):
    """Run the project's tests in a development container."""
    _run_mode(click_ctx, DevMode.TEST, kwargs)


@cli.command()
@click.option("--name", default="", help="Container name, defaults to <project>")
@click.pass_context
def stop(click_ctx, name):
    """Stop a development container."""
    ctx = _ctx(click_ctx)
    name = name or ctx.project.project_name()
    ctx.log.info(f"Stopping development environment {name}")
    ctx.driver.stop(name)


@cli.command()
@click.pass_context
def ps(click_ctx):
    """List running development containers."""
    ctx = _ctx(click_ctx)
    containers = ctx.driver.ps(CONTROLLER_FILTER)
    if not containers:
        ctx.log.info("There are no stack-based containers running in your docker environment")
        return
    table = Table(box=None, show_edge=False, pad_edge=False, header_style="bold")
    for column in ("CONTAINER ID", "NAME", "IMAGE", "STATUS"):
        table.add_column(column, no_wrap=True)
    for container in containers:
        table.add_row(container.id, container.name, container.image, container.status)
    ctx.log.render(table)


@cli.command()
@click.option("--target-dir", default=None, type=click.Path(file_okay=False), help="Directory to extract into")
@click.option("--name", "container_name", default="", help="Name for the extract container")
@click.option("--buildah", is_flag=True, help="Use buildah instead of docker")
@click.pass_context
def extract(click_ctx, target_dir, container_name, buildah):
    """Extract the stack and project into one directory."""
    ctx = _ctx(click_ctx)
    if buildah:
        ctx.use_engine(ContainerEngine.BUILDAH)
    pipeline.extract(ctx, Path(target_dir) if target_dir else None, container_name)


def image_options(func):
    decorators = [
        click.option("-t", "--tag", default="", help="Image tag, defaults to <project>"),
        click.option("--push", is_flag=True, help="Push the image after building"),
        click.option("--push-url", default="", help="Registry to push to"),
        click.option("--pull-url", default="", help="Registry the cluster pulls from"),
        click.option("--docker-options", default="", help="Extra docker build options"),
        click.option("--buildah", is_flag=True, help="Use buildah instead of docker"),
        click.option("--buildah-options", default="", help="Extra buildah build options"),
        click.option("--knative", is_flag=True, help="Deploy as a Knative service"),
        click.option("-f", "--file", default=pipeline.DEFAULT_DEPLOY_FILE, help="Deployment manifest"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@cli.command()
@image_options
@click.pass_context
def build(click_ctx, tag, push, push_url, pull_url, docker_options, buildah, buildah_options, knative, file):
    """Build the project image and its deployment manifest."""
    ctx = _ctx(click_ctx)
    if buildah:
        ctx.use_engine(ContainerEngine.BUILDAH)
    options = pipeline.BuildOptions(
        tag=tag,
        push=push,
        push_url=push_url,
        pull_url=pull_url,
        docker_options=docker_options,
        buildah_options=buildah_options,
        knative=knative,
        app_deploy_file=file,
    )
    pipeline.build(ctx, options)


@cli.group(invoke_without_command=True)
@image_options
@click.option("-n", "--namespace", default=operator.DEFAULT_NAMESPACE, help="Target namespace")
@click.option("--generate-only", is_flag=True, help="Only write the deployment manifest")
@click.option("--force", is_flag=True, help="Regenerate an existing deployment manifest")
@click.pass_context
def deploy(click_ctx, tag, push, push_url, pull_url, docker_options, buildah, buildah_options, knative, file,
           namespace, generate_only, force):
    """Build and deploy the project to Kubernetes."""
    if click_ctx.invoked_subcommand is not None:
        return
    ctx = _ctx(click_ctx)
    if buildah:
        ctx.use_engine(ContainerEngine.BUILDAH)
    options = deployer.DeployOptions(
        namespace=namespace,
        tag=tag,
        push=push,
        push_url=push_url,
        pull_url=pull_url,
        docker_options=docker_options,
        buildah_options=buildah_options,
        knative=knative,
        generate_only=generate_only,
        force=force,
        file=file,
    )
    deployer.deploy(ctx, options)


@deploy.command("delete")
@click.option("-n", "--namespace", default=operator.DEFAULT_NAMESPACE, help="Target namespace")
@click.option("-f", "--file", default=pipeline.DEFAULT_DEPLOY_FILE, help="Deployment manifest")
@click.pass_context
def deploy_delete(click_ctx, namespace, file):
    """Delete a deployment using its manifest."""
    deployer.deploy_delete(_ctx(click_ctx), file, namespace)


# -----------------------------------------------------------------------------
# REPOSITORIES
# -----------------------------------------------------------------------------


output_option = click.option("-o", "--output", type=click.Choice(["json", "yaml"]), default=None, help="Output format")


@cli.command("list")
@click.argument("repo", required=False)
@output_option
@click.pass_context
def list_stacks(click_ctx, repo, output):
    """List the stacks in every repository, or in one."""
    ctx = _ctx(click_ctx)
    registry = _registry(ctx)
    if output:
        _emit(registry.index_output(repo).to_yaml_dict(), output)
        return
    rows = registry.list_rows(repo)
    registry.warn_unsupported()
    ctx.log.render(registry.stacks_table(rows))


@cli.group()
def repo():
    """Manage stack repositories."""


@repo.command("add")
@click.argument("name")
@click.argument("url")
@click.pass_context
def repo_add(click_ctx, name, url):
    """Add a repository index."""
    _registry(_ctx(click_ctx)).add(name, url)


@repo.command("remove")
@click.argument("name")
@click.pass_context
def repo_remove(click_ctx, name):
    """Remove a repository."""
    _registry(_ctx(click_ctx)).remove(name)


@repo.command("list")
@output_option
@click.pass_context
def repo_list(click_ctx, output):
    """List configured repositories."""
    ctx = _ctx(click_ctx)
    registry = _registry(ctx)
    if output:
        _emit(registry.load().to_yaml_dict(), output)
        return
    ctx.log.render(registry.repos_table())


@repo.command("set-default")
@click.argument("name")
@click.pass_context
def repo_set_default(click_ctx, name):
    """Make a repository the default."""
    _registry(_ctx(click_ctx)).set_default(name)


# -----------------------------------------------------------------------------
# OPERATOR
# -----------------------------------------------------------------------------


@cli.group("operator")
def operator_group():
    """Install or remove the Appsody operator."""


@operator_group.command("install")
@click.option("-n", "--namespace", default=operator.DEFAULT_NAMESPACE, help="Namespace for the operator")
@click.option("-w", "--watchspace", default="", help="Namespace the operator watches")
@click.option("--watch-all", is_flag=True, help="Watch every namespace")
@click.pass_context
def operator_install(click_ctx, namespace, watchspace, watch_all):
    """Install the operator."""
    if watchspace and watch_all:
        raise UserInputError("--watchspace and --watch-all cannot be used together")
    operator.install(_ctx(click_ctx), namespace, watchspace, watch_all)


@operator_group.command("uninstall")
@click.option("-n", "--namespace", default=operator.DEFAULT_NAMESPACE, help="Namespace of the operator")
@click.option("--force", is_flag=True, help="Also remove outstanding applications")
@click.pass_context
def operator_uninstall(click_ctx, namespace, force):
    """Uninstall the operator."""
    operator.uninstall(_ctx(click_ctx), namespace, force)


# -----------------------------------------------------------------------------
# STACK AUTHORING
# -----------------------------------------------------------------------------


@cli.group()
def stack():
    """Tools for stack authors."""


@stack.command("create")
@click.argument("name")
@click.option("--copy", default=toolkit.DEFAULT_COPY, help="Stack to copy, as <repo>/<stack>")
@click.pass_context
def stack_create(click_ctx, name, copy):
    """Create a new stack from an existing one."""
    ctx = _ctx(click_ctx)
    toolkit.create(ctx, _registry(ctx), name, copy)


@stack.command("lint")
@click.argument("path", required=False, type=click.Path(file_okay=False))
@click.pass_context
def stack_lint(click_ctx, path):
    """Check a stack's layout, stack.yaml and Dockerfile-stack."""
    ctx = _ctx(click_ctx)
    lint_stack(ctx.log, Path(path) if path else ctx.project_dir)


@stack.command("package")
@click.option("--image-namespace", default=toolkit.DEFAULT_IMAGE_NAMESPACE, help="Namespace for the stack image")
@click.option("--image-registry", default="", help="Registry for the stack image")
@click.option("--buildah", is_flag=True, help="Use buildah instead of docker")
@click.pass_context
def stack_package(click_ctx, image_namespace, image_registry, buildah):
    """Build the stack image and add it to the dev.local repository."""
    ctx = _ctx(click_ctx)
    if buildah:
        ctx.use_engine(ContainerEngine.BUILDAH)
    toolkit.package(ctx, _registry(ctx), image_namespace, image_registry)


@stack.command("validate")
@click.option("--no-lint", is_flag=True, help="Skip lint")
@click.option("--no-package", is_flag=True, help="Skip package")
@click.option("--image-namespace", default=toolkit.DEFAULT_IMAGE_NAMESPACE, help="Namespace for the stack image")
@click.option("--image-registry", default="", help="Registry for the stack image")
@click.pass_context
def stack_validate(click_ctx, no_lint, no_package, image_namespace, image_registry):
    """Lint, package, then init, run, test and build every template."""
    ctx = _ctx(click_ctx)
    options = ValidateOptions(
        no_lint=no_lint, no_package=no_package, image_namespace=image_namespace, image_registry=image_registry
    )
    validate(ctx, _registry(ctx), options)


@stack.command("add-to-repo")
@click.argument("repo_name")
@click.option("--release-url", default=toolkit.DEFAULT_RELEASE_URL, help="Base URL of the release archives")
@click.option("--use-local-cache", is_flag=True, help="Reuse a previously written local index")
@click.pass_context
def stack_add_to_repo(click_ctx, repo_name, release_url, use_local_cache):
    """Add the current stack to a repository index."""
    ctx = _ctx(click_ctx)
    toolkit.add_to_repo(ctx, _registry(ctx), repo_name, release_url, use_local_cache)


@stack.command("remove-from-repo")
@click.argument("repo_name")
@click.argument("stack_id")
@click.option("--use-local-cache", is_flag=True, help="Reuse a previously written local index")
@click.pass_context
def stack_remove_from_repo(click_ctx, repo_name, stack_id, use_local_cache):
    """Remove a stack from a repository index."""
    ctx = _ctx(click_ctx)
    toolkit.remove_from_repo(ctx, _registry(ctx), repo_name, stack_id, use_local_cache)


# -----------------------------------------------------------------------------
# ENTRY POINT
# -----------------------------------------------------------------------------


def main(args: Optional[list[str]] = None, log: Optional[Log] = None) -> int:
    """Run the CLI and return its exit status."""
    state: dict = {"log": log}
    try:
        result = cli.main(args=args, prog_name="appsody", standalone_mode=False, obj=state)
    except AppsodyError as e:
        ctx = state.get("ctx")
        out = ctx.log if ctx is not None else (log or Log())
        out.error(str(e))
        out.debug(traceback.format_exc())
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
