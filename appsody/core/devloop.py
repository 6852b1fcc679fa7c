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
# DEVELOPMENT LOOP - run / debug / test
# -----------------------------------------------------------------------------
# Responsibility: Start the dev container for a project: the stack image
# with the project mounted, the controller binary as entrypoint, the stack's
# ports published, and Ctrl-C relayed as a container stop.
#
# Flow:
# 1. Load project config and check the engine is reachable
# 2. Pull + inspect the stack image
# 3. Volumes: APPSODY_MOUNTS, the deps volume, the controller binary
# 4. Ports: user -p mappings merged with the stack's exposed ports
# 5. docker run ... --entrypoint /appsody/appsody-controller IMAGE --mode=M
#
# Under buildah the loop runs in the cluster instead: a Deployment,
# Service and Ingress are applied and the pod logs are followed.
# -----------------------------------------------------------------------------

import hashlib
import os
import re
import shutil
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from appsody.core.context import Context
from appsody.core.manifests import (
    dev_deployment,
    dev_ingress,
    dev_service,
    extract_docker_env_vars,
    ingress_port,
    split_docker_options,
    write_manifest,
)
from appsody.core.mounts import (
    deps_volume_args,
    stack_config,
    volume_args,
    warn_if_deprecated,
)
from appsody.domain.errors import (
    AppsodyError,
    DevLoopFailed,
    InternalError,
    UserInputError,
)
from appsody.domain.models import DevMode
from appsody.infra.docker_client import ImageConfig, check_run_options
from appsody.infra.process import ProcessError, run_and_listen

CONTROLLER_NAME = "appsody-controller"
CONTROLLER_MOUNT = "/appsody/appsody-controller"
CONTROLLER_IMAGE = "appsody/init-controller"
CONTROLLER_VERSION = "0.3.3"

PORT_PATTERN = re.compile(
    r"^([0-9]{1,4}|[1-5][0-9]{4}|6[0-4][0-9]{3}|65[0-4][0-9]{2}|655[0-2][0-9]|6553[0-5])$"
)

# Exit statuses that mean the user pressed Ctrl-C (or the container was
# stopped by our own signal handler).
INTERRUPT_CODES = {-signal.SIGINT, -signal.SIGTERM, 2}


@dataclass
class DevOptions:
    """Flags shared by run, debug and test."""

    container_name: str = ""
    ports: list[str] = field(default_factory=list)
    publish_all: bool = False
    network: str = ""
    deps_volume: str = ""
    docker_options: str = ""
    interactive: bool = False
    no_watcher: bool = False


def check_port_input(ports: list[str]) -> None:
    """
    Raises:
        UserInputError: If a mapping lacks ":" or either side is not a port.
    """
    for port in ports:
        if ":" not in port:
            problem = f"The port input: {port} is not valid as the : separator is missing."
        else:
            host, container = port.split(":")[:2]
            if PORT_PATTERN.match(host) and PORT_PATTERN.match(container):
                continue
            problem = f"The numeric port input: {port} is not valid."
        raise UserInputError(f"Ports provided as input to the command are not valid: {problem}")


def port_args(
    user_ports: list[str],
    publish_all: bool,
    exposed_ports: list[str],
    container_port: str = "",
) -> list[str]:
    """
    Compute the -P / -p arguments for docker run.

    User mappings are always emitted and win over a stack port with the same
    container side. With publish_all, -P covers the exposed ports and only a
    PORT that the image does not expose is mapped explicitly.
    """
    exposed = list(exposed_ports)
    port_is_exposed = container_port in exposed
    if container_port and not port_is_exposed:
        exposed.append(container_port)

    args: list[str] = []
    if publish_all:
        args.append("-P")
        exposed = [container_port] if container_port and not port_is_exposed else []

    mappings = list(user_ports)
    overridden = {p.split(":")[1] for p in user_ports}
    for port in exposed:
        if port not in overridden:
            mappings.append(f"{port}:{port}")
    for mapping in mappings:
        args += ["-p", mapping]
    return args


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _own_executable_dir() -> Path:
    launched = shutil.which(sys.argv[0]) or sys.argv[0]
    return Path(launched).resolve().parent


def controller_path(ctx: Context, source_dir: Optional[Path] = None) -> str:
    """
    Return the host path of the controller binary to mount.

    The binary shipped next to the CLI is copied into the home directory
    when the cached copy is missing or its checksum differs.
    APPSODY_MOUNT_CONTROLLER replaces all of this with a fixed path.

    Raises:
        InternalError: If no controller binary ships with the CLI.
    """
    override = os.environ.get("APPSODY_MOUNT_CONTROLLER", "")
    if override:
        ctx.log.debug(f"Overriding appsody-controller mount with APPSODY_MOUNT_CONTROLLER env variable: {override}")
        return override

    cached = ctx.controller_path
    source = (source_dir or _own_executable_dir()) / CONTROLLER_NAME
    if not source.is_file():
        if cached.is_file() or ctx.dry_run:
            ctx.log.debug(f"No {CONTROLLER_NAME} found next to the CLI, using {cached}")
            return str(cached)
        raise InternalError(f"Could not find {CONTROLLER_NAME} in {source.parent}")

    if cached.is_file() and _sha256(cached) == _sha256(source):
        ctx.log.debug(f"{CONTROLLER_NAME} in {cached} is up to date")
        return str(cached)
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping copy of {source} to {cached}")
        return str(cached)
    ctx.log.debug(f"Copying {source} to {cached}")
    cached.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, cached)
    cached.chmod(0o755)
    return str(cached)


def controller_image() -> str:
    override = os.environ.get("APPSODY_CONTROLLER_IMAGE", "")
    if override:
        return override
    version = os.environ.get("APPSODY_CONTROLLER_VERSION", "") or CONTROLLER_VERSION
    return f"{CONTROLLER_IMAGE}:{version}"


def _user_args(config: ImageConfig) -> list[str]:
    if config.env.get("APPSODY_USER_RUN_AS_LOCAL", "").lower() != "true" or os.name == "nt":
        return []
    uid, gid = os.getuid(), os.getgid()
    return ["-u", f"{uid}:{gid}", "-e", f"APPSODY_USER={uid}", "-e", f"APPSODY_GROUP={gid}"]


def run_args(
    ctx: Context,
    options: DevOptions,
    mode: DevMode,
    image: str,
    config: ImageConfig,
    volumes: list[str],
) -> list[str]:
    """Assemble the arguments that follow `docker run`."""
    docker_options = split_docker_options(options.docker_options)
    args = ["--rm"]
    args += port_args(
        options.ports, options.publish_all, config.exposed_ports, config.env.get("PORT", "")
    )
    args += ["--name", options.container_name]
    if options.network:
        args += ["--network", options.network]
    args += _user_args(config)
    args += volumes
    if docker_options:
        ctx.log.debug(f'User provided Docker options: "{options.docker_options}"')
        args += docker_options
    if options.interactive:
        args.append("-i")
    args += ["-t", "--entrypoint", CONTROLLER_MOUNT, image, f"--mode={mode.value}"]
    if ctx.verbose:
        args.append("-v")
    if options.no_watcher:
        args.append("--no-watcher")
    if options.interactive:
        args.append("--interactive")
    return args


class _StopOnSignal:
    """Stop the named container on SIGINT/SIGTERM while the loop is running."""

    def __init__(self, ctx: Context, name: str) -> None:
        self.ctx = ctx
        self.name = name
        self._previous: dict = {}

    def _handle(self, signum, frame) -> None:
        self.ctx.log.debug("Inside signal handler for appsody command")
        try:
            self.ctx.driver.stop(self.name)
        except AppsodyError as e:
            self.ctx.log.error(str(e))

    def __enter__(self) -> "_StopOnSignal":
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous[sig] = signal.signal(sig, self._handle)
        return self

    def __exit__(self, *exc) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)


def run_dev(ctx: Context, options: DevOptions, mode: DevMode) -> None:
    """
    Run the project's dev container until it exits.

    Raises:
        NotAnAppsodyProject: Outside a project.
        UserInputError: On bad ports or forbidden docker options.
        DevLoopFailed: If the container exits with a non-interrupt status.
    """
    project = ctx.project.load()
    check_port_input(options.ports)
    check_run_options(split_docker_options(options.docker_options))
    project_name = ctx.project.project_name()
    options.container_name = options.container_name or project_name
    options.deps_volume = options.deps_volume or f"{project_name}-deps"

    if not ctx.dry_run:
        ctx.driver.ensure_available()
    image = ctx.project.stack_image()
    config = stack_config(ctx)
    warn_if_deprecated(ctx.log, config)
    ctx.log.debug(f"Stack image: {image} (configured as {project.stack})")

    volumes = volume_args(ctx.log, config, ctx.project_dir)
    volumes += deps_volume_args(config, options.deps_volume)

    if ctx.is_buildah:
        _run_in_cluster(ctx, options, image, config, volumes)
        return

    volumes += ["-v", f"{controller_path(ctx)}:{CONTROLLER_MOUNT}"]
    args = run_args(ctx, options, mode, image, config, volumes)

    ctx.log.debug(f"Attempting to start image {image} with container name {options.container_name}")
    with _StopOnSignal(ctx, options.container_name):
        code = ctx.driver.run(args, interactive=options.interactive)
    if ctx.dry_run:
        return
    if code == 0:
        ctx.log.info("Closing down development environment.")
    elif code in INTERRUPT_CODES:
        ctx.log.info("Closing down, development environment was interrupted.")
    else:
        raise DevLoopFailed(f"Error in 'appsody {mode.value}': exit status {code}", code)


def _run_in_cluster(
    ctx: Context, options: DevOptions, image: str, config: ImageConfig, volumes: list[str]
) -> None:
    ports = list(config.exposed_ports)
    env_vars = extract_docker_env_vars(options.docker_options)
    ctx.log.debug(f"Docker env vars extracted from docker options: {env_vars}")
    name = options.container_name

    deployment = write_manifest(
        ctx.log,
        ctx.project_dir / "app-deploy.yaml",
        dev_deployment(ctx.log, name, image, controller_image(), ports, volumes, env_vars),
        ctx.dry_run,
    )
    ctx.cluster.apply(str(deployment))
    service = write_manifest(
        ctx.log, ctx.project_dir / "app-service.yaml", dev_service(name, ports), ctx.dry_run
    )
    ctx.cluster.apply(str(service))
    if not os.environ.get("CODEWIND_PROJECT_ID"):
        port = ingress_port(ports)
        if port > 0:
            ingress = write_manifest(
                ctx.log,
                ctx.project_dir / "app-ingress.yaml",
                dev_ingress(name, ctx.cluster.get_master_ip(), port),
                ctx.dry_run,
            )
            ctx.cluster.apply(str(ingress))

    if ctx.dry_run:
        ctx.log.info("Dry Run - Skipping kubectl logs")
        return
    cmd = ["kubectl", "logs", f"deployment/{name}", "-f", "--pod-running-timeout=2m"]
    while True:
        ctx.log.info("Getting the logs ...")
        try:
            code = run_and_listen(ctx.log, cmd, ctx.log.container, interactive=options.interactive)
        except ProcessError as e:
            ctx.log.debug(f"kubectl log error: {e}")
            code = 1
        if code == 0 or code in INTERRUPT_CODES:
            return
        time.sleep(5)
