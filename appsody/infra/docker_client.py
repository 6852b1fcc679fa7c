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
# CONTAINER DRIVER
# -----------------------------------------------------------------------------
# Responsibility: One facade over the "docker" and "buildah" binaries.
#
# Pull, run, build, stop, remove, inspect, tag, push, ps, image ls, commit
# and "run a bash command in a throwaway container". Both engines differ in
# flags and in the JSON shape of inspect; callers only see ImageConfig.
#
# Per invocation caches:
# - images already pulled (or found locally) are not checked again
# - inspect results are kept per image reference
#
# This is part of the Infrastructure layer. Reachability of the Docker
# daemon is checked through the Docker SDK (DockerProvider); everything
# else goes through the CLI so the user's docker context and credentials
# apply unchanged.
# -----------------------------------------------------------------------------

import json
import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import docker
from docker.errors import DockerException

from appsody.domain.errors import (
    BuildFailed,
    ContainerEngineError,
    InspectFailed,
    InvalidOption,
    NotInstalled,
    PullFailed,
    RunFailed,
)
from appsody.domain.models import ContainerEngine, PullPolicy
from appsody.infra.log import Log
from appsody.infra.process import ProcessError, format_command, run_and_listen, run_capture

# Flags the dev loop sets itself; users may not pass them through.
FORBIDDEN_RUN_OPTIONS = re.compile(
    r"^((--help)|(-p)|(--publish)|(--publish-all)|(-P)|(-u)|(--user)|(--name)|(--network)"
    r"|(-t)|(--tty)|(--rm)|(--entrypoint)|(-v)|(--volume))((=?$)|(=.*))"
)

# Flags the build pipeline sets itself.
FORBIDDEN_BUILD_OPTIONS = re.compile(r"^((-t)|(--tag)|(-f)|(--file))((=?$)|(=.*))")

PUSH_DEPRECATION_NOTICE = "[DEPRECATION NOTICE] registry v2"


@dataclass
class ImageConfig:
    """Engine-independent view of an image's config block."""

    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    exposed_ports: list[str] = field(default_factory=list)


@dataclass
class ContainerInfo:
    """One row of `docker ps`."""

    id: str
    image: str
    status: str
    name: str
    command: str = ""


def check_run_options(options: Sequence[str]) -> None:
    """
    Reject pass-through run options that collide with flags the CLI sets.

    Raises:
        InvalidOption: Naming the first offending option.
    """
    for option in options:
        if FORBIDDEN_RUN_OPTIONS.match(option):
            raise InvalidOption(f"{option} is not allowed in --docker-options", option=option)


def check_build_options(options: Sequence[str]) -> None:
    for option in options:
        if FORBIDDEN_BUILD_OPTIONS.match(option):
            raise InvalidOption(f"{option} is not allowed in --docker-options", option=option)


def parse_image_config(raw: str, engine: ContainerEngine) -> ImageConfig:
    """
    Normalize `docker image inspect` / `buildah inspect` JSON.

    docker returns a one-element list whose element carries "Config";
    buildah returns an object carrying "config".

    Raises:
        InspectFailed: If the JSON is malformed or lacks the config block.
    """
    try:
        data = json.loads(raw)
        if engine == ContainerEngine.BUILDAH:
            config = data["config"]
        else:
            config = data[0]["Config"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise InspectFailed(
            f"error unmarshaling data from inspect command - exiting: {e}", op="inspect"
        )

    config = config or {}
    env: dict[str, str] = {}
    for item in config.get("Env") or []:
        key, _, value = item.partition("=")
        env[key] = value
    ports = [port.split("/")[0] for port in (config.get("ExposedPorts") or {})]
    return ImageConfig(env=env, labels=dict(config.get("Labels") or {}), exposed_ports=ports)


class DockerProvider:
    """
    Docker daemon reachability probe built on the Docker SDK.

    The CLI drives docker through its binary; this only answers "is the
    engine up" before a dev loop starts.
    """

    def __init__(self) -> None:
        self._client: docker.DockerClient | None = None

    def is_connected(self) -> bool:
        """
        Check if the Docker daemon answers a ping.

        Returns:
            True if Docker is connected and responsive.
        """
        try:
            if self._client is None:
                self._client = docker.from_env()
            self._client.ping()
            return True
        except DockerException:
            return False


class ContainerDriver:
    """
    Uniform facade over the docker and buildah command lines.

    Mutating operations honour dry_run by logging the intended command and
    doing nothing. Read-only ones (inspect, image ls, ps) always run.
    """

    def __init__(
        self, log: Log, engine: ContainerEngine = ContainerEngine.DOCKER, dry_run: bool = False
    ) -> None:
        self.log = log
        self.engine = ContainerEngine(engine)
        self.dry_run = dry_run
        self._pulled: set[str] = set()
        self._inspected: dict[str, ImageConfig] = {}

    @property
    def binary(self) -> str:
        return self.engine.value

    @property
    def is_buildah(self) -> bool:
        return self.engine == ContainerEngine.BUILDAH

    def _sink(self) -> Callable[[str], None]:
        return self.log.buildah if self.is_buildah else self.log.docker

    def _stream(self, args: Sequence[str], op: str, error_cls=ContainerEngineError) -> None:
        try:
            code = run_and_listen(self.log, [self.binary, *args], self._sink(), dry_run=self.dry_run)
        except ProcessError as e:
            raise NotInstalled(str(e), op=op)
        if code != 0:
            raise error_cls(
                f"{self.binary} {op} command failed: exit status {code}", op=op, exit_code=code
            )

    def _capture(self, args: Sequence[str], op: str) -> str:
        cmd = [self.binary, *args]
        self.log.debug(f"Running command: {format_command(cmd)}")
        try:
            result = run_capture(cmd)
        except ProcessError as e:
            raise NotInstalled(str(e), op=op)
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            raise ContainerEngineError(
                f"{self.binary} {op} command failed: {output}",
                op=op,
                exit_code=result.returncode,
                output=output,
            )
        return result.stdout

    def ensure_available(self) -> None:
        """
        Raises:
            NotInstalled: If the selected engine cannot be used.
        """
        if self.is_buildah:
            if shutil.which("buildah") is None:
                raise NotInstalled("buildah does not appear to be installed", op="check")
            return
        if not DockerProvider().is_connected():
            raise NotInstalled(
                "Docker does not appear to be running. Start the Docker daemon and try again.",
                op="check",
            )

    # -- images -------------------------------------------------------------

    def image_ls(self, ref: str) -> list[str]:
        """Return local image ids matching ref (empty when absent)."""
        if self.is_buildah:
            args = ["images", "-q", ref]
        else:
            args = ["image", "ls", "-q", ref]
        try:
            output = self._capture(args, "image ls")
        except ContainerEngineError:
            return []
        return [line for line in output.splitlines() if line.strip()]

    def pull_policy(self, image: str) -> PullPolicy:
        if "dev.local/" in image:
            return PullPolicy.IF_NOT_PRESENT
        value = os.environ.get("APPSODY_PULL_POLICY", "").upper()
        if value == "IFNOTPRESENT":
            return PullPolicy.IF_NOT_PRESENT
        return PullPolicy.ALWAYS

    def pull(self, image: str, policy: Optional[PullPolicy] = None) -> None:
        """
        Make sure image is available locally, pulling per policy.

        Raises:
            PullFailed: If the image is neither pullable nor present locally.
        """
        if image in self._pulled:
            return
        policy = policy or self.pull_policy(image)
        self.log.debug(f"Pull policy {policy.value} for image {image}")

        if policy == PullPolicy.IF_NOT_PRESENT and self.image_ls(image):
            self.log.info(f"Image {image} found locally")
            self._pulled.add(image)
            return

        if self.dry_run:
            self.log.info(f"Dry Run - Skipping command: {self.binary} pull {image}")
            self._pulled.add(image)
            return

        try:
            self._stream(["pull", image], "pull")
        except ContainerEngineError as e:
            if not self.image_ls(image):
                raise PullFailed(
                    f"Could not find the image either in docker hub or locally: {image}",
                    op="pull",
                    exit_code=e.exit_code,
                )
            self.log.warning(f"Using local cache for image {image}")
        self._pulled.add(image)

    def inspect(self, image: str) -> ImageConfig:
        """
        Inspect an image once per invocation.

        Raises:
            InspectFailed: If the engine fails or its output is malformed.
        """
        if image in self._inspected:
            return self._inspected[image]
        args = ["inspect", image] if self.is_buildah else ["image", "inspect", image]
        try:
            raw = self._capture(args, "inspect")
        except ContainerEngineError as e:
            raise InspectFailed(str(e), op="inspect", exit_code=e.exit_code, output=e.output)
        config = parse_image_config(raw, self.engine)
        self._inspected[image] = config
        return config

    def get_env(self, image: str, key: str) -> Optional[str]:
        return self.inspect(image).env.get(key)

    def build(
        self,
        context_dir: str,
        dockerfile: str,
        tags: Sequence[str],
        options: Sequence[str] = (),
        labels: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Raises:
            BuildFailed: If the engine reports a non-zero status.
        """
        args: list[str] = ["bud"] if self.is_buildah else ["build"]
        for tag in tags:
            args += ["-t", tag]
        args += list(options)
        for key, value in sorted((labels or {}).items()):
            args += ["--label", f"{key}={value}"]
        args += ["-f", str(dockerfile), str(context_dir)]
        self._stream(args, "build", error_cls=BuildFailed)

    def tag(self, source: str, target: str) -> None:
        args = ["tag", source, target] if self.is_buildah else ["image", "tag", source, target]
        self._stream(args, "tag")

    def push(self, image: str) -> None:
        """Push image; the registry v2 deprecation notice is not a failure."""
        lines: list[str] = []

        def sink(line: str) -> None:
            lines.append(line)
            self._sink()(line)

        cmd = [self.binary, "push", image]
        try:
            code = run_and_listen(self.log, cmd, sink, dry_run=self.dry_run)
        except ProcessError as e:
            raise NotInstalled(str(e), op="push")
        if code != 0 and not any(PUSH_DEPRECATION_NOTICE in line for line in lines):
            raise ContainerEngineError(
                f"Could not push the image {image}: exit status {code}", op="push", exit_code=code
            )

    def commit(self, container: str, image: str) -> None:
        self._stream(["commit", container, image], "commit")

    # -- containers ---------------------------------------------------------

    def run(self, args: Sequence[str], interactive: bool = False) -> int:
        """
        Start a container in the foreground, relaying its output.

        Returns:
            The exit status; interpretation is left to the caller.
        """
        try:
            return run_and_listen(
                self.log,
                [self.binary, "run", *args],
                self.log.container,
                dry_run=self.dry_run,
                interactive=interactive,
            )
        except ProcessError as e:
            raise NotInstalled(str(e), op="run")

    def run_bash(
        self, image: str, command: str, options: Sequence[str] = (), remove: bool = True
    ) -> str:
        """
        Run `/bin/bash -c command` in a throwaway container and return stdout.

        Raises:
            RunFailed: If the container exits non-zero.
        """
        args = ["run", *(["--rm"] if remove else []), *options]
        args += ["--entrypoint", "/bin/bash", image, "-c", command]
        try:
            return self._capture(args, "run").strip()
        except ContainerEngineError as e:
            raise RunFailed(str(e), op="run", exit_code=e.exit_code, output=e.output)

    def create(self, name: str, image: str, options: Sequence[str] = ()) -> None:
        """`docker create` or `buildah from` a named working container."""
        verb = "from" if self.is_buildah else "create"
        self._stream([verb, "--name", name, *options, image], verb)

    def copy_out(self, name: str, source: str, target: str, directory: bool = True) -> None:
        """Copy a path out of a created container into the host filesystem."""
        if self.is_buildah:
            if directory:
                script = f"x=`buildah mount {name}`; cp -rf $x/{source}/* {target}"
            else:
                script = f"x=`buildah mount {name}`; cp -f $x/{source} {target}"
            try:
                code = run_and_listen(
                    self.log, ["/bin/sh", "-c", script], self.log.buildah, dry_run=self.dry_run
                )
            except ProcessError as e:
                raise NotInstalled(str(e), op="mount")
            if code != 0:
                raise ContainerEngineError(
                    f"buildah mount / copy command failed: exit status {code}",
                    op="cp",
                    exit_code=code,
                )
            return
        self._stream(["cp", f"{name}:{source}", target], "cp")

    def stop(self, name: str) -> None:
        self._stream(["stop", name], "stop")

    def remove(self, name: str, force: bool = False) -> None:
        if self.is_buildah:
            args = ["rm", name]
        else:
            args = ["rm", name, "-f"] if force else ["rm", name]
        self._stream(args, "rm")

    def ps(self, filter_text: str = "") -> list[ContainerInfo]:
        """
        List running containers, optionally keeping those whose command
        contains filter_text.
        """
        separator = "$!$!$!"
        fmt = separator.join(["{{.ID}}", "{{.Image}}", "{{.Status}}", "{{.Names}}", "{{.Command}}"])
        output = self._capture(["ps", "--no-trunc", "--format", fmt], "ps")
        containers = []
        for line in output.splitlines():
            fields = line.split(separator)
            if len(fields) < 5:
                continue
            if filter_text and filter_text not in fields[4]:
                continue
            containers.append(
                ContainerInfo(
                    id=fields[0][:12],
                    image=fields[1],
                    status=fields[2],
                    name=fields[3],
                    command=fields[4],
                )
            )
        return containers

    def volume_ls(self) -> list[str]:
        output = self._capture(["volume", "ls", "-q"], "volume ls")
        return [line for line in output.splitlines() if line.strip()]
