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
# STACK VALIDATION - `appsody stack validate`
# -----------------------------------------------------------------------------
# Responsibility: Exercise a stack end to end the way a user would.
#
# Sequence: lint -> package -> per template: init, run, test, build.
# Each template step shells out to this same CLI in a scratch project
# directory; a failure is recorded and the sequence moves on.
# -----------------------------------------------------------------------------

import shutil
import sys
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from appsody.core import lint as stack_lint
from appsody.core import toolkit
from appsody.core.context import Context
from appsody.core.repository import RepositoryRegistry
from appsody.domain.errors import AppsodyError, UserInputError
from appsody.domain.models import DEV_LOCAL_REPO_NAME
from appsody.infra.process import run_and_listen

HEALTH_POLL_SECONDS = 2
HEALTH_BUDGET_SECONDS = 60


@dataclass
class ValidateOptions:
    no_lint: bool = False
    no_package: bool = False
    image_namespace: str = toolkit.DEFAULT_IMAGE_NAMESPACE
    image_registry: str = ""


@dataclass
class ValidationReport:
    passed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def record(self, name: str, ok: bool) -> None:
        (self.passed if ok else self.failed).append(name)

    @property
    def ok(self) -> bool:
        return not self.failed


def cli_command() -> list[str]:
    return [sys.executable, "-m", "appsody"]


class StackValidator:
    """Drives one validation run; `runner` is swappable for tests."""

    def __init__(
        self,
        ctx: Context,
        registry: RepositoryRegistry,
        options: ValidateOptions,
        runner: Optional[Callable[[Sequence[str], Path], int]] = None,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.options = options
        self.runner = runner or self._run_cli
        self.report = ValidationReport()

    def _run_cli(self, args: Sequence[str], cwd: Path) -> int:
        cmd = cli_command() + list(args)
        if self.ctx.verbose:
            cmd.append("-v")
        return run_and_listen(self.ctx.log, cmd, self.ctx.log.info, cwd=cwd)

    def step(self, name: str, action: Callable[[], None]) -> bool:
        self.ctx.log.info(f"Running {name}")
        try:
            action()
        except AppsodyError as e:
            self.ctx.log.error(f"{name} failed: {e}")
            self.report.record(name, False)
            return False
        self.report.record(name, True)
        return True

    def cli_step(self, name: str, args: Sequence[str], cwd: Path) -> bool:
        def action() -> None:
            code = self.runner(args, cwd)
            if code != 0:
                raise UserInputError(f"appsody {' '.join(args)} exited with status {code}")

        return self.step(name, action)

    def wait_for_container(self, name: str, worker: threading.Thread) -> bool:
        """Poll `ps` until a container called name shows up or worker exits."""
        waited = 0
        while waited < HEALTH_BUDGET_SECONDS:
            if not worker.is_alive():
                return False
            time.sleep(HEALTH_POLL_SECONDS)
            waited += HEALTH_POLL_SECONDS
            if any(c.name == name for c in self.ctx.driver.ps()):
                return True
        return False

    def run_step(self, template: str, project_dir: Path) -> bool:
        name = f"appsody-validate-{template}"
        codes: list[int] = []
        worker = threading.Thread(
            target=lambda: codes.append(self.runner(["run", "--name", name], project_dir)),
            daemon=True,
        )

        def action() -> None:
            worker.start()
            try:
                healthy = self.wait_for_container(name, worker)
            finally:
                self.runner(["stop", "--name", name], project_dir)
                worker.join()
            if not healthy and codes and codes[0] != 0:
                raise UserInputError(f"appsody run exited with status {codes[0]}")
            if not healthy:
                raise UserInputError(f"Container {name} did not start within {HEALTH_BUDGET_SECONDS}s")

        return self.step(f"appsody run for template: {template}", action)

    def validate_template(self, stack_id: str, template: str) -> None:
        project_dir = Path(tempfile.mkdtemp(prefix=f"appsody-validate-{template}-"))
        try:
            reference = f"{DEV_LOCAL_REPO_NAME}/{stack_id}"
            if not self.cli_step(f"appsody init for template: {template}", ["init", reference, template], project_dir):
                return
            self.run_step(template, project_dir)
            self.cli_step(f"appsody test for template: {template}", ["test", "--no-watcher"], project_dir)
            self.cli_step(f"appsody build for template: {template}", ["build"], project_dir)
        finally:
            shutil.rmtree(project_dir, ignore_errors=True)

    def run(self) -> ValidationReport:
        stack_path = self.ctx.project_dir.resolve()
        toolkit.require_stack_root(stack_path)
        stack_id = stack_path.name
        self.ctx.log.info("#################################################")
        self.ctx.log.info(f"Validating stack: {stack_id}")
        self.ctx.log.info("#################################################")

        if not self.options.no_lint:
            self.step("appsody stack lint", lambda: stack_lint.lint(self.ctx.log, stack_path))
        if not self.options.no_package:
            self.step(
                "appsody stack package",
                lambda: toolkit.package(
                    self.ctx, self.registry, self.options.image_namespace, self.options.image_registry
                ),
            )
        for template in toolkit.template_names(stack_path):
            self.validate_template(stack_id, template)
        self.summarize(stack_id)
        return self.report

    def summarize(self, stack_id: str) -> None:
        log = self.ctx.log
        log.info("@@@@@@@@@@@@@@@ Validate Summary Start @@@@@@@@@@@@@@@@")
        for name in self.report.passed:
            log.info(f"PASSED: {name}")
        for name in self.report.failed:
            log.info(f"FAILED: {name}")
        log.info(f"Total PASSED: {len(self.report.passed)}")
        log.info(f"Total FAILED: {len(self.report.failed)}")
        log.info("@@@@@@@@@@@@@@@@ Validate Summary End @@@@@@@@@@@@@@@@@")


def validate(ctx: Context, registry: RepositoryRegistry, options: ValidateOptions) -> ValidationReport:
    """
    Raises:
        UserInputError: If any step failed.
    """
    report = StackValidator(ctx, registry, options).run()
    if not report.ok:
        raise UserInputError(f"Stack validation failed: {len(report.failed)} step(s) FAILED")
    return report
