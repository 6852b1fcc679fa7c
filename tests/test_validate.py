# =============================================================================
# APPSODY STACK VALIDATE TESTS
# =============================================================================
# Tests for `appsody stack validate` with the CLI invocations stubbed.
# =============================================================================

import threading
import time
from unittest.mock import patch

import pytest
import yaml

from appsody.core.repository import RepositoryRegistry
from appsody.core.validate import StackValidator, ValidateOptions, validate
from appsody.domain.errors import ContainerEngineError, UserInputError
from appsody.infra.docker_client import ContainerInfo

SKIP_BUILD_STEPS = ValidateOptions(no_lint=True, no_package=True)
REAL_SLEEP = time.sleep


class RecordingRunner:
    """
    Stands in for invoking the CLI. `run` blocks until `stop` like the real
    command; anything named in fail exits 1 straight away.
    """

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)
        self.stopped = threading.Event()

    def __call__(self, args, cwd):
        self.calls.append(list(args))
        if args[0] in self.fail:
            return 1
        if args[0] == "run":
            self.stopped.wait(5)
        elif args[0] == "stop":
            self.stopped.set()
        return 0


@pytest.fixture
def stack_ctx(ctx, tmp_path):
    stack = tmp_path / "test-stack"
    (stack / "image").mkdir(parents=True)
    (stack / "templates" / "simple").mkdir(parents=True)
    (stack / "stack.yaml").write_text(yaml.safe_dump({"name": "Test", "version": "0.1.0"}))
    ctx.project_dir = stack
    ctx.driver.ps.return_value = [
        ContainerInfo(id="abc", image="dev.local/test-stack:0.1", status="Up", name="appsody-validate-simple")
    ]
    return ctx


@pytest.fixture
def registry(log, repository_file):
    return RepositoryRegistry(log, repository_file)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("appsody.core.validate.time.sleep"):
        yield


class TestStackValidator:
    """Test the validation sequence."""

    def test_all_steps_pass(self, stack_ctx, registry, logged):
        runner = RecordingRunner()

        report = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, runner).run()

        assert report.ok
        assert len(report.passed) == 4
        assert runner.calls[0] == ["init", "dev.local/test-stack", "simple"]
        assert ["stop", "--name", "appsody-validate-simple"] in runner.calls
        assert ["test", "--no-watcher"] in runner.calls
        assert runner.calls[-1] == ["build"]
        assert "Total PASSED: 4" in logged()

    def test_init_failure_skips_template(self, stack_ctx, registry, logged):
        runner = RecordingRunner(fail={"init"})

        report = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, runner).run()

        assert report.failed == ["appsody init for template: simple"]
        assert runner.calls == [["init", "dev.local/test-stack", "simple"]]
        assert "Total FAILED: 1" in logged()

    def test_container_never_starts(self, stack_ctx, registry):
        stack_ctx.driver.ps.return_value = []

        report = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, RecordingRunner()).run()

        assert report.failed == ["appsody run for template: simple"]
        assert len(report.passed) == 3

    def test_lint_failure_recorded(self, stack_ctx, registry):
        options = ValidateOptions(no_package=True)
        with patch("appsody.core.validate.stack_lint.lint", side_effect=UserInputError("LINT TEST FAILED")):
            report = StackValidator(stack_ctx, registry, options, RecordingRunner()).run()
        assert "appsody stack lint" in report.failed

    def test_package_runs(self, stack_ctx, registry):
        options = ValidateOptions(no_lint=True, image_registry="my.reg:5000")
        with patch("appsody.core.validate.toolkit.package") as package:
            StackValidator(stack_ctx, registry, options, RecordingRunner()).run()
        package.assert_called_once_with(stack_ctx, registry, "dev.local", "my.reg:5000")

    def test_not_a_stack(self, ctx, registry):
        with pytest.raises(UserInputError, match="root of the stack"):
            StackValidator(ctx, registry, SKIP_BUILD_STEPS, RecordingRunner()).run()


class TestRunStep:
    """Test the `appsody run` health wait."""

    def test_container_never_appears(self, stack_ctx, registry, tmp_path, logged):
        stack_ctx.driver.ps.return_value = []
        runner = RecordingRunner()

        ok = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, runner).run_step("simple", tmp_path)

        assert not ok
        assert runner.calls[-1] == ["stop", "--name", "appsody-validate-simple"]
        assert stack_ctx.driver.ps.call_count == 30
        assert "did not start within 60s" in logged()

    def test_ps_failure_still_stops(self, stack_ctx, registry, tmp_path, logged):
        stack_ctx.driver.ps.side_effect = ContainerEngineError("docker ps failed", op="ps")
        runner = RecordingRunner()

        validator = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, runner)
        ok = validator.run_step("simple", tmp_path)

        assert not ok
        assert sorted(runner.calls) == [
            ["run", "--name", "appsody-validate-simple"],
            ["stop", "--name", "appsody-validate-simple"],
        ]
        assert validator.report.failed == ["appsody run for template: simple"]
        assert "docker ps failed" in logged()

    def test_run_exits_early(self, stack_ctx, registry, tmp_path, logged):
        stack_ctx.driver.ps.return_value = []
        runner = RecordingRunner(fail={"run"})

        with patch("appsody.core.validate.time.sleep", side_effect=lambda _: REAL_SLEEP(0.01)):
            ok = StackValidator(stack_ctx, registry, SKIP_BUILD_STEPS, runner).run_step("simple", tmp_path)

        assert not ok
        assert stack_ctx.driver.ps.call_count < 5
        assert ["stop", "--name", "appsody-validate-simple"] in runner.calls
        assert "appsody run exited with status 1" in logged()


class TestValidate:
    """Test the command-level result."""

    def test_failure_raises(self, stack_ctx, registry):
        with patch.object(StackValidator, "_run_cli", return_value=1):
            with pytest.raises(UserInputError, match="1 step\\(s\\) FAILED"):
                validate(stack_ctx, registry, SKIP_BUILD_STEPS)
