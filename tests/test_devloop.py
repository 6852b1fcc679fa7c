# =============================================================================
# APPSODY DEV LOOP TESTS
# =============================================================================
# Tests for run / debug / test argument assembly and exit handling.
# =============================================================================

import pytest

from appsody.core.devloop import (
    CONTROLLER_MOUNT,
    DevOptions,
    check_port_input,
    controller_image,
    controller_path,
    port_args,
    run_args,
    run_dev,
)
from appsody.domain.errors import DevLoopFailed, InternalError, InvalidOption, UserInputError
from appsody.domain.models import ContainerEngine, DevMode


@pytest.fixture
def app_ctx(ctx, monkeypatch):
    (ctx.project_dir / ".appsody-config.yaml").write_text(
        "stack: docker.io/appsody/nodejs-express:0.2\nproject-name: demo\n"
    )
    monkeypatch.setenv("APPSODY_MOUNT_CONTROLLER", "/opt/appsody/appsody-controller")
    monkeypatch.delenv("APPSODY_USER_RUN_AS_LOCAL", raising=False)
    monkeypatch.delenv("CODEWIND_PROJECT_ID", raising=False)
    ctx.driver.run.return_value = 0
    return ctx


class TestPortInput:
    """Test -p validation."""

    def test_valid(self):
        check_port_input(["3000:3000", "8080:80", "65535:1"])

    def test_missing_separator(self):
        with pytest.raises(UserInputError, match="separator is missing"):
            check_port_input(["3000"])

    def test_out_of_range(self):
        with pytest.raises(UserInputError, match="numeric port input: 70000:3000"):
            check_port_input(["70000:3000"])


class TestPortArgs:
    """Test how user and stack ports combine."""

    def test_stack_ports(self):
        assert port_args([], False, ["3000", "9229"], "3000") == ["-p", "3000:3000", "-p", "9229:9229"]

    def test_user_mapping_overrides_stack_port(self):
        assert port_args(["4000:3000"], False, ["3000", "9229"], "3000") == [
            "-p",
            "4000:3000",
            "-p",
            "9229:9229",
        ]

    def test_unexposed_port_env_is_mapped(self):
        assert port_args([], False, ["9229"], "8080") == ["-p", "9229:9229", "-p", "8080:8080"]

    def test_publish_all(self):
        assert port_args([], True, ["3000"], "3000") == ["-P"]

    def test_publish_all_with_unexposed_port_env(self):
        assert port_args([], True, ["3000"], "8080") == ["-P", "-p", "8080:8080"]


class TestRunArgs:
    """Test the docker run argument list."""

    def test_full_argument_list(self, app_ctx, stack_image_config):
        options = DevOptions(
            container_name="demo",
            ports=["4000:3000"],
            network="dev-net",
            docker_options="-e A=1",
            no_watcher=True,
        )

        args = run_args(app_ctx, options, DevMode.DEBUG, "img", stack_image_config, ["-v", "a:b"])

        assert args == [
            "--rm",
            "-p", "4000:3000",
            "-p", "9229:9229",
            "--name", "demo",
            "--network", "dev-net",
            "-v", "a:b",
            "-e", "A=1",
            "-t", "--entrypoint", CONTROLLER_MOUNT, "img", "--mode=debug",
            "--no-watcher",
        ]

    def test_verbose_and_interactive(self, app_ctx, stack_image_config):
        app_ctx.verbose = True
        args = run_args(app_ctx, DevOptions(container_name="demo", interactive=True), DevMode.RUN, "img", stack_image_config, [])
        assert args[-3:] == ["--mode=run", "-v", "--interactive"]
        assert "-i" in args


class TestRunDev:
    """Test the dev container lifecycle with a mocked engine."""

    def test_defaults_from_project(self, app_ctx):
        run_dev(app_ctx, DevOptions(), DevMode.RUN)

        args = app_ctx.driver.run.call_args[0][0]
        assert args[args.index("--name") + 1] == "demo"
        assert "demo-deps:/project/user-app/node_modules" in args
        assert f"/opt/appsody/appsody-controller:{CONTROLLER_MOUNT}" in args
        app_ctx.driver.pull.assert_called_once_with("docker.io/appsody/nodejs-express:0.2")

    def test_clean_exit(self, app_ctx, logged):
        run_dev(app_ctx, DevOptions(), DevMode.TEST)
        assert "Closing down development environment." in logged()

    def test_interrupted(self, app_ctx, logged):
        app_ctx.driver.run.return_value = 2
        run_dev(app_ctx, DevOptions(), DevMode.RUN)
        assert "development environment was interrupted" in logged()

    def test_failure(self, app_ctx):
        app_ctx.driver.run.return_value = 1
        with pytest.raises(DevLoopFailed, match="Error in 'appsody run': exit status 1") as exc:
            run_dev(app_ctx, DevOptions(), DevMode.RUN)
        assert exc.value.code == 1

    def test_forbidden_docker_option(self, app_ctx):
        with pytest.raises(InvalidOption):
            run_dev(app_ctx, DevOptions(docker_options="--name other"), DevMode.RUN)
        app_ctx.driver.run.assert_not_called()

    def test_deprecated_stack_warns(self, app_ctx, stack_image_config, logged):
        stack_image_config.labels["dev.appsody.stack.deprecated"] = "use nodejs instead"
        run_dev(app_ctx, DevOptions(), DevMode.RUN)
        assert "Stack deprecated: use nodejs instead" in logged()

    def test_buildah_runs_in_cluster(self, app_ctx):
        app_ctx.dry_run = True
        app_ctx.engine = ContainerEngine.BUILDAH

        run_dev(app_ctx, DevOptions(), DevMode.RUN)

        app_ctx.driver.run.assert_not_called()
        assert app_ctx.cluster.apply.call_count == 3


class TestController:
    """Test locating the controller binary."""

    def test_env_override(self, ctx, monkeypatch):
        monkeypatch.setenv("APPSODY_MOUNT_CONTROLLER", "/custom/controller")
        assert controller_path(ctx) == "/custom/controller"

    def test_copied_to_home(self, ctx, tmp_path, monkeypatch):
        monkeypatch.delenv("APPSODY_MOUNT_CONTROLLER", raising=False)
        source = tmp_path / "bin"
        source.mkdir()
        (source / "appsody-controller").write_bytes(b"\x7fELF")

        path = controller_path(ctx, source)

        assert path == str(ctx.controller_path)
        assert ctx.controller_path.read_bytes() == b"\x7fELF"
        assert controller_path(ctx, source) == path

    def test_missing(self, ctx, tmp_path, monkeypatch):
        monkeypatch.delenv("APPSODY_MOUNT_CONTROLLER", raising=False)
        with pytest.raises(InternalError, match="Could not find appsody-controller"):
            controller_path(ctx, tmp_path)

    def test_controller_image(self, monkeypatch):
        monkeypatch.delenv("APPSODY_CONTROLLER_IMAGE", raising=False)
        monkeypatch.setenv("APPSODY_CONTROLLER_VERSION", "0.4.0")
        assert controller_image() == "appsody/init-controller:0.4.0"
