# =============================================================================
# APPSODY CONTAINER DRIVER TESTS
# =============================================================================
# Tests for the docker / buildah facade with the binaries stubbed out.
# =============================================================================

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import DockerException

from appsody.domain.errors import BuildFailed, InspectFailed, InvalidOption, PullFailed
from appsody.domain.models import ContainerEngine, PullPolicy
from appsody.infra.docker_client import (
    ContainerDriver,
    DockerProvider,
    check_build_options,
    check_run_options,
    parse_image_config,
)

SEP = "$!$!$!"


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def driver(log):
    return ContainerDriver(log)


class TestOptionChecks:
    """Test pass-through option filtering."""

    @pytest.mark.parametrize("option", ["-p", "--publish=80:80", "--name", "-v", "--rm", "--entrypoint="])
    def test_forbidden_run_options(self, option):
        with pytest.raises(InvalidOption) as exc:
            check_run_options(["-e", "A=1", option])
        assert exc.value.option == option

    def test_allowed_run_options(self):
        check_run_options(["-e", "A=1", "--env-file", "x.env", "--privileged", "--pids-limit"])

    @pytest.mark.parametrize("option", ["-t", "--tag=x", "-f", "--file"])
    def test_forbidden_build_options(self, option):
        with pytest.raises(InvalidOption):
            check_build_options([option])

    def test_allowed_build_options(self):
        check_build_options(["--no-cache", "--build-arg", "A=1"])


class TestParseImageConfig:
    """Test inspect JSON normalization."""

    def test_docker_shape(self):
        raw = json.dumps(
            [{"Config": {"Env": ["PORT=3000", "A=b=c"], "Labels": {"x": "y"}, "ExposedPorts": {"3000/tcp": {}}}}]
        )
        config = parse_image_config(raw, ContainerEngine.DOCKER)
        assert config.env == {"PORT": "3000", "A": "b=c"}
        assert config.labels == {"x": "y"}
        assert config.exposed_ports == ["3000"]

    def test_buildah_shape(self):
        raw = json.dumps({"config": {"Env": ["PORT=8080"], "Labels": None}})
        config = parse_image_config(raw, ContainerEngine.BUILDAH)
        assert config.env == {"PORT": "8080"}
        assert config.labels == {}

    def test_malformed(self):
        with pytest.raises(InspectFailed, match="error unmarshaling"):
            parse_image_config("[]", ContainerEngine.DOCKER)


class TestContainerDriver:
    """Test command construction and output handling."""

    def test_ps_parsing_and_filter(self, driver):
        output = "\n".join(
            [
                SEP.join(["0123456789abcdef", "appsody/nodejs:0.3", "Up 2 minutes", "demo-dev", '"/.appsody/appsody-controller"']),
                SEP.join(["fedcba9876543210", "postgres", "Up 1 hour", "db", '"docker-entrypoint.sh"']),
                "garbage",
            ]
        )
        with patch("appsody.infra.docker_client.run_capture", return_value=completed(output)):
            containers = driver.ps("appsody-controller")

        assert len(containers) == 1
        assert containers[0].id == "0123456789ab"
        assert containers[0].name == "demo-dev"

    def test_inspect_cached(self, driver):
        raw = json.dumps([{"Config": {"Env": ["PORT=3000"]}}])
        with patch("appsody.infra.docker_client.run_capture", return_value=completed(raw)) as run:
            driver.inspect("appsody/nodejs:0.3")
            driver.inspect("appsody/nodejs:0.3")
        assert run.call_count == 1

    def test_build_arguments(self, driver):
        with patch("appsody.infra.docker_client.run_and_listen", return_value=0) as run:
            driver.build("/ctx", "/ctx/Dockerfile", ["a:1", "a:latest"], ["--no-cache"], {"b": "2", "a": "1"})

        cmd = run.call_args[0][1]
        assert cmd == [
            "docker", "build", "-t", "a:1", "-t", "a:latest", "--no-cache",
            "--label", "a=1", "--label", "b=2", "-f", "/ctx/Dockerfile", "/ctx",
        ]

    def test_build_failure(self, driver):
        with patch("appsody.infra.docker_client.run_and_listen", return_value=1):
            with pytest.raises(BuildFailed, match="exit status 1"):
                driver.build("/ctx", "/ctx/Dockerfile", ["a"])

    def test_buildah_uses_bud(self, log):
        driver = ContainerDriver(log, ContainerEngine.BUILDAH)
        with patch("appsody.infra.docker_client.run_and_listen", return_value=0) as run:
            driver.build("/ctx", "/ctx/Dockerfile", ["a"])
        assert run.call_args[0][1][:2] == ["buildah", "bud"]

    def test_push_deprecation_notice_is_not_failure(self, driver):
        def fake_run(log, cmd, sink, dry_run=False):
            sink("[DEPRECATION NOTICE] registry v2 schema1 support will be removed")
            return 1

        with patch("appsody.infra.docker_client.run_and_listen", side_effect=fake_run):
            driver.push("me/demo")

    def test_run_bash(self, driver):
        with patch("appsody.infra.docker_client.run_capture", return_value=completed("/project/x.sh\n")) as run:
            assert driver.run_bash("img", "find /project") == "/project/x.sh"
        assert run.call_args[0][0] == ["docker", "run", "--rm", "--entrypoint", "/bin/bash", "img", "-c", "find /project"]


class TestPull:
    """Test pull policy handling."""

    def test_dev_local_is_if_not_present(self, driver, monkeypatch):
        monkeypatch.delenv("APPSODY_PULL_POLICY", raising=False)
        assert driver.pull_policy("dev.local/java") == PullPolicy.IF_NOT_PRESENT
        assert driver.pull_policy("docker.io/appsody/java:1") == PullPolicy.ALWAYS

    def test_env_policy(self, driver, monkeypatch):
        monkeypatch.setenv("APPSODY_PULL_POLICY", "ifnotpresent")
        assert driver.pull_policy("docker.io/appsody/java:1") == PullPolicy.IF_NOT_PRESENT

    def test_local_image_skips_pull(self, driver):
        with patch("appsody.infra.docker_client.run_capture", return_value=completed("abc123\n")), patch(
            "appsody.infra.docker_client.run_and_listen"
        ) as run:
            driver.pull("img", PullPolicy.IF_NOT_PRESENT)
        run.assert_not_called()

    def test_pull_failure_falls_back_to_local(self, driver, logged):
        with patch("appsody.infra.docker_client.run_and_listen", return_value=1), patch(
            "appsody.infra.docker_client.run_capture", return_value=completed("abc123\n")
        ):
            driver.pull("img", PullPolicy.ALWAYS)
        assert "Using local cache for image img" in logged()

    def test_pull_failure_without_local_image(self, driver):
        with patch("appsody.infra.docker_client.run_and_listen", return_value=1), patch(
            "appsody.infra.docker_client.run_capture", return_value=completed("")
        ):
            with pytest.raises(PullFailed, match="Could not find the image"):
                driver.pull("img", PullPolicy.ALWAYS)

    def test_pulled_once(self, driver):
        with patch("appsody.infra.docker_client.run_and_listen", return_value=0) as run:
            driver.pull("img", PullPolicy.ALWAYS)
            driver.pull("img", PullPolicy.ALWAYS)
        assert run.call_count == 1


class TestDockerProvider:
    """Test the daemon reachability probe."""

    @patch("appsody.infra.docker_client.docker.from_env")
    def test_connected(self, mock_from_env):
        mock_from_env.return_value = MagicMock()
        assert DockerProvider().is_connected()

    @patch("appsody.infra.docker_client.docker.from_env")
    def test_not_connected(self, mock_from_env):
        mock_from_env.side_effect = DockerException("no daemon")
        assert not DockerProvider().is_connected()
