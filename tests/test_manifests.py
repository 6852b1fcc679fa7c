# =============================================================================
# APPSODY MANIFEST TESTS
# =============================================================================
# Tests for Knative / dev-loop manifests, env harvesting and placeholders.
# =============================================================================

import pytest
import yaml

from appsody.core.manifests import (
    dev_deployment,
    dev_ingress,
    extract_docker_env_vars,
    ingress_port,
    knative_service,
    load_application,
    namespace_repository_and_tag,
    stack_name_from_image,
    substitute_placeholders,
    write_manifest,
)
from appsody.domain.errors import IndexSchemaError, UserInputError


def container_of(service):
    return service["spec"]["runLatest"]["configuration"]["revisionTemplate"]["spec"]["container"]


class TestKnativeService:
    """Test the Knative Service generator."""

    def test_default_template(self, log):
        service = knative_service(log, 3000, "demo", "dev.local/demo", pull_image=False)

        assert service["metadata"]["name"] == "demo"
        container = container_of(service)
        assert container["image"] == "dev.local/demo"
        assert container["imagePullPolicy"] == "Never"
        assert container["ports"] == [{"containerPort": 3000}]

    def test_pull_keeps_template_policy(self, log):
        container = container_of(knative_service(log, 8080, "demo", "reg.io/me/demo", pull_image=True))
        assert container["imagePullPolicy"] == "Always"

    def test_template_without_ports(self, log):
        template = "spec:\n  runLatest:\n    configuration:\n      revisionTemplate:\n        spec:\n          container: {}\n"
        container = container_of(knative_service(log, 9080, "demo", "img", False, template))
        assert container["ports"] == [{"containerPort": 9080}]

    def test_non_container_port_key_appends(self, log, logged):
        template = (
            "spec:\n  runLatest:\n    configuration:\n      revisionTemplate:\n        spec:\n"
            "          container:\n            ports:\n            - hostPort: 80\n"
        )
        container = container_of(knative_service(log, 3000, "demo", "img", False, template))

        assert container["ports"] == [{"hostPort": 80}, {"containerPort": 3000}]
        assert "key other than containerPort" in logged()

    def test_write_manifest(self, log, tmp_path):
        path = write_manifest(log, tmp_path / "svc.yaml", {"kind": "Service"})
        assert yaml.safe_load(path.read_text()) == {"kind": "Service"}

    def test_write_manifest_dry_run(self, log, tmp_path):
        path = write_manifest(log, tmp_path / "svc.yaml", {"kind": "Service"}, dry_run=True)
        assert not path.exists()


class TestDevManifests:
    """Test the in-cluster dev loop manifests."""

    def test_deployment(self, log, monkeypatch):
        monkeypatch.delenv("CODEWIND_PROJECT_ID", raising=False)
        monkeypatch.delenv("SERVICE_ACCOUNT_NAME", raising=False)
        data = dev_deployment(
            log,
            "demo",
            "docker.io/appsody/nodejs:0.3",
            "appsody/init-controller:0.3.3",
            ["3000"],
            ["-v", "/project/src:/project/user-app"],
            {"A": "1"},
        )

        pod = data["spec"]["template"]["spec"]
        assert pod["serviceAccountName"] == "appsody-sa"
        [container] = pod["containers"]
        assert container["ports"] == [{"containerPort": 3000}]
        assert container["env"] == [{"name": "A", "value": "1"}]
        assert container["volumeMounts"][1]["subPath"] == "project/src"
        assert pod["initContainers"][0]["image"] == "appsody/init-controller:0.3.3"

    def test_ingress_host(self):
        rule = dev_ingress("demo", "10.0.0.1", 3000)["spec"]["rules"][0]
        assert rule["host"] == "demo.10.0.0.1.nip.io"

    @pytest.mark.parametrize(
        "ports,expected",
        [(["9229", "3000"], 3000), (["9229"], 9229), ([], 0), (["abc"], 0)],
    )
    def test_ingress_port(self, ports, expected):
        assert ingress_port(ports) == expected


class TestDockerEnv:
    """Test env var harvesting from --docker-options."""

    def test_short_and_long_flags(self):
        env = extract_docker_env_vars('-e A=1 --env B=2 -e=C=3 --env="D=4"')
        assert env == {"A": "1", "B": "2", "C": "3", "D": "4"}

    def test_env_file_overridden_by_flags(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FROM_HOST", "host")
        env_file = tmp_path / "app.env"
        env_file.write_text("# comment\nA=file\nB=file\nFROM_HOST\n")

        env = extract_docker_env_vars(f"--env-file {env_file} -e A=flag")

        assert env == {"A": "flag", "B": "file", "FROM_HOST": "host"}

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(UserInputError, match="docker env file"):
            extract_docker_env_vars(f"--env-file={tmp_path / 'missing.env'}")

    def test_flags_without_values_ignored(self):
        assert extract_docker_env_vars("-e NOVALUE -p 3000:3000") == {}


class TestDeployConfig:
    """Test app-deploy.yaml helpers."""

    def test_placeholders(self):
        text = "name: APPSODY_PROJECT_NAME\nimage: APPSODY_DOCKER_IMAGE\nstack: APPSODY_STACK\nport: APPSODY_PORT\n"
        result = yaml.safe_load(substitute_placeholders(text, "demo", "dev.local/demo", "nodejs", 3000))
        assert result == {"name": "demo", "image": "dev.local/demo", "stack": "nodejs", "port": 3000}

    def test_load_application(self, tmp_path):
        path = tmp_path / "app-deploy.yaml"
        path.write_text("kind: AppsodyApplication\nmetadata:\n  name: demo\nspec:\n  applicationImage: demo\n")
        app = load_application(path)
        assert app.metadata.name == "demo"
        assert app.spec.application_image == "demo"

    def test_load_application_bad_yaml(self, tmp_path):
        path = tmp_path / "app-deploy.yaml"
        path.write_text("spec: [unclosed\n")
        with pytest.raises(IndexSchemaError, match="formatting error"):
            load_application(path)

    def test_load_application_missing(self, tmp_path):
        with pytest.raises(IndexSchemaError, match="Could not read"):
            load_application(tmp_path / "app-deploy.yaml")


class TestImageReferences:
    """Test image name helpers used by deploy."""

    @pytest.mark.parametrize(
        "image,expected",
        [
            ("docker.io/appsody/nodejs-express:0.2", "nodejs-express"),
            ("appsody/java", "java"),
            ("localhost:5000/me/python:1", "python"),
        ],
    )
    def test_stack_name(self, image, expected):
        assert stack_name_from_image(image) == expected

    @pytest.mark.parametrize(
        "image,expected",
        [
            ("docker.io/me/app:1", "me/app:1"),
            ("localhost:5000/app", "app"),
            ("me/app", "me/app"),
            ("app", "app"),
        ],
    )
    def test_namespace_repository_and_tag(self, image, expected):
        assert namespace_repository_and_tag(image) == expected
