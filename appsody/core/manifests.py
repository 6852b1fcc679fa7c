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
# KUBERNETES MANIFESTS
# -----------------------------------------------------------------------------
# Responsibility: Generate the YAML documents the CLI hands to kubectl:
# - Knative Service (serving.knative.dev/v1alpha1)
# - plain Deployment + Service + Ingress for the in-cluster dev loop
# - the AppsodyApplication custom resource (app-deploy.yaml)
#
# Generators return plain dicts; write_manifest serializes them.
# -----------------------------------------------------------------------------

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from appsody.domain.errors import IndexSchemaError, UserInputError
from appsody.domain.models import AppsodyApplication
from appsody.infra.log import Log

KNATIVE_TEMPLATE = """
apiVersion: serving.knative.dev/v1alpha1
kind: Service
metadata:
  name: test
spec:
  runLatest:
    configuration:
      revisionTemplate:
        spec:
          container:
            image: myimage
            imagePullPolicy: Always
            ports:
            - containerPort: 8080
"""

KNOWN_HTTP_PORTS = ["80", "8080", "8008", "3000", "9080"]
WORKSPACE_VOLUME = "appsody-workspace"
CODEWIND_WORKSPACE = "/"

PLACEHOLDERS = ("APPSODY_PROJECT_NAME", "APPSODY_DOCKER_IMAGE", "APPSODY_STACK", "APPSODY_PORT")


def write_manifest(log: Log, path: Path, data: dict, dry_run: bool = False) -> Path:
    text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    log.debug(f"Generated YAML: \n{text}")
    if dry_run:
        log.info(f"Skipping creation of yaml file with prefix: {path}")
        return path
    path.write_text(text, encoding="utf-8")
    return path


def knative_service(
    log: Log,
    port: int,
    service_name: str,
    image: str,
    pull_image: bool,
    template: str = KNATIVE_TEMPLATE,
) -> dict:
    """
    Fill a Knative Service template.

    Knative allows a single containerPort. A template port entry that uses
    any other key is kept and a containerPort entry is appended.
    """
    data = yaml.safe_load(template) or {}
    data.setdefault("metadata", {})["name"] = service_name
    container = (
        data.setdefault("spec", {})
        .setdefault("runLatest", {})
        .setdefault("configuration", {})
        .setdefault("revisionTemplate", {})
        .setdefault("spec", {})
        .setdefault("container", {})
    )
    container["image"] = image
    if not pull_image:
        container["imagePullPolicy"] = "Never"

    ports = container.get("ports") or []
    if len(ports) > 1:
        log.warning("KNative yaml template defines more than one port. This is invalid.")
    if not ports:
        ports = [{"containerPort": port}]
    else:
        for entry in ports:
            log.debug(f"Detected KNative template port: {entry}")
            if "containerPort" in entry:
                log.debug(f"YAML template defined a single port - setting it to: {port}")
                entry["containerPort"] = port
                break
        else:
            log.warning("The Knative template defines a port with a key other than containerPort. This is invalid.")
            log.warning("Adding containerPort - you will have to edit the yaml file manually.")
            ports.append({"containerPort": port})
    container["ports"] = ports
    return data


def _codewind_owner() -> list[dict]:
    name = os.environ.get("CODEWIND_OWNER_NAME", "")
    uid = os.environ.get("CODEWIND_OWNER_UID", "")
    if not (name and uid):
        return []
    return [
        {
            "apiVersion": "apps/v1",
            "blockOwnerDeletion": True,
            "controller": True,
            "kind": "ReplicaSet",
            "name": name,
            "uid": uid,
        }
    ]


def dev_deployment(
    log: Log,
    app_name: str,
    image: str,
    controller_image: str,
    ports: list[str],
    volume_args: list[str],
    env_vars: dict[str, str],
) -> dict:
    """
    A Deployment that runs the stack image under the controller, with the
    project mounted from the shared workspace volume claim.
    """
    metadata: dict = {"name": app_name}
    project_id = os.environ.get("CODEWIND_PROJECT_ID", "")
    if project_id:
        metadata["labels"] = {"projectID": project_id}
    owners = _codewind_owner()
    if owners:
        metadata["ownerReferences"] = owners

    mounts = [{"name": "appsody-controller", "mountPath": "/.appsody"}]
    for arg in volume_args:
        if arg == "-v":
            continue
        source, target = arg.split(":")[:2]
        sub_path = os.path.relpath(source, CODEWIND_WORKSPACE)
        log.debug(f"Appending volume mount: {target} from {sub_path}")
        mounts.append({"name": WORKSPACE_VOLUME, "mountPath": target, "subPath": sub_path})

    container: dict = {
        "name": app_name,
        "image": image,
        "imagePullPolicy": "Always",
        "command": ["/.appsody/appsody-controller"],
        "volumeMounts": mounts,
    }
    if ports:
        container["ports"] = [{"containerPort": int(p)} for p in ports]
    if env_vars:
        container["env"] = [{"name": k, "value": v} for k, v in env_vars.items()]

    pod_spec: dict = {"serviceAccountName": os.environ.get("SERVICE_ACCOUNT_NAME") or "appsody-sa"}
    pod_spec["initContainers"] = [
        {
            "name": "init-appsody-controller",
            "image": controller_image,
            "resources": {},
            "volumeMounts": [{"name": "appsody-controller", "mountPath": "/.appsody"}],
            "imagePullPolicy": "IfNotPresent",
        }
    ]
    pod_spec["containers"] = [container]
    pod_spec["volumes"] = [
        {"name": "appsody-controller", "emptyDir": {}},
        {
            "name": WORKSPACE_VOLUME,
            "persistentVolumeClaim": {"claimName": os.environ.get("PVC_NAME") or WORKSPACE_VOLUME},
        },
    ]
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {
            "selector": {"matchLabels": {"app": app_name}},
            "replicas": 1,
            "template": {
                "metadata": {"labels": {"app": app_name, "release": app_name}},
                "spec": pod_spec,
            },
        },
    }


def dev_service(app_name: str, ports: list[str]) -> dict:
    labels = {"release": app_name}
    project_id = os.environ.get("CODEWIND_PROJECT_ID", "")
    if project_id:
        labels["projectID"] = project_id
    metadata: dict = {"name": f"{app_name}-service", "labels": labels}
    owners = _codewind_owner()
    if owners:
        metadata["ownerReferences"] = owners
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata,
        "spec": {
            "selector": {"app": app_name},
            "type": "NodePort",
            "ports": [
                {"name": f"port-{i}", "port": int(p), "targetPort": int(p)} for i, p in enumerate(ports)
            ],
        },
    }


def dev_ingress(app_name: str, master_ip: str, port: int) -> dict:
    """An Ingress on <app>.<masterIP>.nip.io routed to the dev service."""
    return {
        "apiVersion": "extensions/v1beta1",
        "kind": "Ingress",
        "metadata": {"name": f"{app_name}-ingress"},
        "spec": {
            "rules": [
                {
                    "host": f"{app_name}.{master_ip}.nip.io",
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "backend": {"serviceName": f"{app_name}-service", "servicePort": port},
                            }
                        ]
                    },
                }
            ]
        },
    }


def ingress_port(ports: list[str]) -> int:
    """The first well-known HTTP port exposed, else the first port, else 0."""
    for port in ports:
        if port in KNOWN_HTTP_PORTS:
            return int(port)
    if ports:
        try:
            return int(ports[0])
        except ValueError:
            return 0
    return 0


def read_env_file(path: str) -> dict[str, str]:
    """
    Parse a docker --env-file: KEY=VALUE lines; a bare KEY takes the
    value from this process's environment.
    """
    env: dict[str, str] = {}
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise UserInputError(f"Could not read the docker env file {path}: {e}")
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if sep:
            env[key] = value
        elif key in os.environ:
            env[key] = os.environ[key]
    return env


def extract_docker_env_vars(docker_options: str) -> dict[str, str]:
    """
    Harvest -e/--env/-e=/--env= and --env-file values from a docker
    options string. Later flags override the env file.
    """
    tokens = docker_options.split()
    env: dict[str, str] = {}
    for i, token in enumerate(tokens):
        if token == "--env-file" and i + 1 < len(tokens):
            env.update(read_env_file(tokens[i + 1]))
        elif token.startswith("--env-file="):
            env.update(read_env_file(token.split("=", 1)[1]))

    for i, token in enumerate(tokens):
        value = ""
        if token in ("-e", "--env"):
            if i + 1 < len(tokens):
                value = tokens[i + 1]
        elif token.startswith("-e=") or token.startswith("--env="):
            value = token.split("=", 1)[1]
        if value and "=" in value:
            value = value.replace('"', "").replace("'", "")
            key, _, val = value.partition("=")
            env[key] = val
    return env


def split_docker_options(options: str) -> list[str]:
    """Whitespace split used for --docker-options and --buildah-options."""
    return options.split()


def substitute_placeholders(text: str, project: str, image: str, stack: str, port: int) -> str:
    values = dict(zip(PLACEHOLDERS, (project, image, stack, str(port))))
    for placeholder, value in values.items():
        text = text.replace(placeholder, value)
    return text


def load_application(path: Path) -> AppsodyApplication:
    """
    Raises:
        IndexSchemaError: If the file is unreadable or not an AppsodyApplication.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise IndexSchemaError(f"Could not read {path} file: {e}")
    except yaml.YAMLError as e:
        raise IndexSchemaError(f"{path} formatting error: {e}")
    try:
        return AppsodyApplication.model_validate(data)
    except ValidationError as e:
        raise IndexSchemaError(f"{path} formatting error: {e}")


def save_application(log: Log, path: Path, app: AppsodyApplication, dry_run: bool = False) -> None:
    write_manifest(log, path, app.to_yaml_dict(), dry_run)


def stack_name_from_image(image: str) -> str:
    """docker.io/appsody/nodejs-express:0.2 -> nodejs-express"""
    repo = image.rsplit(":", 1)[0] if ":" in image.rsplit("/", 1)[-1] else image
    return repo.rsplit("/", 1)[-1]


def namespace_repository_and_tag(image: str) -> str:
    """Strip a registry host from an image reference, if one is present."""
    parts = image.split("/")
    if len(parts) > 2 or (len(parts) == 2 and ("." in parts[0] or ":" in parts[0])):
        return "/".join(parts[1:])
    return image
