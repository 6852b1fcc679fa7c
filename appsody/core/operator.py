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
# OPERATOR INSTALLER
# -----------------------------------------------------------------------------
# Responsibility: Install and remove the cluster operator that reconciles
# AppsodyApplication resources.
#
# The CRD, RBAC and operator YAML are downloaded from the configured
# operator URL into <home>/deploy, namespace placeholders substituted,
# then handed to kubectl.
# -----------------------------------------------------------------------------

from pathlib import Path
from typing import Optional

from appsody.core.context import Context
from appsody.domain.errors import ClusterError, NetworkError
from appsody.infra.download import download_bytes

CRD_FILE = "appsody-app-crd.yaml"
RBAC_FILE = "appsody-app-cluster-rbac.yaml"
OPERATOR_FILE = "appsody-app-operator.yaml"

DEFAULT_NAMESPACE = "default"


def _download_yaml(ctx: Context, name: str, replacements: Optional[dict[str, str]] = None) -> Path:
    """Fetch an operator YAML into the deploy dir and substitute placeholders."""
    url = f"{ctx.cli_config.operator.rstrip('/')}/{name}"
    target = ctx.deploy_dir / name
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping download of {url}")
        return target
    try:
        text = download_bytes(url).decode("utf-8")
    except NetworkError as e:
        raise NetworkError(f"Could not download the operator file {url}: {e}")
    for placeholder, value in (replacements or {}).items():
        text = text.replace(placeholder, value)
    ctx.deploy_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    return target


def watch_namespace_for(operator_namespace: str, watchspace: str = "", watch_all: bool = False) -> str:
    """'' means every namespace."""
    if watch_all:
        return ""
    return watchspace or operator_namespace


def install(
    ctx: Context,
    namespace: str = DEFAULT_NAMESPACE,
    watchspace: str = "",
    watch_all: bool = False,
) -> None:
    """
    Install an operator in namespace watching watchspace (or everything).

    Raises:
        ClusterError: If an operator already exists there or already
            watches the requested namespace.
    """
    operator_namespace = namespace or DEFAULT_NAMESPACE
    watch_namespace = watch_namespace_for(operator_namespace, watchspace, watch_all)
    ctx.log.debug(f"Operator namespace: {operator_namespace}, watch namespace: '{watch_namespace}'")

    if ctx.cluster.operator_exists_in_namespace(operator_namespace):
        raise ClusterError(f"An operator already exists in namespace: {operator_namespace}", op="install")
    existing = ctx.cluster.operator_watching(watch_namespace)
    if existing is not None:
        raise ClusterError(f"An operator already exists watching namespace: {watch_namespace}", op="install")
    count = ctx.cluster.operator_count()
    if count > 0:
        ctx.log.debug(f"Appsody operator count is: {count}")

    ctx.cluster.apply(str(_download_yaml(ctx, CRD_FILE)))
    if operator_namespace != watch_namespace:
        rbac = _download_yaml(ctx, RBAC_FILE, {"APPSODY_OPERATOR_NAMESPACE": operator_namespace})
        ctx.cluster.apply(str(rbac))
    operator = _download_yaml(
        ctx,
        OPERATOR_FILE,
        {"APPSODY_OPERATOR_NAMESPACE": operator_namespace, "APPSODY_WATCH_NAMESPACE": watch_namespace},
    )
    ctx.cluster.apply(str(operator), operator_namespace)
    ctx.log.info("Appsody operator deployed to Kubernetes")


def _delete_downloaded(ctx: Context, path: Path) -> None:
    ctx.cluster.delete(str(path))
    if not ctx.dry_run:
        path.unlink(missing_ok=True)


def uninstall(ctx: Context, namespace: str = DEFAULT_NAMESPACE, force: bool = False) -> None:
    """
    Remove the operator from namespace. The CRD goes too once no operator
    is left on the cluster.

    Raises:
        ClusterError: If AppsodyApplications remain and force is not set.
    """
    operator_namespace = namespace or DEFAULT_NAMESPACE
    watch_namespace = ""
    if ctx.dry_run:
        ctx.log.info(f"Dry Run - Skipping lookup of the operator watchspace in {operator_namespace}")
    else:
        watch_namespace = ctx.cluster.operator_watchspace(operator_namespace)
        ctx.log.debug(f"Operator is watching the '{watch_namespace}' namespace")

    apps = ctx.cluster.application_count(watch_namespace or None)
    if apps > 0:
        if not force:
            raise ClusterError(
                "There are outstanding appsody applications for this operator - resubmit the "
                "command with --force if you want to remove them.",
                op="uninstall",
            )
        ctx.cluster.delete_applications(watch_namespace or None)

    if watch_namespace != operator_namespace:
        rbac = _download_yaml(ctx, RBAC_FILE, {"APPSODY_OPERATOR_NAMESPACE": operator_namespace})
        try:
            _delete_downloaded(ctx, rbac)
        except ClusterError as e:
            if "(NotFound)" not in str(e):
                raise
            ctx.log.debug(f"RBAC already removed: {e}")

    operator = _download_yaml(
        ctx,
        OPERATOR_FILE,
        {"APPSODY_OPERATOR_NAMESPACE": operator_namespace, "APPSODY_WATCH_NAMESPACE": watch_namespace},
    )
    _delete_downloaded(ctx, operator)

    if ctx.cluster.operator_count() == 0:
        _delete_downloaded(ctx, _download_yaml(ctx, CRD_FILE))
    ctx.log.info("Appsody operator removed from Kubernetes")


def ensure_operator(ctx: Context, namespace: str) -> None:
    """Install an operator for namespace unless one already watches it."""
    existing = ctx.cluster.operator_watching(namespace)
    if existing is not None:
        ctx.log.debug(f"Operator exists in {existing}, watching {namespace}")
        return
    ctx.log.debug(f"Failed to find Appsody operator that watches namespace {namespace}. Attempting to install...")
    try:
        install(ctx, namespace)
    except (ClusterError, NetworkError) as e:
        raise ClusterError(
            f"Failed to install an Appsody operator in namespace {namespace} watching namespace "
            f"{namespace}. Error was: {e}",
            op="install",
        )
