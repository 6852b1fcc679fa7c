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
# CLUSTER DRIVER - kubectl
# -----------------------------------------------------------------------------
# Responsibility: Apply, delete and query Kubernetes resources through the
# user's kubectl, so the active kube context and credentials apply as-is.
#
# Dry run: the intended command is logged and an empty string is returned.
# -----------------------------------------------------------------------------

from typing import Optional, Sequence

from appsody.domain.errors import ClusterError, NotFound
from appsody.infra.log import Log
from appsody.infra.process import ProcessError, format_command, run_capture

KUBECTL = "kubectl"
OPERATOR_NAME = "appsody-operator"
UNKNOWN_MASTER_IP = "x.x.x.x"


def parse_watchspaces(csv_list: str) -> list[str]:
    """Split an operator's WATCH_NAMESPACE value into namespaces."""
    if not csv_list:
        return []
    return [item.strip(" '’\n") for item in csv_list.split(",")]


class ClusterDriver:
    """Thin facade over kubectl."""

    def __init__(self, log: Log, dry_run: bool = False) -> None:
        self.log = log
        self.dry_run = dry_run

    def _kubectl(self, args: Sequence[str], op: str) -> str:
        cmd = [KUBECTL, *args]
        if self.dry_run:
            self.log.info(f"Dry Run - Skipping command: {format_command(cmd)}")
            return ""
        self.log.info(f"Running command: {format_command(cmd)}")
        try:
            result = run_capture(cmd)
        except ProcessError as e:
            raise ClusterError(str(e), op=op)
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            raise ClusterError(f"kubectl {op} failed: {output}", op=op)
        self.log.debug(f"kubectl {op} success: {result.stdout.strip()}")
        return result.stdout

    @staticmethod
    def _with_namespace(args: list[str], namespace: Optional[str]) -> list[str]:
        if namespace:
            args += ["--namespace", namespace]
        return args

    def apply(self, file: str, namespace: Optional[str] = None) -> str:
        self.log.info("Attempting to apply resource in Kubernetes ...")
        return self._kubectl(self._with_namespace(["apply", "-f", str(file)], namespace), "apply")

    def delete(self, file: str, namespace: Optional[str] = None) -> str:
        self.log.info("Attempting to delete resource from Kubernetes...")
        return self._kubectl(self._with_namespace(["delete", "-f", str(file)], namespace), "delete")

    def delete_resources(self, args: Sequence[str]) -> str:
        return self._kubectl(["delete", *args], "delete")

    def get(self, args: Sequence[str], namespace: Optional[str] = None) -> str:
        return self._kubectl(self._with_namespace(["get", *args], namespace), "get")

    def exec(self, args: Sequence[str]) -> str:
        return self._kubectl(["exec", *args], "exec")

    # -- URLs ---------------------------------------------------------------

    def get_knative_url(self, service: str, namespace: Optional[str] = None) -> str:
        return self.get(["rt", service, "-o", "jsonpath={.status.url}"], namespace).strip()

    def get_route_url(self, service: str, namespace: Optional[str] = None) -> str:
        return self.get(
            ["route", service, "-o", "jsonpath={.status.ingress[0].host}"], namespace
        ).strip()

    def get_node_port_url(self, service: str, namespace: Optional[str] = None) -> str:
        jsonpath = "jsonpath=http://{.status.loadBalancer.ingress[0].hostname}:{.spec.ports[0].nodePort}"
        return self.get(["svc", service, "-o", jsonpath], namespace).strip()

    def get_deployment_url(self, service: str, namespace: Optional[str] = None) -> str:
        """
        Find where a deployed service is reachable.

        Tries a Knative route, then an OpenShift route, then a node port.

        Raises:
            NotFound: If none of the three lookups succeeds.
        """
        lookups = (self.get_knative_url, self.get_route_url, self.get_node_port_url)
        last_error: Optional[ClusterError] = None
        for lookup in lookups:
            try:
                return lookup(service, namespace)
            except ClusterError as e:
                last_error = e
        raise NotFound(
            f"Failed to find deployed service IP and Port: {last_error}", op="get"
        )

    def get_master_ip(self) -> str:
        """Best-effort address of a cluster node, used for nip.io ingress hosts."""
        jsonpath = 'jsonpath={.items[0].status.addresses[?(@.type=="InternalIP")].address}'
        try:
            ip = self.get(["nodes", "-o", jsonpath]).strip()
        except ClusterError as e:
            self.log.debug(f"Could not determine the cluster IP: {e}")
            return UNKNOWN_MASTER_IP
        return ip or UNKNOWN_MASTER_IP

    # -- operator -----------------------------------------------------------

    def operator_exists_in_namespace(self, namespace: str) -> bool:
        jsonpath = (
            "-o=jsonpath='{.items[?(@.metadata.name==\"" + OPERATOR_NAME + "\")].metadata.namespace}'"
        )
        output = self.get(["deployments", jsonpath, "-n", namespace]).strip("'\n ")
        return output != ""

    def operator_namespaces(self) -> list[str]:
        """Namespaces that run an operator pod."""
        jsonpath = (
            "-o=jsonpath='{.items[?(@.metadata.labels.name==\"" + OPERATOR_NAME + "\")].metadata.namespace}'"
        )
        output = self.get(["pods", jsonpath, "--all-namespaces"]).strip("'’\n ")
        return output.split() if output else []

    def operator_watchspace(self, namespace: str) -> str:
        """
        Return the WATCH_NAMESPACE of the operator in namespace ("" = all).

        Raises:
            ClusterError: If no operator runs in namespace.
        """
        if not self.operator_exists_in_namespace(namespace):
            raise ClusterError(
                f"An appsody operator could not be found in namespace: {namespace}", op="get"
            )
        jsonpath = (
            "-o=jsonpath='{.items[?(@.metadata.labels.name==\"" + OPERATOR_NAME + "\")].metadata.name}'"
        )
        pod = self.get(["pod", jsonpath, "-n", namespace]).strip("'’\n ")
        output = self.exec(["-n", namespace, pod, "--", "/bin/printenv", "WATCH_NAMESPACE"])
        watchspace = output.strip("'’\n ")
        self.log.debug(f"Pod: {pod} in namespace: {namespace} is watching namespace: {watchspace}")
        return watchspace

    def operator_watching(self, watch_namespace: str) -> Optional[str]:
        """
        Find the namespace of an operator that already watches watch_namespace.

        An empty watch_namespace means "all namespaces".

        Raises:
            ClusterError: For --watch-all when any operator already exists.
        """
        namespaces = self.operator_namespaces()
        if not namespaces:
            self.log.info("There are no deployments with appsody-operator")
            return None
        if watch_namespace == "":
            raise ClusterError(
                "You specified --watch-all, but there are already instances of the appsody "
                "operator on the cluster",
                op="get",
            )
        for namespace in namespaces:
            watchspace = self.operator_watchspace(namespace)
            if watchspace == "":
                self.log.info(
                    f"An operator exists in namespace {namespace}, that is watching all namespaces"
                )
                return namespace
            if watch_namespace in parse_watchspaces(watchspace):
                return namespace
        return None

    def operator_count(self) -> int:
        jsonpath = "-o=jsonpath='{.items[?(@.metadata.name==\"" + OPERATOR_NAME + "\")].metadata.name}'"
        return self.get(["deployments", jsonpath, "--all-namespaces"]).count(OPERATOR_NAME)

    def application_count(self, namespace: Optional[str] = None) -> int:
        args = ["AppsodyApplication", "-o=jsonpath='{.items[*].kind}'"]
        args += ["-n", namespace] if namespace else ["--all-namespaces"]
        return self.get(args).count("AppsodyApplication")

    def delete_applications(self, namespace: Optional[str] = None) -> str:
        args = ["AppsodyApplication", "--all"]
        if namespace:
            args += ["-n", namespace]
        return self.delete_resources(args)
