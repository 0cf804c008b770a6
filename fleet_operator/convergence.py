"""
Convergence engine — drive one desired object into the cluster.

For every desired object: wire the owner reference, read the live object
by namespaced name, create it when absent and otherwise overwrite its
mutable spec with the desired one. Objects that do not carry
the Fleet's owner reference are never adopted.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import kopf
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .errors import ConvergenceError, OwnershipError

logger = logging.getLogger("fleet-operator.convergence")

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


# ---------------------------------------------------------------------------
# Per-kind overwrite rules
# ---------------------------------------------------------------------------

def _overwrite_spec(live, desired):
    live.spec = desired.spec


def _overwrite_service(live, desired):
    # clusterIP and allocated node ports cannot be changed by a replace
    allocated = {p.name: p.node_port for p in (live.spec.ports or []) if p.node_port}
    desired.spec.cluster_ip = live.spec.cluster_ip
    desired.spec.cluster_ips = live.spec.cluster_ips
    if desired.spec.type in ("NodePort", "LoadBalancer"):
        for port in desired.spec.ports or []:
            if port.node_port is None and port.name in allocated:
                port.node_port = allocated[port.name]
    live.spec = desired.spec


def _overwrite_claim(live, desired):
    # Only the storage request of a bound claim is mutable.
    live.spec.resources = desired.spec.resources


@dataclass(frozen=True)
class KindApi:
    kind: str
    read: Callable[..., Any]
    create: Callable[..., Any]
    replace: Callable[..., Any]
    delete: Callable[..., Any]
    overwrite: Optional[Callable[[Any, Any], None]]


class Converger:
    """Applies desired objects through the typed Kubernetes APIs."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        apps_v1: client.AppsV1Api,
        networking_v1: client.NetworkingV1Api,
    ):
        self._kinds = {
            "Deployment": KindApi(
                "Deployment",
                apps_v1.read_namespaced_deployment,
                apps_v1.create_namespaced_deployment,
                apps_v1.replace_namespaced_deployment,
                apps_v1.delete_namespaced_deployment,
                _overwrite_spec,
            ),
            "Service": KindApi(
                "Service",
                core_v1.read_namespaced_service,
                core_v1.create_namespaced_service,
                core_v1.replace_namespaced_service,
                core_v1.delete_namespaced_service,
                _overwrite_service,
            ),
            "PersistentVolumeClaim": KindApi(
                "PersistentVolumeClaim",
                core_v1.read_namespaced_persistent_volume_claim,
                core_v1.create_namespaced_persistent_volume_claim,
                core_v1.replace_namespaced_persistent_volume_claim,
                core_v1.delete_namespaced_persistent_volume_claim,
                _overwrite_claim,
            ),
            # Generated credentials must never be rotated behind the database's back.
            "Secret": KindApi(
                "Secret",
                core_v1.read_namespaced_secret,
                core_v1.create_namespaced_secret,
                core_v1.replace_namespaced_secret,
                core_v1.delete_namespaced_secret,
                None,
            ),
            "Ingress": KindApi(
                "Ingress",
                networking_v1.read_namespaced_ingress,
                networking_v1.create_namespaced_ingress,
                networking_v1.replace_namespaced_ingress,
                networking_v1.delete_namespaced_ingress,
                _overwrite_spec,
            ),
        }

    def _api(self, kind: str) -> KindApi:
        try:
            return self._kinds[kind]
        except KeyError:
            raise ValueError(f"Unsupported managed kind: {kind}") from None

    def read(self, kind: str, name: str, namespace: str, timeout: Optional[float] = None):
        """Return the live object, or None if it does not exist."""
        api = self._api(kind)
        try:
            return api.read(name, namespace, _request_timeout=timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ConvergenceError("get", kind, name, namespace, e) from e
        except HTTPError as e:
            raise ConvergenceError("get", kind, name, namespace, e) from e

    def apply(self, desired, owner: dict, timeout: Optional[float] = None) -> str:
        """
        Create or overwrite ``desired`` and make ``owner`` its controller.

        Returns one of ``created``, ``updated`` or ``unchanged``.

        Raises:
            OwnershipError: owner wiring failed or the live object is not ours
            ConvergenceError: the API server rejected a call
        """
        kind = desired.kind
        api = self._api(kind)
        name = desired.metadata.name
        namespace = desired.metadata.namespace

        # Kubernetes ignores owner references that cross namespaces and
        # garbage-collects the dependent.
        owner_namespace = owner["metadata"].get("namespace")
        if namespace != owner_namespace:
            raise OwnershipError(
                f"cannot own {kind} {namespace}/{name} from "
                f"{owner.get('kind', 'Fleet')} {owner_namespace}/{owner['metadata'].get('name')}: "
                f"owner and dependent must share a namespace"
            )

        try:
            kopf.append_owner_reference(desired, owner=owner)
        except (KeyError, TypeError, ValueError) as e:
            raise OwnershipError(f"cannot set owner reference on {kind} {namespace}/{name}: {e}") from e

        live = self.read(kind, name, namespace, timeout)
        if live is None:
            try:
                api.create(namespace, desired, _request_timeout=timeout)
                logger.info(f"Created {kind} {namespace}/{name}")
                return CREATED
            except ApiException as e:
                if e.status != 409:
                    raise ConvergenceError("create", kind, name, namespace, e) from e
            except HTTPError as e:
                raise ConvergenceError("create", kind, name, namespace, e) from e
            # Lost a create race against an earlier pass; treat as found.
            live = self.read(kind, name, namespace, timeout)
            if live is None:
                raise ConvergenceError(
                    "create", kind, name, namespace,
                    RuntimeError("object reported as existing but cannot be read"),
                )

        owner_uid = owner["metadata"]["uid"]
        if not is_owned_by(live, owner_uid):
            raise OwnershipError(
                f"{kind} {namespace}/{name} already exists and is not owned by "
                f"{owner.get('kind', 'Fleet')} {owner['metadata'].get('name')}"
            )

        if api.overwrite is None:
            return UNCHANGED

        api.overwrite(live, desired)
        live.metadata.labels = desired.metadata.labels
        try:
            api.replace(name, namespace, live, _request_timeout=timeout)
        except (ApiException, HTTPError) as e:
            raise ConvergenceError("update", kind, name, namespace, e) from e
        logger.debug(f"Updated {kind} {namespace}/{name}")
        return UPDATED

    def prune(self, kind: str, name: str, namespace: str, owner_uid: str, timeout: Optional[float] = None) -> bool:
        """Delete an object the Fleet owns. Objects owned by others are left alone."""
        api = self._api(kind)
        live = self.read(kind, name, namespace, timeout)
        if live is None or not is_owned_by(live, owner_uid):
            return False
        try:
            api.delete(name, namespace, _request_timeout=timeout)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ConvergenceError("delete", kind, name, namespace, e) from e
        except HTTPError as e:
            raise ConvergenceError("delete", kind, name, namespace, e) from e
        logger.info(f"Pruned {kind} {namespace}/{name}")
        return True


def is_owned_by(obj, owner_uid: str) -> bool:
    refs = (obj.metadata.owner_references if obj.metadata else None) or []
    return any(ref.uid == owner_uid for ref in refs)
