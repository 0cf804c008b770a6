"""
Kubernetes service layer — abstracts all K8s API interactions for Fleet CRDs.

Design principles:
  - Idempotent: create checks if the Fleet exists before creating
  - The API only records intent; the operator converges the cluster
  - K8s API exceptions other than 404 propagate to the router
"""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from fleet_operator.models import Condition, FleetSpec, ServiceStatus

from ..config import settings
from ..models import FleetResponse

logger = logging.getLogger("kubernetes_service")

PHASES = ("Initializing", "Ready", "Failed")
HEALTH_TIMEOUT = 5

_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


def _api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


def _spec_body(spec: FleetSpec) -> dict:
    # Only what the caller set; the operator applies defaults.
    return spec.model_dump(by_alias=True, exclude_unset=True)


def _parse_fleet(item: dict) -> FleetResponse:
    """Convert a raw K8s CRD dict into a FleetResponse model."""
    meta = item["metadata"]
    status = item.get("status") or {}
    return FleetResponse(
        name=meta["name"],
        namespace=meta.get("namespace", ""),
        phase=status.get("phase", ""),
        spec=item.get("spec") or {},
        services=[ServiceStatus(**s) for s in status.get("services") or []],
        conditions=[Condition(**c) for c in status.get("conditions") or []],
        generation=meta.get("generation"),
        observedGeneration=status.get("observedGeneration"),
        createdAt=meta.get("creationTimestamp"),
    )


def list_fleets(namespace: Optional[str] = None) -> list[FleetResponse]:
    """List Fleets in one namespace, or across the cluster."""
    api = _api()
    if namespace:
        result = api.list_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL
        )
    else:
        result = api.list_cluster_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, settings.CRD_PLURAL
        )
    return [_parse_fleet(item) for item in result.get("items", [])]


def _get_raw(namespace: str, name: str) -> Optional[dict]:
    try:
        return _api().get_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, name
        )
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def get_fleet(namespace: str, name: str) -> Optional[FleetResponse]:
    """Get a single Fleet by namespaced name."""
    item = _get_raw(namespace, name)
    return _parse_fleet(item) if item else None


def create_fleet(namespace: str, name: str, spec: FleetSpec) -> tuple[FleetResponse, bool]:
    """
    Create a Fleet CRD. Idempotent: returns the existing Fleet if already created.

    Returns (fleet, created).
    """
    existing = get_fleet(namespace, name)
    if existing:
        logger.info(f"Fleet {namespace}/{name} already exists — returning existing (idempotent)")
        return existing, False

    body = {
        "apiVersion": f"{settings.CRD_GROUP}/{settings.CRD_VERSION}",
        "kind": settings.CRD_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": _spec_body(spec),
    }
    result = _api().create_namespaced_custom_object(
        settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, body
    )
    logger.info(f"Fleet {namespace}/{name} created")
    return _parse_fleet(result), True


def update_fleet(namespace: str, name: str, spec: FleetSpec) -> Optional[FleetResponse]:
    """
    Replace the spec of an existing Fleet. Returns None if it does not exist.

    The replace carries the read resourceVersion, so a concurrent edit
    surfaces as a 409 ApiException.
    """
    item = _get_raw(namespace, name)
    if item is None:
        return None
    item["spec"] = _spec_body(spec)
    result = _api().replace_namespaced_custom_object(
        settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, name, item
    )
    logger.info(f"Fleet {namespace}/{name} spec replaced")
    return _parse_fleet(result)


def delete_fleet(namespace: str, name: str) -> bool:
    """Delete a Fleet. Returns True if deleted, False if not found."""
    try:
        _api().delete_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, name
        )
        logger.info(f"Fleet {namespace}/{name} deletion initiated")
        return True
    except ApiException as e:
        if e.status == 404:
            return False
        raise


def count_fleets_by_phase() -> dict:
    """Count Fleets grouped by phase (unset phases count as Initializing)."""
    fleets = list_fleets()
    counts = {"total": len(fleets), **{phase: 0 for phase in PHASES}}
    for f in fleets:
        phase = f.phase or "Initializing"
        if phase in counts:
            counts[phase] += 1
    return counts


def fleets_reachable() -> bool:
    """True if the API server answers a one-item list of the Fleet CRD."""
    try:
        _api().list_cluster_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, settings.CRD_PLURAL,
            limit=1, _request_timeout=HEALTH_TIMEOUT,
        )
    except config.ConfigException as e:
        logger.warning(f"No Kubernetes configuration: {e}")
        return False
    except ApiException as e:
        logger.warning(f"Fleet CRD not reachable: {e.status} {e.reason}")
        return False
    except HTTPError as e:
        logger.warning(f"Kubernetes API server not reachable: {e}")
        return False
    return True
