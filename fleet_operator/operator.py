"""
Fleet Operator — Kubernetes Operator for the cluster-tester service fleet

Architecture:
  Fleet CRD → Operator watches → Reconcile pass (see reconciler.py):
    1. Mark Initializing on first sight
    2. Shared database (credentials, claim, workload, endpoint)
    3. Catalog services (workload, endpoint, optional ingress)
    4. Update Fleet status → Ready / Failed

  Requeue:
    - Success → timer re-runs the pass every REQUEUE_AFTER_SUCCESS seconds
    - Failure → kopf.TemporaryError with REQUEUE_AFTER_FAILURE delay

  On Delete:
    Only the per-Fleet pass lock is dropped. Every managed object carries
    an owner reference to the Fleet and is garbage-collected by Kubernetes.

  Drift:
    Deleting a managed Deployment/Service/PVC, or editing its spec, pokes
    the owning Fleet with an annotation so the next pass restores it.

  Concurrency Control:
    - MAX_PARALLEL_RECONCILES executor workers across Fleets
    - One in-flight pass per Fleet (timers overlap with event handlers)
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import kopf
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from prometheus_client import start_http_server

from .builders import MANAGED_BY, MANAGED_BY_LABEL
from .config import settings as fleet_settings
from .events import EventPublisher
from .reconciler import FleetReconciler, PassResult

logger = logging.getLogger("fleet-operator")

CRD_GROUP = fleet_settings.CRD_GROUP
CRD_VERSION = fleet_settings.CRD_VERSION
CRD_PLURAL = fleet_settings.CRD_PLURAL

DRIFT_ANNOTATION = f"{CRD_GROUP}/drift-detected-at"
MANAGED_LABELS = {MANAGED_BY_LABEL: MANAGED_BY}

# ---------------------------------------------------------------------------
# Kubernetes client helpers
# ---------------------------------------------------------------------------

_k8s_loaded = False
_reconciler: Optional[FleetReconciler] = None


def _ensure_k8s():
    """Load kubeconfig exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config(config_file=fleet_settings.KUBECONFIG or None)
    _k8s_loaded = True


def custom_api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


def get_reconciler() -> FleetReconciler:
    global _reconciler
    if _reconciler is None:
        _ensure_k8s()
        _reconciler = FleetReconciler(
            client.CoreV1Api(),
            client.AppsV1Api(),
            client.NetworkingV1Api(),
            client.CustomObjectsApi(),
            config=fleet_settings,
            publisher=EventPublisher(fleet_settings.REDIS_URL),
        )
    return _reconciler


# ---------------------------------------------------------------------------
# Single-flight per Fleet
# ---------------------------------------------------------------------------

_pass_locks: dict[tuple[str, str], threading.Lock] = {}
_pass_locks_guard = threading.Lock()


def _pass_lock(namespace: str, name: str) -> threading.Lock:
    with _pass_locks_guard:
        return _pass_locks.setdefault((namespace, name), threading.Lock())


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.persistence.finalizer = f"{CRD_PLURAL}.{CRD_GROUP}/finalizer"
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=CRD_GROUP)
    settings.execution.max_workers = fleet_settings.MAX_PARALLEL_RECONCILES
    if fleet_settings.METRICS_PORT:
        start_http_server(fleet_settings.METRICS_PORT)
    logger.info(
        f"Fleet Operator started (max_workers={fleet_settings.MAX_PARALLEL_RECONCILES}, "
        f"requeue={fleet_settings.REQUEUE_AFTER_SUCCESS}s/{fleet_settings.REQUEUE_AFTER_FAILURE}s, "
        f"metrics_port={fleet_settings.METRICS_PORT or 'off'})"
    )


# ---------------------------------------------------------------------------
# Reconciliation entry points
# ---------------------------------------------------------------------------

def run_pass(body, logger) -> Optional[PassResult]:
    """
    Run one pass for the Fleet in ``body`` and translate the outcome for kopf.

    Raises kopf.TemporaryError on failure so kopf retries after the
    failure requeue interval.
    """
    meta = body["metadata"]
    name, namespace = meta["name"], meta["namespace"]
    if meta.get("deletionTimestamp"):
        logger.info(f"Fleet {namespace}/{name} is being deleted — skipping pass")
        return None

    with _pass_lock(namespace, name):
        result = get_reconciler().reconcile(body)

    if result.ok:
        kopf.info(body, reason="Reconciled", message=f"{len(result.services)} service(s) applied")
        logger.info(f"[{name}] ✓ Fleet {result.phase}, next check in {result.requeue_after:g}s")
        return result

    kopf.warn(body, reason="ReconcileFailed", message=str(result.error)[:500])
    raise kopf.TemporaryError(f"Reconcile failed: {result.error}", delay=result.requeue_after)


@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def reconcile_fleet(body, logger, **kwargs):
    """Reconcile a Fleet whenever it is created, changed or seen after a restart."""
    run_pass(body, logger)


@kopf.timer(
    CRD_GROUP, CRD_VERSION, CRD_PLURAL,
    interval=fleet_settings.REQUEUE_AFTER_SUCCESS,
    initial_delay=fleet_settings.REQUEUE_AFTER_SUCCESS,
)
def requeue_fleet(body, logger, **kwargs):
    """Periodic re-check: corrects drift that no watch event reported."""
    run_pass(body, logger)


@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL, optional=True)
def forget_fleet(name, namespace, logger, **kwargs):
    """Drop the pass lock of a deleted Fleet; its children go with owner GC."""
    with _pass_locks_guard:
        _pass_locks.pop((namespace, name), None)
    logger.debug(f"Fleet {namespace}/{name} deleted — pass lock released")


# ---------------------------------------------------------------------------
# Managed object watches — poke the owning Fleet
# ---------------------------------------------------------------------------

def _owning_fleets(meta) -> list[str]:
    api_version = f"{CRD_GROUP}/{CRD_VERSION}"
    return [
        ref["name"]
        for ref in meta.get("ownerReferences") or []
        if ref.get("apiVersion") == api_version and ref.get("kind") == fleet_settings.CRD_KIND
    ]


def poke_owner(meta, cause: str, logger):
    """Annotate the owning Fleet so kopf runs its update handler."""
    namespace = meta.get("namespace")
    for fleet_name in _owning_fleets(meta):
        body = {"metadata": {"annotations": {DRIFT_ANNOTATION: _now()}}}
        try:
            custom_api().patch_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, namespace, CRD_PLURAL, fleet_name, body
            )
            logger.info(f"Fleet {namespace}/{fleet_name}: {meta.get('name')} {cause} — reconcile requested")
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Fleet {namespace}/{fleet_name} already gone")
            else:
                logger.warning(f"Could not poke Fleet {namespace}/{fleet_name} (timer will catch up): {e.reason}")


@kopf.on.delete("apps", "v1", "deployments", labels=MANAGED_LABELS, optional=True)
@kopf.on.delete("v1", "services", labels=MANAGED_LABELS, optional=True)
@kopf.on.delete("v1", "persistentvolumeclaims", labels=MANAGED_LABELS, optional=True)
def managed_object_deleted(meta, logger, **kwargs):
    poke_owner(meta, "deleted", logger)


@kopf.on.update("apps", "v1", "deployments", labels=MANAGED_LABELS, field="spec")
@kopf.on.update("v1", "services", labels=MANAGED_LABELS, field="spec")
def managed_object_changed(meta, logger, **kwargs):
    poke_owner(meta, "spec changed", logger)


def main():
    # `kopf run -m fleet_operator.operator` works too; this is the console script.
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
