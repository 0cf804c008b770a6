"""
Reconciliation pass for one Fleet.

Flow:
  1. First observation → immediate status write {phase: Initializing}
  2. Validate spec
  3. Shared database (Secret → PVC → Deployment → Service), or prune it
  4. Catalog services in fixed order (Deployment → Service → Ingress),
     pruning the ones that are disabled
  5. Status write: Ready with per-service status, or Failed with the error
  6. Requeue policy picks the delay until the next pass

The first error aborts the pass. Objects applied before it are left in
place and converge on a later pass.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from pydantic import ValidationError
from urllib3.exceptions import HTTPError

from .builders import build_database_objects, build_service_objects
from .config import Settings, settings as default_settings
from .convergence import Converger
from .defaults import default_database_config, default_service_config
from .errors import (
    ConvergenceError,
    FleetError,
    InvalidSpecError,
    PassTimeoutError,
    StatusWriteError,
)
from .events import EventPublisher
from .metrics import OBJECTS_APPLIED, RECONCILE_DURATION, RECONCILE_TOTAL
from .models import DATABASE_ENGINES, SERVICE_CATALOG, FleetSpec, Phase, ServiceStatus
from .requeue import RequeuePolicy
from .status import failed_status, ready_status, service_status

logger = logging.getLogger("fleet-operator.reconciler")


class Deadline:
    """Pass-scoped deadline handed to every API call as its request timeout."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires = clock() + seconds

    def remaining(self) -> float:
        left = self._expires - self._clock()
        if left <= 0:
            raise PassTimeoutError(f"reconciliation pass exceeded {self.seconds:g}s deadline")
        return left


@dataclass
class PassResult:
    phase: str
    requeue_after: float
    error: Optional[Exception] = None
    services: list[ServiceStatus] = field(default_factory=list)
    actions: list[tuple[str, str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class FleetReconciler:
    """Converges the objects of one Fleet and records the outcome on its status."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        apps_v1: client.AppsV1Api,
        networking_v1: client.NetworkingV1Api,
        custom_api: client.CustomObjectsApi,
        config: Settings = default_settings,
        requeue: Optional[RequeuePolicy] = None,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.converger = Converger(core_v1, apps_v1, networking_v1)
        self.custom_api = custom_api
        self.config = config
        self.requeue = requeue or RequeuePolicy(config.REQUEUE_AFTER_SUCCESS, config.REQUEUE_AFTER_FAILURE)
        self.publisher = publisher or EventPublisher(config.REDIS_URL)
        self._clock = clock

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    def reconcile(self, body) -> PassResult:
        meta = body["metadata"]
        name, namespace = meta["name"], meta["namespace"]
        generation = meta.get("generation")
        status = body.get("status") or {}
        conditions = list(status.get("conditions") or [])
        deadline = Deadline(self.config.PASS_TIMEOUT, self._clock)
        actions: list[tuple[str, str, str]] = []
        started = time.monotonic()

        current_phase = status.get("phase") or Phase.UNSET.value
        if current_phase == Phase.UNSET.value:
            try:
                self._write_status(name, namespace, {"phase": Phase.INITIALIZING.value}, deadline.remaining())
            except FleetError as e:
                logger.error(f"Fleet {namespace}/{name}: could not mark Initializing: {e}")
                return self._finish(name, namespace, current_phase, started, error=e)
            current_phase = Phase.INITIALIZING.value
            self.publisher.publish(namespace, name, "INITIALIZING", "Fleet observed", current_phase)

        reason = InvalidSpecError.reason
        try:
            spec = self._parse_spec(body)
            target_ns = spec.global_.namespace or namespace
            reason = "DatabaseFailed"
            self._reconcile_database(body, spec, target_ns, deadline, actions)
            reason = "ServiceFailed"
            services = self._reconcile_services(body, spec, target_ns, deadline, actions)
        except FleetError as e:
            logger.error(f"Fleet {namespace}/{name}: {reason}: {e}")
            return self._fail(name, namespace, conditions, reason, e, generation, started, actions, current_phase)

        try:
            self._write_status(
                name, namespace, ready_status(conditions, services, generation), deadline.remaining()
            )
        except FleetError as e:
            logger.error(f"Fleet {namespace}/{name}: status write failed: {e}")
            return self._finish(name, namespace, current_phase, started, error=e, services=services, actions=actions)

        created = sum(1 for _, _, outcome in actions if outcome == "created")
        logger.info(
            f"Fleet {namespace}/{name} reconciled: {len(services)} service(s), "
            f"{created} object(s) created, {len(actions) - created} refreshed"
        )
        self.publisher.publish(
            namespace, name, "RECONCILED", f"{len(services)} service(s) applied", Phase.READY.value
        )
        return self._finish(name, namespace, Phase.READY.value, started, services=services, actions=actions)

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    def _parse_spec(self, body) -> FleetSpec:
        try:
            spec = FleetSpec.model_validate(dict(body.get("spec") or {}))
        except ValidationError as e:
            raise InvalidSpecError(f"invalid spec: {e.error_count()} error(s): {_first_error(e)}") from e
        database_type = spec.database.type
        if database_type and database_type not in DATABASE_ENGINES:
            raise InvalidSpecError(
                f"invalid spec: database.type: unsupported engine {database_type!r} "
                f"(expected one of {', '.join(sorted(DATABASE_ENGINES))})"
            )
        return spec

    def _reconcile_database(self, body, spec: FleetSpec, namespace: str, deadline: Deadline, actions: list):
        database = default_database_config(spec.database)
        owner_uid = body["metadata"]["uid"]
        if not database.enabled:
            for engine in DATABASE_ENGINES.values():
                self._prune_database_engine(engine.name, namespace, owner_uid, deadline, actions)
            return

        objects = build_database_objects(body["metadata"]["name"], namespace, database, spec.global_)
        for obj in objects:
            self._apply(obj, body, deadline, actions)

        # A type switch leaves the previous engine's objects behind.
        for engine in DATABASE_ENGINES.values():
            if engine.name != database.type:
                self._prune_database_engine(engine.name, namespace, owner_uid, deadline, actions)

    def _prune_database_engine(self, engine: str, namespace: str, owner_uid: str, deadline: Deadline, actions: list):
        # A user-supplied credentials Secret is not owned and survives the prune.
        for kind, name in (
            ("Service", engine),
            ("Deployment", engine),
            ("PersistentVolumeClaim", f"{engine}-pvc"),
            ("Secret", f"{engine}-credentials"),
        ):
            self._prune(kind, name, namespace, owner_uid, deadline, actions)

    def _reconcile_services(
        self, body, spec: FleetSpec, namespace: str, deadline: Deadline, actions: list
    ) -> list[ServiceStatus]:
        fleet_name = body["metadata"]["name"]
        owner_uid = body["metadata"]["uid"]
        database = default_database_config(spec.database)
        statuses = []

        for entry in SERVICE_CATALOG:
            config = spec.service_config(entry)
            if not config.enabled:
                for kind in ("Ingress", "Service", "Deployment"):
                    self._prune(kind, entry.key, namespace, owner_uid, deadline, actions)
                continue

            config = default_service_config(entry.key, config)
            objects = build_service_objects(fleet_name, namespace, entry, config, spec.global_, database)
            for obj in objects:
                self._apply(obj, body, deadline, actions)
            if not spec.global_.ingressEnabled:
                self._prune("Ingress", entry.key, namespace, owner_uid, deadline, actions)

            deployment = self.converger.read("Deployment", entry.key, namespace, deadline.remaining())
            if deployment is None:
                raise ConvergenceError(
                    "get", "Deployment", entry.key, namespace,
                    RuntimeError("deployment disappeared after apply"),
                )
            statuses.append(service_status(deployment, entry.key, namespace, self.config.CLUSTER_DOMAIN))

        return statuses

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _apply(self, obj, owner, deadline: Deadline, actions: list):
        outcome = self.converger.apply(obj, owner, timeout=deadline.remaining())
        OBJECTS_APPLIED.labels(kind=obj.kind, action=outcome).inc()
        actions.append((obj.kind, obj.metadata.name, outcome))

    def _prune(self, kind: str, name: str, namespace: str, owner_uid: str, deadline: Deadline, actions: list):
        if self.converger.prune(kind, name, namespace, owner_uid, timeout=deadline.remaining()):
            OBJECTS_APPLIED.labels(kind=kind, action="deleted").inc()
            actions.append((kind, name, "deleted"))

    def _write_status(self, name: str, namespace: str, status: dict, timeout: Optional[float] = None):
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                self.config.CRD_GROUP,
                self.config.CRD_VERSION,
                namespace,
                self.config.CRD_PLURAL,
                name,
                {"status": status},
                _request_timeout=timeout,
            )
        except (ApiException, HTTPError) as e:
            detail = getattr(e, "reason", None) or str(e)
            raise StatusWriteError(f"failed to update status of {namespace}/{name}: {detail}") from e

    def _fail(self, name, namespace, conditions, reason, error, generation, started, actions, phase) -> PassResult:
        message = str(error) or error.__class__.__name__
        try:
            # The pass is over; the failure record is not bound by its deadline.
            self._write_status(name, namespace, failed_status(conditions, reason, message, generation))
            phase = Phase.FAILED.value
        except FleetError as e:
            logger.error(f"Fleet {namespace}/{name}: could not record failure: {e}")
        self.publisher.publish(namespace, name, "RECONCILE_FAILED", message, Phase.FAILED.value)
        return self._finish(name, namespace, phase, started, error=error, actions=actions)

    def _finish(self, name, namespace, phase, started, error=None, services=None, actions=None) -> PassResult:
        RECONCILE_DURATION.observe(time.monotonic() - started)
        RECONCILE_TOTAL.labels(result="success" if error is None else "failure").inc()
        return PassResult(
            phase=phase,
            requeue_after=self.requeue.after(error),
            error=error,
            services=services or [],
            actions=actions or [],
        )


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}"
