"""Pytest configuration and fixtures for the fleet operator tests."""

import copy
import itertools
import os
from types import SimpleNamespace

import pytest
from kubernetes.client import V1DeploymentStatus
from kubernetes.client.exceptions import ApiException

# Read by fleet_api.config at import time.
os.environ.setdefault("RATE_LIMIT", "1000/minute")

from fleet_operator.config import Settings  # noqa: E402
from fleet_operator.events import EventPublisher  # noqa: E402
from fleet_operator.reconciler import FleetReconciler  # noqa: E402

# kind -> method suffix on the typed API classes
_KINDS = {
    "Deployment": ("apps_v1", "deployment"),
    "Service": ("core_v1", "service"),
    "PersistentVolumeClaim": ("core_v1", "persistent_volume_claim"),
    "Secret": ("core_v1", "secret"),
    "Ingress": ("networking_v1", "ingress"),
}


class FakeCluster:
    """
    In-memory stand-in for the typed Kubernetes APIs.

    Exposes ``core_v1``, ``apps_v1`` and ``networking_v1`` with the
    read/create/replace/delete methods the converger uses. Every call is
    recorded in ``calls`` as ``(verb, kind, name)``.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.failures = {}
        self._one_shot = set()
        self._uids = itertools.count(1)
        self.core_v1 = SimpleNamespace()
        self.apps_v1 = SimpleNamespace()
        self.networking_v1 = SimpleNamespace()
        for kind, (api, suffix) in _KINDS.items():
            target = getattr(self, api)
            setattr(target, f"read_namespaced_{suffix}", self._reader(kind))
            setattr(target, f"create_namespaced_{suffix}", self._creator(kind))
            setattr(target, f"replace_namespaced_{suffix}", self._replacer(kind))
            setattr(target, f"delete_namespaced_{suffix}", self._deleter(kind))

    # --- test helpers ---

    def get(self, kind, name, namespace="default"):
        return self.objects.get((kind, namespace, name))

    def put(self, obj):
        """Store an object as if someone else had created it."""
        stored = copy.deepcopy(obj)
        stored.metadata.uid = stored.metadata.uid or f"uid-{next(self._uids)}"
        self.objects[(obj.kind, obj.metadata.namespace, obj.metadata.name)] = stored
        return stored

    def names(self, kind, namespace="default"):
        return sorted(n for (k, ns, n) in self.objects if k == kind and ns == namespace)

    def count(self, verb, kind=None):
        return sum(1 for v, k, _ in self.calls if v == verb and (kind is None or k == kind))

    def fail(self, verb, kind, name, status=500, reason="Internal Server Error", once=False):
        self.failures[(verb, kind, name)] = ApiException(status=status, reason=reason)
        if once:
            self._one_shot.add((verb, kind, name))

    def mark_ready(self, name, namespace="default"):
        deployment = self.objects[("Deployment", namespace, name)]
        replicas = deployment.spec.replicas
        deployment.status = V1DeploymentStatus(replicas=replicas, ready_replicas=replicas)

    # --- API surface ---

    def _check(self, verb, kind, name):
        self.calls.append((verb, kind, name))
        key = (verb, kind, name)
        failure = self.failures.get(key)
        if failure is not None:
            if key in self._one_shot:
                self._one_shot.discard(key)
                del self.failures[key]
            raise failure

    def _reader(self, kind):
        def read(name, namespace, **kwargs):
            self._check("read", kind, name)
            obj = self.objects.get((kind, namespace, name))
            if obj is None:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(obj)
        return read

    def _creator(self, kind):
        def create(namespace, body, **kwargs):
            name = body.metadata.name
            self._check("create", kind, name)
            if (kind, namespace, name) in self.objects:
                raise ApiException(status=409, reason="AlreadyExists")
            stored = copy.deepcopy(body)
            stored.metadata.uid = f"uid-{next(self._uids)}"
            stored.metadata.resource_version = "1"
            if kind == "Service":
                stored.spec.cluster_ip = "10.96.0.10"
            self.objects[(kind, namespace, name)] = stored
            return copy.deepcopy(stored)
        return create

    def _replacer(self, kind):
        def replace(name, namespace, body, **kwargs):
            self._check("replace", kind, name)
            if (kind, namespace, name) not in self.objects:
                raise ApiException(status=404, reason="Not Found")
            stored = copy.deepcopy(body)
            stored.metadata.resource_version = str(int(stored.metadata.resource_version or "1") + 1)
            self.objects[(kind, namespace, name)] = stored
            return copy.deepcopy(stored)
        return replace

    def _deleter(self, kind):
        def delete(name, namespace, **kwargs):
            self._check("delete", kind, name)
            if self.objects.pop((kind, namespace, name), None) is None:
                raise ApiException(status=404, reason="Not Found")
        return delete


class FakeCustomObjects:
    """Records Fleet status writes and annotation patches."""

    def __init__(self):
        self.status_writes = []
        self.patches = []
        self.fail_status = None

    def patch_namespaced_custom_object_status(self, group, version, namespace, plural, name, body, **kwargs):
        if self.fail_status is not None:
            raise self.fail_status
        self.status_writes.append(copy.deepcopy(body["status"]))

    def patch_namespaced_custom_object(self, group, version, namespace, plural, name, body, **kwargs):
        self.patches.append((namespace, name, copy.deepcopy(body)))

    @property
    def last_status(self):
        return self.status_writes[-1] if self.status_writes else None


class StepClock:
    """Monotonic clock that advances ``step`` seconds on every read."""

    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def make_fleet(spec=None, status=None, name="demo", namespace="default", uid="fleet-uid-1", generation=1):
    body = {
        "apiVersion": "fleet.cluster-tester.io/v1",
        "kind": "Fleet",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid,
            "generation": generation,
        },
        "spec": spec or {},
    }
    if status is not None:
        body["status"] = status
    return body


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def custom_api():
    return FakeCustomObjects()


@pytest.fixture
def fleet_settings():
    return Settings(REDIS_URL="", PASS_TIMEOUT=120, REQUEUE_AFTER_SUCCESS=300, REQUEUE_AFTER_FAILURE=120)


@pytest.fixture
def reconciler(cluster, custom_api, fleet_settings):
    return FleetReconciler(
        cluster.core_v1,
        cluster.apps_v1,
        cluster.networking_v1,
        custom_api,
        config=fleet_settings,
        publisher=EventPublisher(""),
    )


@pytest.fixture
def fleet_body():
    return make_fleet


@pytest.fixture
def step_clock():
    return StepClock
