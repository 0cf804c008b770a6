"""
Status aggregation — fold live Deployment state into the Fleet status.
"""
from datetime import datetime, timezone
from typing import Optional

from .builders import SERVICE_PORT
from .models import Phase, ServiceStatus

READY_CONDITION = "Ready"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    conditions: list,
    ctype: str,
    status: str,
    reason: str,
    message: str,
    generation: Optional[int] = None,
):
    """
    Upsert a condition in a conditions list.

    ``lastTransitionTime`` only moves when ``status`` actually changes.
    """
    for c in conditions:
        if c.get("type") == ctype:
            if c.get("status") != status or not c.get("lastTransitionTime"):
                c["lastTransitionTime"] = _now()
            c["status"] = status
            c["reason"] = reason
            c["message"] = message
            if generation is not None:
                c["observedGeneration"] = generation
            return
    condition = {
        "type": ctype,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    }
    if generation is not None:
        condition["observedGeneration"] = generation
    conditions.append(condition)


def service_endpoint(name: str, namespace: str, cluster_domain: str) -> str:
    return f"{name}.{namespace}.{cluster_domain}:{SERVICE_PORT}"


def service_status(deployment, name: str, namespace: str, cluster_domain: str) -> ServiceStatus:
    """Observed state of one service's Deployment."""
    observed = deployment.status
    replicas = (observed.replicas if observed else None) or 0
    ready_replicas = (observed.ready_replicas if observed else None) or 0
    return ServiceStatus(
        name=name,
        ready=ready_replicas == replicas and replicas > 0,
        replicas=replicas,
        readyReplicas=ready_replicas,
        endpoint=service_endpoint(name, namespace, cluster_domain),
    )


def ready_status(conditions: list, services: list[ServiceStatus], generation: Optional[int]) -> dict:
    """Status body for a pass that applied everything."""
    conditions = [dict(c) for c in conditions]
    set_condition(conditions, READY_CONDITION, "True", "ServicesReady", "All services are ready", generation)
    return {
        "phase": Phase.READY.value,
        "services": [s.model_dump() for s in services],
        "observedGeneration": generation,
        "conditions": conditions,
    }


def failed_status(conditions: list, reason: str, message: str, generation: Optional[int] = None) -> dict:
    """Status body for a pass aborted by ``message``; services are left as they were."""
    conditions = [dict(c) for c in conditions]
    set_condition(conditions, READY_CONDITION, "False", reason, message, generation)
    return {
        "phase": Phase.FAILED.value,
        "conditions": conditions,
    }
