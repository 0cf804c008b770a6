"""
Configuration module — all settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"
    CLUSTER_DOMAIN: str = os.environ.get("CLUSTER_DOMAIN", "svc.cluster.local")

    # CRD
    CRD_GROUP: str = "fleet.cluster-tester.io"
    CRD_VERSION: str = "v1"
    CRD_PLURAL: str = "fleets"
    CRD_KIND: str = "Fleet"

    # Reconciliation
    REQUEUE_AFTER_SUCCESS: int = int(os.environ.get("REQUEUE_AFTER_SUCCESS", "300"))
    REQUEUE_AFTER_FAILURE: int = int(os.environ.get("REQUEUE_AFTER_FAILURE", "120"))
    PASS_TIMEOUT: int = int(os.environ.get("PASS_TIMEOUT", "120"))
    MAX_PARALLEL_RECONCILES: int = int(os.environ.get("MAX_PARALLEL_RECONCILES", "3"))

    # Observability
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "9090"))
    REDIS_URL: str = os.environ.get("REDIS_URL", "")


settings = Settings()
