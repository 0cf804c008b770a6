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
    DEFAULT_NAMESPACE: str = os.environ.get("DEFAULT_NAMESPACE", "default")

    # CRD
    CRD_GROUP: str = "fleet.cluster-tester.io"
    CRD_VERSION: str = "v1"
    CRD_PLURAL: str = "fleets"
    CRD_KIND: str = "Fleet"

    # Rate limiting
    RATE_LIMIT: str = os.environ.get("RATE_LIMIT", "10/minute")

    # API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))
    CORS_ORIGINS: str = os.environ.get("CORS_ORIGINS", "*")

    # Activity feed written by the operator
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
