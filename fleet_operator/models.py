"""
Pydantic models for the Fleet custom resource (spec and status).
"""
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Phase(str, Enum):
    UNSET = ""
    INITIALIZING = "Initializing"
    READY = "Ready"
    FAILED = "Failed"


class ResourceRequirements(BaseModel):
    limits: Optional[dict[str, str]] = None
    requests: Optional[dict[str, str]] = None

    @field_validator("limits", "requests", mode="before")
    @classmethod
    def _stringify(cls, value):
        # YAML turns `cpu: 1` into an int; quantities are strings.
        if isinstance(value, dict):
            return {k: str(v) for k, v in value.items()}
        return value


class ServiceConfig(BaseModel):
    """Configuration for one catalog service."""
    enabled: bool = False
    replicas: Optional[int] = Field(default=None, ge=0)
    image: str = ""
    tag: str = ""
    resources: Optional[ResourceRequirements] = None


class DatabaseConfig(BaseModel):
    enabled: bool = False
    type: str = ""
    image: str = ""
    tag: str = ""
    storageSize: str = ""
    storageClass: Optional[str] = None
    credentialsSecret: Optional[str] = None

    @field_validator("storageSize", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)


class GlobalConfig(BaseModel):
    """Overrides applied to every managed object."""
    namespace: str = ""
    imagePullPolicy: str = ""
    serviceType: str = ""
    ingressEnabled: bool = False
    ingressHost: str = ""
    ingressClassName: str = ""


class FleetSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coffeeShop: ServiceConfig = Field(default_factory=ServiceConfig)
    petStore: ServiceConfig = Field(default_factory=ServiceConfig)
    restaurant: ServiceConfig = Field(default_factory=ServiceConfig)
    collegeAdmission: ServiceConfig = Field(default_factory=ServiceConfig)
    electronicsStore: ServiceConfig = Field(default_factory=ServiceConfig)
    electronicsStoreTracing: ServiceConfig = Field(default_factory=ServiceConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")

    def service_config(self, entry: "CatalogEntry") -> ServiceConfig:
        return getattr(self, entry.field)


class ServiceStatus(BaseModel):
    name: str
    ready: bool
    replicas: int = 0
    readyReplicas: int = 0
    endpoint: str = ""


class Condition(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[str] = None
    observedGeneration: Optional[int] = None


class FleetStatus(BaseModel):
    phase: Phase = Phase.UNSET
    conditions: list[Condition] = []
    services: list[ServiceStatus] = []
    observedGeneration: Optional[int] = None


# ---------------------------------------------------------------------------
# Service catalog — the closed set of services a Fleet can run, in the
# order they are reconciled and reported.
# ---------------------------------------------------------------------------

class CatalogEntry(NamedTuple):
    key: str
    field: str
    uses_database: bool = False


SERVICE_CATALOG: tuple[CatalogEntry, ...] = (
    CatalogEntry("coffee-shop", "coffeeShop"),
    CatalogEntry("pet-store", "petStore"),
    CatalogEntry("restaurant", "restaurant"),
    CatalogEntry("college-admission", "collegeAdmission"),
    CatalogEntry("electronics-store", "electronicsStore", uses_database=True),
    CatalogEntry("electronics-store-tracing", "electronicsStoreTracing", uses_database=True),
)


class DatabaseEngine(NamedTuple):
    name: str
    image: str
    tag: str
    port: int
    data_dir: str


DATABASE_ENGINES: dict[str, DatabaseEngine] = {
    "mysql": DatabaseEngine("mysql", "mysql", "8.0", 3306, "/var/lib/mysql"),
    "postgres": DatabaseEngine("postgres", "postgres", "16", 5432, "/var/lib/postgresql/data"),
}

DEFAULT_DATABASE_TYPE = "mysql"
