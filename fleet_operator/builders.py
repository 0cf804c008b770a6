"""
Desired-state builders — turn defaulted Fleet configuration into fully
specified Kubernetes objects.

Nothing here talks to the cluster. Every builder returns a
``kubernetes.client`` model with ``api_version``/``kind`` set so the
convergence engine can route it to the right API.
"""
import secrets
from typing import Optional

from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1HTTPIngressPath,
    V1HTTPIngressRuleValue,
    V1Ingress,
    V1IngressBackend,
    V1IngressRule,
    V1IngressServiceBackend,
    V1IngressSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1Secret,
    V1SecretKeySelector,
    V1Service,
    V1ServiceBackendPort,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
    V1VolumeResourceRequirements,
)
from kubernetes.utils import parse_quantity

from .errors import InvalidQuantityError, InvalidSpecError, UnsupportedDatabaseError
from .models import (
    DATABASE_ENGINES,
    CatalogEntry,
    DatabaseConfig,
    DatabaseEngine,
    GlobalConfig,
    ResourceRequirements,
    ServiceConfig,
)

SERVICE_PORT = 8080
HEALTH_PATH = "/health"

PART_OF = "cluster-tester"
MANAGED_BY = "fleet-operator"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

DEFAULT_PULL_POLICY = "IfNotPresent"
DEFAULT_SERVICE_TYPE = "ClusterIP"

# Credentials Secret layout
DATABASE_NAME = "electronics-store"
DATABASE_USER = "admin"
SECRET_ROOT_PASSWORD = "root-password"
SECRET_DATABASE = "database"
SECRET_USERNAME = "username"
SECRET_PASSWORD = "password"

# Engine env var -> credentials Secret key
_ENGINE_CREDENTIAL_ENV = {
    "mysql": (
        ("MYSQL_ROOT_PASSWORD", SECRET_ROOT_PASSWORD),
        ("MYSQL_DATABASE", SECRET_DATABASE),
        ("MYSQL_USER", SECRET_USERNAME),
        ("MYSQL_PASSWORD", SECRET_PASSWORD),
    ),
    "postgres": (
        ("POSTGRES_DB", SECRET_DATABASE),
        ("POSTGRES_USER", SECRET_USERNAME),
        ("POSTGRES_PASSWORD", SECRET_PASSWORD),
    ),
}


def fleet_labels(app: str, instance: str, component: str) -> dict[str, str]:
    """Labels shared by an object, its selector and its pod template."""
    return {
        "app": app,
        "app.kubernetes.io/name": app,
        "app.kubernetes.io/instance": instance,
        "app.kubernetes.io/component": component,
        "app.kubernetes.io/part-of": PART_OF,
        MANAGED_BY_LABEL: MANAGED_BY,
    }


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------

def validate_quantity(value: str, field: str, owner: str) -> str:
    """Return ``value`` unchanged if it is a valid Kubernetes quantity."""
    try:
        parse_quantity(value)
    except (ValueError, TypeError) as e:
        raise InvalidQuantityError(value, field, owner) from e
    return value


def build_resources(resources: Optional[ResourceRequirements], owner: str) -> Optional[V1ResourceRequirements]:
    if resources is None:
        return None
    built = {}
    for section in ("limits", "requests"):
        values = getattr(resources, section)
        if values is None:
            continue
        built[section] = {
            name: validate_quantity(quantity, f"resources.{section}.{name}", owner)
            for name, quantity in values.items()
        }
    return V1ResourceRequirements(**built)


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def database_engine(config: DatabaseConfig) -> DatabaseEngine:
    engine = DATABASE_ENGINES.get(config.type)
    if engine is None:
        supported = ", ".join(sorted(DATABASE_ENGINES))
        raise UnsupportedDatabaseError(
            f"unsupported database type {config.type!r} (supported: {supported})"
        )
    return engine


def credentials_secret_name(config: DatabaseConfig) -> str:
    if config.credentialsSecret:
        return config.credentialsSecret
    return f"{database_engine(config).name}-credentials"


def _secret_env(name: str, secret: str, key: str, optional: bool = False) -> V1EnvVar:
    return V1EnvVar(
        name=name,
        value_from=V1EnvVarSource(
            secret_key_ref=V1SecretKeySelector(name=secret, key=key, optional=optional or None)
        ),
    )


def database_client_env(config: DatabaseConfig) -> list[V1EnvVar]:
    """Connection settings injected into services that use the shared database."""
    engine = database_engine(config)
    secret = credentials_secret_name(config)
    return [
        V1EnvVar(name="DB_HOST", value=engine.name),
        V1EnvVar(name="DB_PORT", value=str(engine.port)),
        _secret_env("DB_NAME", secret, SECRET_DATABASE, optional=True),
        _secret_env("DB_USER", secret, SECRET_USERNAME, optional=True),
        _secret_env("DB_PASSWORD", secret, SECRET_PASSWORD, optional=True),
    ]


# ---------------------------------------------------------------------------
# Catalog services
# ---------------------------------------------------------------------------

def _http_probe(initial_delay: int, period: int) -> V1Probe:
    return V1Probe(
        http_get=V1HTTPGetAction(path=HEALTH_PATH, port=SERVICE_PORT),
        initial_delay_seconds=initial_delay,
        period_seconds=period,
    )


def build_service_deployment(
    fleet_name: str,
    namespace: str,
    key: str,
    config: ServiceConfig,
    global_config: GlobalConfig,
    env: Optional[list[V1EnvVar]] = None,
) -> V1Deployment:
    """Deployment for one catalog service. ``config`` must already be defaulted."""
    labels = fleet_labels(key, fleet_name, "microservice")
    container = V1Container(
        name=key,
        image=f"{config.image}:{config.tag}",
        image_pull_policy=global_config.imagePullPolicy or DEFAULT_PULL_POLICY,
        ports=[V1ContainerPort(name="http", container_port=SERVICE_PORT, protocol="TCP")],
        liveness_probe=_http_probe(initial_delay=30, period=10),
        readiness_probe=_http_probe(initial_delay=5, period=5),
        resources=build_resources(config.resources, key),
        env=env or None,
    )
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(name=key, namespace=namespace, labels=labels),
        spec=V1DeploymentSpec(
            replicas=config.replicas,
            selector=V1LabelSelector(match_labels=dict(labels)),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(labels)),
                spec=V1PodSpec(containers=[container]),
            ),
        ),
    )


def build_service_endpoint(fleet_name: str, namespace: str, key: str, global_config: GlobalConfig) -> V1Service:
    labels = fleet_labels(key, fleet_name, "microservice")
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(name=key, namespace=namespace, labels=labels),
        spec=V1ServiceSpec(
            type=global_config.serviceType or DEFAULT_SERVICE_TYPE,
            selector=dict(labels),
            ports=[V1ServicePort(name="http", port=SERVICE_PORT, target_port=SERVICE_PORT, protocol="TCP")],
        ),
    )


def build_service_ingress(fleet_name: str, namespace: str, key: str, global_config: GlobalConfig) -> V1Ingress:
    if not global_config.ingressHost:
        raise InvalidSpecError("global.ingressHost is required when global.ingressEnabled is set")
    labels = fleet_labels(key, fleet_name, "microservice")
    backend = V1IngressBackend(
        service=V1IngressServiceBackend(name=key, port=V1ServiceBackendPort(number=SERVICE_PORT))
    )
    return V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=V1ObjectMeta(name=key, namespace=namespace, labels=labels),
        spec=V1IngressSpec(
            ingress_class_name=global_config.ingressClassName or None,
            rules=[
                V1IngressRule(
                    host=f"{key}.{global_config.ingressHost}",
                    http=V1HTTPIngressRuleValue(
                        paths=[V1HTTPIngressPath(path="/", path_type="Prefix", backend=backend)]
                    ),
                )
            ],
        ),
    )


def build_service_objects(
    fleet_name: str,
    namespace: str,
    entry: CatalogEntry,
    config: ServiceConfig,
    global_config: GlobalConfig,
    database: DatabaseConfig,
) -> list:
    """All objects for one enabled service, in apply order."""
    env = database_client_env(database) if entry.uses_database else None
    objects = [
        build_service_deployment(fleet_name, namespace, entry.key, config, global_config, env=env),
        build_service_endpoint(fleet_name, namespace, entry.key, global_config),
    ]
    if global_config.ingressEnabled:
        objects.append(build_service_ingress(fleet_name, namespace, entry.key, global_config))
    return objects


# ---------------------------------------------------------------------------
# Shared database
# ---------------------------------------------------------------------------

def build_database_secret(fleet_name: str, namespace: str, config: DatabaseConfig) -> V1Secret:
    """Generated credentials. Created once and never rotated by the operator."""
    engine = database_engine(config)
    return V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=V1ObjectMeta(
            name=credentials_secret_name(config),
            namespace=namespace,
            labels=fleet_labels(engine.name, fleet_name, "database"),
        ),
        type="Opaque",
        string_data={
            SECRET_ROOT_PASSWORD: secrets.token_urlsafe(24),
            SECRET_DATABASE: DATABASE_NAME,
            SECRET_USERNAME: DATABASE_USER,
            SECRET_PASSWORD: secrets.token_urlsafe(24),
        },
    )


def build_database_pvc(fleet_name: str, namespace: str, config: DatabaseConfig) -> V1PersistentVolumeClaim:
    engine = database_engine(config)
    size = validate_quantity(config.storageSize, "database.storageSize", engine.name)
    return V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=V1ObjectMeta(
            name=f"{engine.name}-pvc",
            namespace=namespace,
            labels=fleet_labels(engine.name, fleet_name, "database"),
        ),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=V1VolumeResourceRequirements(requests={"storage": size}),
            storage_class_name=config.storageClass or None,
        ),
    )


def build_database_deployment(
    fleet_name: str, namespace: str, config: DatabaseConfig, global_config: GlobalConfig
) -> V1Deployment:
    engine = database_engine(config)
    labels = fleet_labels(engine.name, fleet_name, "database")
    secret = credentials_secret_name(config)
    env = [_secret_env(name, secret, key) for name, key in _ENGINE_CREDENTIAL_ENV[engine.name]]
    if engine.name == "postgres":
        # initdb refuses a non-empty mount root (lost+found)
        env.append(V1EnvVar(name="PGDATA", value=f"{engine.data_dir}/pgdata"))

    volume_name = f"{engine.name}-storage"
    container = V1Container(
        name=engine.name,
        image=f"{config.image}:{config.tag}",
        image_pull_policy=global_config.imagePullPolicy or DEFAULT_PULL_POLICY,
        env=env,
        ports=[V1ContainerPort(name=engine.name, container_port=engine.port, protocol="TCP")],
        volume_mounts=[V1VolumeMount(name=volume_name, mount_path=engine.data_dir)],
    )
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(name=engine.name, namespace=namespace, labels=labels),
        spec=V1DeploymentSpec(
            replicas=1,
            selector=V1LabelSelector(match_labels=dict(labels)),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(labels)),
                spec=V1PodSpec(
                    containers=[container],
                    volumes=[
                        V1Volume(
                            name=volume_name,
                            persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                                claim_name=f"{engine.name}-pvc"
                            ),
                        )
                    ],
                ),
            ),
        ),
    )


def build_database_endpoint(fleet_name: str, namespace: str, config: DatabaseConfig) -> V1Service:
    engine = database_engine(config)
    labels = fleet_labels(engine.name, fleet_name, "database")
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(name=engine.name, namespace=namespace, labels=labels),
        spec=V1ServiceSpec(
            type=DEFAULT_SERVICE_TYPE,
            selector=dict(labels),
            ports=[
                V1ServicePort(name=engine.name, port=engine.port, target_port=engine.port, protocol="TCP")
            ],
        ),
    )


def build_database_objects(
    fleet_name: str, namespace: str, config: DatabaseConfig, global_config: GlobalConfig
) -> list:
    """Credentials Secret (unless user-supplied), PVC, Deployment, Service — in apply order."""
    objects = []
    if not config.credentialsSecret:
        objects.append(build_database_secret(fleet_name, namespace, config))
    objects += [
        build_database_pvc(fleet_name, namespace, config),
        build_database_deployment(fleet_name, namespace, config, global_config),
        build_database_endpoint(fleet_name, namespace, config),
    ]
    return objects
