"""Tests for the desired-state builders."""

import pytest

from fleet_operator.builders import (
    MANAGED_BY_LABEL,
    build_database_objects,
    build_resources,
    build_service_deployment,
    build_service_endpoint,
    build_service_ingress,
    build_service_objects,
    database_client_env,
    fleet_labels,
)
from fleet_operator.defaults import default_database_config, default_service_config
from fleet_operator.errors import InvalidQuantityError, InvalidSpecError, UnsupportedDatabaseError
from fleet_operator.models import (
    SERVICE_CATALOG,
    DatabaseConfig,
    GlobalConfig,
    ResourceRequirements,
    ServiceConfig,
)

COFFEE = SERVICE_CATALOG[0]
ELECTRONICS = SERVICE_CATALOG[4]


def _service(**overrides):
    return default_service_config("coffee-shop", ServiceConfig(enabled=True, **overrides))


def _database(**overrides):
    return default_database_config(DatabaseConfig(enabled=True, **overrides))


class TestLabels:

    def test_labels_identify_fleet_and_component(self):
        labels = fleet_labels("pet-store", "demo", "microservice")

        assert labels["app"] == "pet-store"
        assert labels["app.kubernetes.io/instance"] == "demo"
        assert labels["app.kubernetes.io/component"] == "microservice"
        assert labels[MANAGED_BY_LABEL] == "fleet-operator"


class TestServiceDeployment:

    def test_defaults_produce_single_latest_replica(self):
        deployment = build_service_deployment("demo", "default", "coffee-shop", _service(), GlobalConfig())

        container = deployment.spec.template.spec.containers[0]
        assert deployment.spec.replicas == 1
        assert container.image == "coffee-shop:latest"
        assert container.image_pull_policy == "IfNotPresent"
        assert container.ports[0].container_port == 8080

    def test_selector_matches_pod_template(self):
        deployment = build_service_deployment("demo", "default", "coffee-shop", _service(), GlobalConfig())

        selector = deployment.spec.selector.match_labels
        template_labels = deployment.spec.template.metadata.labels
        assert all(template_labels[k] == v for k, v in selector.items())

    def test_probes_hit_health_endpoint(self):
        deployment = build_service_deployment("demo", "default", "coffee-shop", _service(), GlobalConfig())

        container = deployment.spec.template.spec.containers[0]
        assert container.liveness_probe.http_get.path == "/health"
        assert container.liveness_probe.initial_delay_seconds == 30
        assert container.readiness_probe.period_seconds == 5

    def test_global_pull_policy(self):
        deployment = build_service_deployment(
            "demo", "default", "coffee-shop", _service(), GlobalConfig(imagePullPolicy="Always")
        )

        assert deployment.spec.template.spec.containers[0].image_pull_policy == "Always"

    def test_resources_are_passed_through(self):
        config = _service(resources=ResourceRequirements(limits={"cpu": "500m", "memory": "256Mi"}))
        deployment = build_service_deployment("demo", "default", "coffee-shop", config, GlobalConfig())

        resources = deployment.spec.template.spec.containers[0].resources
        assert resources.limits == {"cpu": "500m", "memory": "256Mi"}
        assert resources.requests is None


class TestQuantities:

    def test_invalid_quantity_names_field_and_service(self):
        with pytest.raises(InvalidQuantityError) as exc:
            build_resources(ResourceRequirements(limits={"cpu": "not-a-quantity"}), "restaurant")

        assert exc.value.field == "resources.limits.cpu"
        assert "restaurant" in str(exc.value)
        assert "not-a-quantity" in str(exc.value)

    def test_no_resources(self):
        assert build_resources(None, "restaurant") is None

    def test_invalid_storage_size(self):
        with pytest.raises(InvalidQuantityError):
            build_database_objects("demo", "default", _database(storageSize="lots"), GlobalConfig())


class TestServiceEndpointAndIngress:

    def test_service_defaults_to_cluster_ip(self):
        service = build_service_endpoint("demo", "default", "coffee-shop", GlobalConfig())

        assert service.spec.type == "ClusterIP"
        assert service.spec.ports[0].port == 8080
        assert service.spec.selector["app"] == "coffee-shop"

    def test_service_type_override(self):
        service = build_service_endpoint("demo", "default", "coffee-shop", GlobalConfig(serviceType="NodePort"))

        assert service.spec.type == "NodePort"

    def test_ingress_host_per_service(self):
        ingress = build_service_ingress(
            "demo", "default", "coffee-shop",
            GlobalConfig(ingressEnabled=True, ingressHost="apps.example.com", ingressClassName="nginx"),
        )

        rule = ingress.spec.rules[0]
        assert rule.host == "coffee-shop.apps.example.com"
        assert rule.http.paths[0].backend.service.name == "coffee-shop"
        assert ingress.spec.ingress_class_name == "nginx"

    def test_ingress_requires_host(self):
        with pytest.raises(InvalidSpecError):
            build_service_ingress("demo", "default", "coffee-shop", GlobalConfig(ingressEnabled=True))

    def test_objects_without_ingress(self):
        objects = build_service_objects("demo", "default", COFFEE, _service(), GlobalConfig(), _database())

        assert [o.kind for o in objects] == ["Deployment", "Service"]

    def test_objects_with_ingress(self):
        global_config = GlobalConfig(ingressEnabled=True, ingressHost="apps.example.com")
        objects = build_service_objects("demo", "default", COFFEE, _service(), global_config, _database())

        assert [o.kind for o in objects] == ["Deployment", "Service", "Ingress"]


class TestDatabaseWiring:

    def test_only_database_services_get_connection_env(self):
        coffee = build_service_objects("demo", "default", COFFEE, _service(), GlobalConfig(), _database())[0]
        electronics = build_service_objects(
            "demo", "default", ELECTRONICS,
            default_service_config(ELECTRONICS.key, ServiceConfig(enabled=True)),
            GlobalConfig(), _database(),
        )[0]

        assert coffee.spec.template.spec.containers[0].env is None
        env = {e.name: e for e in electronics.spec.template.spec.containers[0].env}
        assert env["DB_HOST"].value == "mysql"
        assert env["DB_PORT"].value == "3306"
        assert env["DB_PASSWORD"].value_from.secret_key_ref.name == "mysql-credentials"
        assert env["DB_PASSWORD"].value_from.secret_key_ref.optional is True

    def test_client_env_uses_user_secret(self):
        env = {e.name: e for e in database_client_env(_database(type="postgres", credentialsSecret="pg-creds"))}

        assert env["DB_HOST"].value == "postgres"
        assert env["DB_USER"].value_from.secret_key_ref.name == "pg-creds"

    def test_unsupported_engine(self):
        with pytest.raises(UnsupportedDatabaseError):
            build_database_objects("demo", "default", _database(type="oracle"), GlobalConfig())


class TestDatabaseObjects:

    def test_apply_order(self):
        objects = build_database_objects("demo", "default", _database(), GlobalConfig())

        assert [o.kind for o in objects] == ["Secret", "PersistentVolumeClaim", "Deployment", "Service"]

    def test_default_storage_request(self):
        objects = build_database_objects("demo", "default", _database(), GlobalConfig())
        pvc = objects[1]

        assert pvc.metadata.name == "mysql-pvc"
        assert pvc.spec.resources.requests == {"storage": "10Gi"}
        assert pvc.spec.access_modes == ["ReadWriteOnce"]
        assert pvc.spec.storage_class_name is None

    def test_generated_credentials(self):
        secret = build_database_objects("demo", "default", _database(), GlobalConfig())[0]

        assert secret.metadata.name == "mysql-credentials"
        assert secret.string_data["username"] == "admin"
        assert len(secret.string_data["password"]) >= 24
        assert secret.string_data["password"] != secret.string_data["root-password"]

    def test_user_secret_is_not_generated(self):
        objects = build_database_objects("demo", "default", _database(credentialsSecret="mine"), GlobalConfig())

        assert "Secret" not in [o.kind for o in objects]
        deployment = objects[1]
        refs = {e.value_from.secret_key_ref.name for e in deployment.spec.template.spec.containers[0].env}
        assert refs == {"mine"}

    def test_database_workload_mounts_claim(self):
        deployment = build_database_objects("demo", "default", _database(), GlobalConfig())[2]

        pod = deployment.spec.template.spec
        assert deployment.spec.replicas == 1
        assert pod.containers[0].image == "mysql:8.0"
        assert pod.containers[0].volume_mounts[0].mount_path == "/var/lib/mysql"
        assert pod.volumes[0].persistent_volume_claim.claim_name == "mysql-pvc"

    def test_postgres_data_directory(self):
        deployment = build_database_objects("demo", "default", _database(type="postgres"), GlobalConfig())[2]

        env = {e.name: e for e in deployment.spec.template.spec.containers[0].env}
        assert env["PGDATA"].value == "/var/lib/postgresql/data/pgdata"
        assert "POSTGRES_PASSWORD" in env

    def test_database_service_port(self):
        service = build_database_objects("demo", "default", _database(), GlobalConfig())[3]

        assert service.metadata.name == "mysql"
        assert service.spec.ports[0].port == 3306
