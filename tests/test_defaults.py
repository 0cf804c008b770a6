"""Tests for spec defaulting."""

from fleet_operator.defaults import default_database_config, default_service_config
from fleet_operator.models import DatabaseConfig, ResourceRequirements, ServiceConfig


class TestServiceDefaults:
    """Defaults for a catalog service."""

    def test_fills_unset_fields(self):
        config = default_service_config("coffee-shop", ServiceConfig(enabled=True))

        assert config.replicas == 1
        assert config.image == "coffee-shop"
        assert config.tag == "latest"

    def test_keeps_overrides(self):
        given = ServiceConfig(enabled=True, replicas=3, image="registry.local/pets", tag="v2")
        config = default_service_config("pet-store", given)

        assert (config.replicas, config.image, config.tag) == (3, "registry.local/pets", "v2")

    def test_zero_replicas_is_not_defaulted(self):
        config = default_service_config("restaurant", ServiceConfig(enabled=True, replicas=0))

        assert config.replicas == 0

    def test_does_not_mutate_input(self):
        given = ServiceConfig(
            enabled=True,
            resources=ResourceRequirements(limits={"cpu": "500m"}),
        )
        config = default_service_config("restaurant", given)
        config.resources.limits["cpu"] = "1"

        assert given.replicas is None
        assert given.image == ""
        assert given.resources.limits == {"cpu": "500m"}


class TestDatabaseDefaults:
    """Defaults for the shared database."""

    def test_fills_mysql_defaults(self):
        config = default_database_config(DatabaseConfig(enabled=True))

        assert config.type == "mysql"
        assert config.image == "mysql"
        assert config.tag == "8.0"
        assert config.storageSize == "10Gi"

    def test_postgres_engine_defaults(self):
        config = default_database_config(DatabaseConfig(enabled=True, type="postgres"))

        assert (config.image, config.tag) == ("postgres", "16")

    def test_unknown_engine_leaves_image_empty(self):
        config = default_database_config(DatabaseConfig(enabled=True, type="oracle"))

        assert config.type == "oracle"
        assert config.image == ""
        assert config.storageSize == "10Gi"

    def test_storage_size_from_yaml_number(self):
        config = DatabaseConfig.model_validate({"enabled": True, "storageSize": 5})

        assert default_database_config(config).storageSize == "5"
