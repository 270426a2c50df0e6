"""Unit tests for configuration models."""

import pytest

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.models import (
    APIConfig,
    APIGatewayConfig,
    APIPath,
    BucketConfig,
    CacheConfig,
    ColdStartSLOConfig,
    InstanceConfig,
    JWTAuth,
    NetworkConfig,
    Probe,
    SecretBinding,
    SecretVolume,
    SidecarConfig,
    StackConfig,
    Upstream,
)


class TestStackConfig:
    """Tests for StackConfig validation."""

    def test_valid_config(self, stack_config):
        config = stack_config()
        assert config.project == "test-project"
        assert config.backend_name == "backend"
        assert config.frontend_name == "frontend"
        assert config.backend is None

    def test_missing_network_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            StackConfig(
                project="test-project",
                region="us-central1",
                backend_image="backend:latest",
                frontend_image="frontend:latest",
            )
        assert exc_info.value.field == "network"

    def test_empty_backend_image_is_rejected(self, stack_config):
        with pytest.raises(ConfigurationError, match="image reference is required") as exc_info:
            stack_config(backend_image="")
        assert exc_info.value.field == "backend_image"

    def test_blank_frontend_image_is_rejected(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(frontend_image="   ")
        assert exc_info.value.field == "frontend_image"

    def test_invalid_region_is_rejected(self, stack_config):
        with pytest.raises(ConfigurationError, match="not a valid GCP region"):
            stack_config(region="Central")

    def test_empty_project_is_rejected(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(project="")
        assert exc_info.value.field == "project"

    def test_service_names_must_differ(self, stack_config):
        with pytest.raises(ConfigurationError, match="must differ"):
            stack_config(backend_name="app", frontend_name="app")

    def test_invalid_service_name(self, stack_config):
        with pytest.raises(ConfigurationError, match="lowercase"):
            stack_config(backend_name="Backend_API")

    def test_invalid_labels(self, stack_config):
        with pytest.raises(ConfigurationError, match="invalid labels: Team"):
            stack_config(labels={"Team": "core"})

    def test_unknown_field_is_rejected(self, stack_config):
        with pytest.raises(ConfigurationError):
            stack_config(zone="us-central1-a")

    def test_nested_error_reports_dotted_field(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(network={"domain_url": "https://app.example.com"})
        assert exc_info.value.field == "network.domain_url"
        assert "bare domain name" in exc_info.value.message

    def test_deeply_nested_error_reports_dotted_field(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(
                network={"domain_url": "app.example.com", "api_gateway": {"regions": ["nowhere"]}},
            )
        assert exc_info.value.field == "network.api_gateway.regions"
        assert "'nowhere' is not a valid GCP region" in exc_info.value.message

    def test_nested_instance_error_reports_dotted_field(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(backend={"secrets": [{"secret_id": "db", "env_var": "1BAD"}]})
        assert exc_info.value.field == "backend.secrets.0.env_var"

    def test_valid_nested_dicts(self, stack_config):
        config = stack_config(
            network={"domain_url": "app.example.com", "api_gateway": {"regions": ["us-east1"]}},
            backend={"max_instance_count": 5},
        )
        assert isinstance(config.network, NetworkConfig)
        assert config.gateway_regions == ["us-east1"]
        assert config.backend.max_instance_count == 5

    def test_error_message_includes_field(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(region="nowhere")
        assert str(exc_info.value).startswith("region: ")

    def test_is_immutable(self, stack_config):
        config = stack_config()
        with pytest.raises(Exception):
            config.project = "other"

    def test_gateway_regions_default_to_stack_region(self, stack_config):
        config = stack_config(
            network=NetworkConfig(domain_url="app.example.com", api_gateway=APIGatewayConfig()),
        )
        assert config.gateway_regions == ["us-central1"]

    def test_gateway_regions_when_disabled(self, stack_config):
        config = stack_config(
            network=NetworkConfig(
                domain_url="app.example.com",
                api_gateway=APIGatewayConfig(enabled=False, regions=["us-east1"]),
            ),
        )
        assert config.gateway_regions == []
        assert not config.network.gateway_enabled


class TestNetworkConfig:
    """Tests for NetworkConfig validation."""

    def test_defaults(self):
        network = NetworkConfig(domain_url="app.example.com")
        assert network.enable_cloud_armor is False
        assert network.client_ip_allowlist == []
        assert network.enable_private_traffic_only is False
        assert network.enable_global_entrypoint is True
        assert network.enable_http_redirect is True
        assert network.backend_path_patterns == ["/api/*"]
        assert network.gateway_enabled is False

    def test_iap_members_require_iap(self):
        with pytest.raises(ConfigurationError, match="enable_iap is false"):
            NetworkConfig(domain_url="app.example.com", iap_members=["user:alice@example.com"])

    def test_iap_member_format(self):
        with pytest.raises(ConfigurationError, match="must be an IAM member") as exc_info:
            NetworkConfig(domain_url="app.example.com", enable_iap=True, iap_members=["alice@example.com"])
        assert exc_info.value.field == "iap_members"

    def test_proxy_subnet_range(self):
        network = NetworkConfig(domain_url="app.example.com", proxy_subnet_cidr_range="10.127.0.0/24")
        assert network.proxy_network_name == "default"
        with pytest.raises(ConfigurationError, match="not a valid CIDR range"):
            NetworkConfig(domain_url="app.example.com", proxy_subnet_cidr_range="10.127.0.0")

    def test_trailing_dot_is_stripped(self):
        assert NetworkConfig(domain_url="app.example.com.").domain_url == "app.example.com"

    def test_domain_with_scheme_is_rejected(self):
        with pytest.raises(ConfigurationError, match="bare domain"):
            NetworkConfig(domain_url="https://app.example.com")

    def test_empty_domain_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            NetworkConfig(domain_url="")
        assert exc_info.value.field == "domain_url"

    def test_valid_allowlist(self):
        network = NetworkConfig(
            domain_url="app.example.com",
            client_ip_allowlist=["10.0.0.0/8", "203.0.113.7", "2001:db8::/32"],
        )
        assert len(network.client_ip_allowlist) == 3

    def test_invalid_allowlist_entry(self):
        with pytest.raises(ConfigurationError, match="not-an-ip"):
            NetworkConfig(domain_url="app.example.com", client_ip_allowlist=["not-an-ip"])

    def test_private_traffic_with_gateway_is_rejected(self):
        with pytest.raises(ConfigurationError, match="enable_private_traffic_only cannot be combined"):
            NetworkConfig(
                domain_url="app.example.com",
                enable_private_traffic_only=True,
                api_gateway=APIGatewayConfig(),
            )

    def test_private_traffic_with_disabled_gateway(self):
        network = NetworkConfig(
            domain_url="app.example.com",
            enable_private_traffic_only=True,
            api_gateway=APIGatewayConfig(enabled=False),
        )
        assert network.enable_private_traffic_only is True
        assert network.gateway_enabled is False


class TestInstanceConfig:
    """Tests for InstanceConfig validation."""

    def test_defaults(self):
        instance = InstanceConfig()
        assert instance.container_port is None
        assert instance.min_instance_count == 0
        assert instance.max_instance_count == 3
        assert instance.startup_probe.path is None
        assert instance.liveness_probe.path == "healthz"
        assert instance.enable_unauthenticated is False

    def test_min_above_max_is_rejected(self):
        with pytest.raises(ConfigurationError, match="cannot exceed"):
            InstanceConfig(min_instance_count=5, max_instance_count=2)

    def test_invalid_port(self):
        with pytest.raises(ConfigurationError) as exc_info:
            InstanceConfig(container_port=70000)
        assert exc_info.value.field == "container_port"

    def test_invalid_env_var_name(self):
        with pytest.raises(ConfigurationError, match="not a valid environment variable name"):
            InstanceConfig(env_vars={"1BAD": "x"})

    def test_reserved_env_var(self):
        with pytest.raises(ConfigurationError, match="set by the fullstack component"):
            InstanceConfig(env_vars={"APP_BASE_URL": "https://other.example.com"})

    def test_secret_shadowing_env_var(self):
        with pytest.raises(ConfigurationError, match="bound more than once"):
            InstanceConfig(
                env_vars={"API_KEY": "plain"},
                secrets=[SecretBinding(secret_id="api-key", env_var="API_KEY")],
            )

    def test_same_secret_bound_twice(self):
        with pytest.raises(ConfigurationError, match="more than one variable"):
            InstanceConfig(
                secrets=[
                    SecretBinding(secret_id="api-key", env_var="API_KEY"),
                    SecretBinding(secret_id="api-key", env_var="OTHER_KEY"),
                ],
            )

    def test_duplicate_volume_names(self):
        volume = SecretVolume(secret_id="tls", name="certs", path="/etc/certs")
        with pytest.raises(ConfigurationError, match="volume names must be unique"):
            InstanceConfig(secret_volumes=[volume, volume])

    def test_secret_binding_reserved_env_var(self):
        with pytest.raises(ConfigurationError, match="set by the fullstack component"):
            SecretBinding(secret_id="url", env_var="BACKEND_API_URL")

    def test_sidecar_names_must_be_unique(self):
        sidecar = SidecarConfig(name="proxy", image="proxy:1")
        with pytest.raises(ConfigurationError, match="sidecar names must be unique"):
            InstanceConfig(sidecars=[sidecar, sidecar])

    def test_sidecar_volume_clashing_with_instance_volume(self):
        volume = SecretVolume(secret_id="tls", name="certs", path="/etc/certs")
        with pytest.raises(ConfigurationError, match="volume names must be unique"):
            InstanceConfig(
                secret_volumes=[volume],
                sidecars=[SidecarConfig(name="proxy", image="proxy:1", secret_volumes=[volume])],
            )

    def test_sidecar_health_checks_need_port(self):
        with pytest.raises(ConfigurationError, match="needs a port"):
            SidecarConfig(name="proxy", image="proxy:1", liveness_probe=Probe(path="healthz"))

    def test_invalid_sidecar_name(self):
        with pytest.raises(ConfigurationError) as exc_info:
            InstanceConfig(sidecars=[{"name": "Proxy_1", "image": "proxy:1"}])
        assert exc_info.value.field == "sidecars.0.name"


class TestAPIGatewayModels:
    """Tests for API Gateway configuration models."""

    def test_api_config_defaults(self):
        api_config = APIConfig()
        assert api_config.openapi_spec_path == "/openapi.yaml"
        assert api_config.enable_cors is True
        assert [p.path for p in api_config.backend.api_paths] == ["/api/v1"]
        assert [p.path for p in api_config.frontend.api_paths] == ["/"]

    def test_cors_lists_require_cors(self):
        with pytest.raises(ConfigurationError, match="cors_allowed_origins set while enable_cors is false"):
            APIConfig(enable_cors=False, cors_allowed_origins=["https://app.example.com"])

    def test_jwt_pair_must_be_complete(self):
        with pytest.raises(ConfigurationError, match="must be set together"):
            JWTAuth(issuer="https://issuer.example.com")

    def test_empty_jwt_is_derived(self):
        assert JWTAuth().is_derived
        assert not JWTAuth(issuer="i", jwks_uri="https://keys.example.com").is_derived

    def test_path_must_start_with_slash(self):
        with pytest.raises(ConfigurationError, match="must start with '/'"):
            APIPath(path="api")

    def test_path_trailing_slash_is_stripped(self):
        assert APIPath(path="/api/v1/").path == "/api/v1"
        assert APIPath(path="/").path == "/"

    def test_target_path(self):
        assert APIPath(path="/api").target_path == "/api"
        assert APIPath(path="/api", upstream_path="/v2").target_path == "/v2"

    def test_duplicate_api_paths(self):
        with pytest.raises(ConfigurationError, match="api paths must be unique"):
            Upstream(api_paths=[APIPath(path="/api"), APIPath(path="/api/")])

    def test_regions_are_validated(self):
        with pytest.raises(ConfigurationError, match="not a valid GCP region"):
            APIGatewayConfig(regions=["mars-1"])

    def test_regions_are_deduplicated_in_order(self):
        gateway = APIGatewayConfig(regions=["us-east1", "us-central1", "us-east1"])
        assert gateway.regions == ["us-east1", "us-central1"]


class TestBackingServiceModels:
    """Tests for cache, bucket and SLO configuration."""

    def test_cache_defaults(self):
        cache = CacheConfig()
        assert cache.redis_version == "REDIS_7_0"
        assert cache.tier == "BASIC"
        assert cache.memory_size_gb == 1
        assert cache.connector_ip_cidr_range == "10.8.0.0/28"

    def test_cache_tier(self):
        assert CacheConfig(tier="STANDARD_HA").tier == "STANDARD_HA"
        with pytest.raises(ConfigurationError, match="not a Memorystore tier"):
            CacheConfig(tier="PREMIUM")

    def test_connector_range_must_be_slash_28(self):
        with pytest.raises(ConfigurationError, match="IPv4 /28") as exc_info:
            CacheConfig(connector_ip_cidr_range="10.8.0.0/24")
        assert exc_info.value.field == "connector_ip_cidr_range"

    def test_connector_instances(self):
        with pytest.raises(ConfigurationError, match="must exceed"):
            CacheConfig(connector_min_instances=4, connector_max_instances=3)

    def test_bucket_defaults(self):
        bucket = BucketConfig()
        assert bucket.location == "US"
        assert bucket.retention_days == 365
        assert bucket.force_destroy is False

    def test_slo_goal_bounds(self):
        assert ColdStartSLOConfig().goal == 0.99
        with pytest.raises(ConfigurationError) as exc_info:
            ColdStartSLOConfig(goal=1)
        assert exc_info.value.field == "goal"

    def test_nested_slo_error_reports_dotted_field(self, stack_config):
        with pytest.raises(ConfigurationError) as exc_info:
            stack_config(backend={"cold_start_slo": {"rolling_period_days": 90}})
        assert exc_info.value.field == "backend.cold_start_slo.rolling_period_days"

    def test_cache_with_own_connector_is_rejected(self, stack_config):
        backend = InstanceConfig(private_vpc_access_connector="projects/p/locations/r/connectors/c")
        with pytest.raises(ConfigurationError, match="cannot be set together with cache"):
            stack_config(cache=CacheConfig(), backend=backend)

    def test_bucket_env_var_clash(self, stack_config):
        backend = InstanceConfig(secrets=[SecretBinding(secret_id="b", env_var="BUCKET_NAME")])
        with pytest.raises(ConfigurationError, match="set by the bucket"):
            stack_config(bucket=BucketConfig(), backend=backend)

    def test_cache_volume_clash(self, stack_config):
        backend = InstanceConfig(
            secret_volumes=[SecretVolume(secret_id="c", name="cache-credentials", path="/app/cache")],
        )
        with pytest.raises(ConfigurationError, match="mounted by the cache"):
            stack_config(cache=CacheConfig(), backend=backend)

    def test_bucket_env_var_without_bucket(self, stack_config):
        config = stack_config(backend=InstanceConfig(env_vars={"BUCKET_NAME": "external"}))
        assert config.bucket is None
