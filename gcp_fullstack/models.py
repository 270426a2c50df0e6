"""Configuration models for a fullstack deployment.

All models are immutable and validated on construction. Any validation
failure is raised as ``ConfigurationError`` so callers deal with a single
exception type regardless of which nested block was wrong.
"""

import ipaddress
import re
from contextvars import ContextVar
from typing import Any

import pulumi
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.labels import invalid_labels

REGION_PATTERN = re.compile(r"^[a-z]+-[a-z]+[0-9]$")
ENV_VAR_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
CONTAINER_NAME_PATTERN = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")

# Set on the main container by the fullstack component
RESERVED_ENV_VARS = frozenset({"DOTENV_CONFIG_PATH", "APP_BASE_URL", "BACKEND_API_URL"})

# Set on the backend by the optional bucket and cache
BUCKET_NAME_ENV_VAR = "BUCKET_NAME"
CACHE_CREDENTIALS_VOLUME_NAME = "cache-credentials"

DEFAULT_API_PATH = "/api/v1"
DEFAULT_OPENAPI_SPEC_PATH = "/openapi.yaml"


def _format_validation_error(error: ValidationError) -> tuple[str, str | None]:
    """Flatten the first pydantic error into a message and dotted field path."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or None
    message = first["msg"].removeprefix("Value error, ")
    if error.error_count() > 1:
        message = f"{message} (and {error.error_count() - 1} more errors)"
    return message, field


# Number of ConfigModel constructors currently on the stack
_construction_depth: ContextVar[int] = ContextVar("config_construction_depth", default=0)


class ConfigModel(BaseModel):
    """Frozen base model raising ConfigurationError on invalid input.

    Nested models given as dicts are built through their own ``__init__``
    while the outer model validates. Those keep raising ``ValidationError``
    so pydantic prefixes the nested location, and only the outermost
    constructor translates the error.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    def __init__(self, **data: Any):
        depth = _construction_depth.get()
        token = _construction_depth.set(depth + 1)
        try:
            super().__init__(**data)
        except ValidationError as e:
            if depth:
                raise
            message, field = _format_validation_error(e)
            raise ConfigurationError(message, field=field) from e
        finally:
            _construction_depth.reset(token)


# =============================================================================
# Cloud Run instances
# =============================================================================


class Probe(ConfigModel):
    """Container health check. A probe without a path checks the TCP port."""

    path: str | None = None
    initial_delay_seconds: int = Field(default=0, ge=0)
    period_seconds: int = Field(default=10, gt=0)
    timeout_seconds: int = Field(default=1, gt=0)
    failure_threshold: int = Field(default=3, gt=0)


DEFAULT_STARTUP_PROBE = Probe(
    initial_delay_seconds=10,
    period_seconds=2,
    timeout_seconds=1,
    failure_threshold=3,
)
DEFAULT_LIVENESS_PROBE = Probe(
    path="healthz",
    initial_delay_seconds=15,
    period_seconds=5,
    timeout_seconds=3,
    failure_threshold=3,
)


class SecretBinding(ConfigModel):
    """Expose a Secret Manager secret as an environment variable."""

    secret_id: str = Field(..., min_length=1, description="Secret Manager secret id")
    env_var: str = Field(..., min_length=1, description="Target environment variable")
    version: str = "latest"

    @field_validator("env_var")
    @classmethod
    def validate_env_var(cls, v: str) -> str:
        if not ENV_VAR_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a valid environment variable name")
        if v in RESERVED_ENV_VARS:
            raise ValueError(f"'{v}' is set by the fullstack component")
        return v


def duplicate_binding(
    bindings: list[SecretBinding],
    env_vars: dict[str, str] | None = None,
) -> str | None:
    """Describe the first env var or secret bound twice, or None."""
    seen_env_vars = set(env_vars or {})
    seen_secrets: set[str] = set()
    for binding in bindings:
        if binding.env_var in seen_env_vars:
            return f"environment variable '{binding.env_var}' is bound more than once"
        if binding.secret_id in seen_secrets:
            return f"secret '{binding.secret_id}' is bound to more than one variable"
        seen_env_vars.add(binding.env_var)
        seen_secrets.add(binding.secret_id)
    return None


class SecretVolume(ConfigModel):
    """Mount a Secret Manager secret as a file."""

    secret_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, description="Volume name")
    path: str = Field(..., min_length=1, description="Directory the file is mounted in")
    file_name: str = ".env"
    version: str = "latest"


class SidecarConfig(ConfigModel):
    """Additional container running next to the main one, e.g. a proxy or agent.

    Health checks target ``port`` and are skipped when it is unset.
    """

    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env_vars: dict[str, str] = Field(default_factory=dict)
    secrets: list[SecretBinding] = Field(default_factory=list)
    secret_volumes: list[SecretVolume] = Field(default_factory=list)
    port: int | None = Field(default=None, gt=0, le=65535)
    startup_probe: Probe | None = None
    liveness_probe: Probe | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not CONTAINER_NAME_PATTERN.match(v):
            raise ValueError(f"'{v}' must be lowercase letters, digits and hyphens")
        return v

    @field_validator("env_vars")
    @classmethod
    def validate_env_vars(cls, v: dict[str, str]) -> dict[str, str]:
        for key in v:
            if not ENV_VAR_PATTERN.match(key):
                raise ValueError(f"'{key}' is not a valid environment variable name")
        return v

    @model_validator(mode="after")
    def validate_sidecar(self) -> "SidecarConfig":
        duplicate = duplicate_binding(self.secrets, self.env_vars)
        if duplicate:
            raise ValueError(duplicate)
        if (self.startup_probe or self.liveness_probe) and self.port is None:
            raise ValueError(f"sidecar '{self.name}' needs a port for its health checks")
        return self


class ColdStartSLOConfig(ConfigModel):
    """Container startup latency objective for a Cloud Run service.

    An alert policy on the SLO burn rate is added when ``alert_channel_id``
    names a Cloud Monitoring notification channel.
    """

    goal: float = Field(default=0.99, gt=0, lt=1)
    rolling_period_days: int = Field(default=7, ge=1, le=30)
    max_boot_time_ms: float = Field(default=1000.0, gt=0)
    alert_channel_id: str | None = None
    alert_burn_rate_threshold: float = Field(default=2.0, gt=0)


class InstanceConfig(ConfigModel):
    """Optional tuning for a Cloud Run service.

    Fields left as None fall back to the backend or frontend defaults.
    """

    resource_limits: dict[str, str] | None = None
    container_port: int | None = Field(default=None, gt=0, le=65535)
    min_instance_count: int = Field(default=0, ge=0)
    max_instance_count: int = Field(default=3, gt=0)
    env_vars: dict[str, str] = Field(default_factory=dict)
    secrets: list[SecretBinding] = Field(default_factory=list)
    secret_volumes: list[SecretVolume] = Field(default_factory=list)
    secret_config_file_name: str | None = None
    secret_config_file_path: str | None = None
    startup_probe: Probe = DEFAULT_STARTUP_PROBE
    liveness_probe: Probe = DEFAULT_LIVENESS_PROBE
    deletion_protection: bool = False
    enable_public_ingress: bool = False
    enable_unauthenticated: bool = False
    startup_cpu_boost: bool = False
    project_iam_roles: list[str] = Field(default_factory=list)
    # Serverless VPC Access connector id for private egress, e.g. to a database
    private_vpc_access_connector: str | None = None
    cold_start_slo: ColdStartSLOConfig | None = None
    sidecars: list[SidecarConfig] = Field(default_factory=list)

    @field_validator("env_vars")
    @classmethod
    def validate_env_vars(cls, v: dict[str, str]) -> dict[str, str]:
        for key in v:
            if not ENV_VAR_PATTERN.match(key):
                raise ValueError(f"'{key}' is not a valid environment variable name")
            if key in RESERVED_ENV_VARS:
                raise ValueError(f"'{key}' is set by the fullstack component")
        return v

    @model_validator(mode="after")
    def validate_bindings(self) -> "InstanceConfig":
        if self.min_instance_count > self.max_instance_count:
            raise ValueError("min_instance_count cannot exceed max_instance_count")

        duplicate = duplicate_binding(self.secrets, self.env_vars)
        if duplicate:
            raise ValueError(duplicate)

        volume_names = [volume.name for volume in self.secret_volumes]
        volume_names += [volume.name for sidecar in self.sidecars for volume in sidecar.secret_volumes]
        if len(volume_names) != len(set(volume_names)):
            raise ValueError("secret volume names must be unique")

        sidecar_names = [sidecar.name for sidecar in self.sidecars]
        if len(sidecar_names) != len(set(sidecar_names)):
            raise ValueError("sidecar names must be unique")
        return self


# =============================================================================
# Backing services
# =============================================================================


class CacheConfig(ConfigModel):
    """Memorystore Redis instance reachable from the backend.

    The backend reaches the private instance through a Serverless VPC Access
    connector in ``authorized_network``.
    """

    redis_version: str = "REDIS_7_0"
    tier: str = "BASIC"
    memory_size_gb: int = Field(default=1, gt=0)
    authorized_network: str = Field(default="default", min_length=1)
    connector_ip_cidr_range: str = "10.8.0.0/28"
    connector_min_instances: int = Field(default=2, ge=2)
    connector_max_instances: int = Field(default=3, gt=2)

    @field_validator("tier")
    @classmethod
    def validate_tier(cls, v: str) -> str:
        if v not in ("BASIC", "STANDARD_HA"):
            raise ValueError(f"'{v}' is not a Memorystore tier, use BASIC or STANDARD_HA")
        return v

    @field_validator("connector_ip_cidr_range")
    @classmethod
    def validate_connector_range(cls, v: str) -> str:
        try:
            network = ipaddress.ip_network(v)
        except ValueError:
            raise ValueError(f"'{v}' is not a valid CIDR range")
        if network.version != 4 or network.prefixlen != 28:
            raise ValueError(f"'{v}' must be an IPv4 /28 range")
        return v

    @model_validator(mode="after")
    def validate_connector_instances(self) -> "CacheConfig":
        if self.connector_min_instances >= self.connector_max_instances:
            raise ValueError("connector_max_instances must exceed connector_min_instances")
        return self


class BucketConfig(ConfigModel):
    """Private Cloud Storage bucket the backend can read and write."""

    location: str = "US"
    storage_class: str = "STANDARD"
    retention_days: int = Field(default=365, gt=0)
    force_destroy: bool = False


# =============================================================================
# API Gateway
# =============================================================================


class JWTAuth(ConfigModel):
    """JWT validation for an upstream.

    Leave both fields empty to derive them from the frontend service account.
    """

    issuer: str = ""
    jwks_uri: str = ""

    @model_validator(mode="after")
    def validate_pair(self) -> "JWTAuth":
        if bool(self.issuer) != bool(self.jwks_uri):
            raise ValueError("issuer and jwks_uri must be set together")
        return self

    @property
    def is_derived(self) -> bool:
        return not self.issuer and not self.jwks_uri


class APIPath(ConfigModel):
    """Public path exposed by the gateway and the upstream path it maps to."""

    path: str = DEFAULT_API_PATH
    upstream_path: str | None = None

    @field_validator("path", "upstream_path")
    @classmethod
    def validate_path(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v.startswith("/"):
            raise ValueError(f"path '{v}' must start with '/'")
        return v.rstrip("/") or "/"

    @property
    def target_path(self) -> str:
        return self.upstream_path or self.path


class Upstream(ConfigModel):
    """Gateway upstream. The service URL is always the deployed Cloud Run service."""

    api_paths: list[APIPath] = Field(default_factory=lambda: [APIPath()])
    jwt_auth: JWTAuth | None = None

    @field_validator("api_paths")
    @classmethod
    def validate_api_paths(cls, v: list[APIPath]) -> list[APIPath]:
        paths = [api_path.path for api_path in v]
        if len(paths) != len(set(paths)):
            raise ValueError("api paths must be unique")
        return v


class APIConfig(ConfigModel):
    """API Gateway API config: routes, CORS and authentication."""

    openapi_spec_path: str = DEFAULT_OPENAPI_SPEC_PATH
    backend: Upstream = Field(default_factory=Upstream)
    frontend: Upstream = Field(default_factory=lambda: Upstream(api_paths=[APIPath(path="/")]))
    enable_cors: bool = True
    cors_allowed_origins: list[str] | None = None
    cors_allowed_methods: list[str] | None = None
    cors_allowed_headers: list[str] | None = None

    @model_validator(mode="after")
    def validate_cors(self) -> "APIConfig":
        if not self.enable_cors:
            configured = [
                name
                for name in ("cors_allowed_origins", "cors_allowed_methods", "cors_allowed_headers")
                if getattr(self, name)
            ]
            if configured:
                raise ValueError(f"{', '.join(configured)} set while enable_cors is false")
        return self


class APIGatewayConfig(ConfigModel):
    """Route load balancer traffic through API Gateway."""

    enabled: bool = True
    name: str = Field(default="gateway", min_length=1)
    regions: list[str] = Field(default_factory=list)
    config: APIConfig = Field(default_factory=APIConfig)

    @field_validator("regions")
    @classmethod
    def validate_regions(cls, v: list[str]) -> list[str]:
        for region in v:
            if not REGION_PATTERN.match(region):
                raise ValueError(f"'{region}' is not a valid GCP region")
        # Ordered set
        return list(dict.fromkeys(v))


# =============================================================================
# Network and stack
# =============================================================================


class NetworkConfig(ConfigModel):
    """Public ingress: certificate, load balancer and edge security."""

    domain_url: str = Field(..., min_length=1)
    enable_cloud_armor: bool = False
    client_ip_allowlist: list[str] = Field(default_factory=list)
    enable_private_traffic_only: bool = False
    enable_global_entrypoint: bool = True
    enable_http_redirect: bool = True
    dns_managed_zone: str | None = None
    backend_path_patterns: list[str] = Field(default_factory=lambda: ["/api/*"])
    api_gateway: APIGatewayConfig | None = None
    proxy_network_name: str = Field(default="default", min_length=1)
    # Proxy-only subnet created in proxy_network_name when set
    proxy_subnet_cidr_range: str | None = None
    enable_iap: bool = False
    iap_members: list[str] = Field(default_factory=list)

    @field_validator("proxy_subnet_cidr_range")
    @classmethod
    def validate_proxy_subnet(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ipaddress.ip_network(v)
        except ValueError:
            raise ValueError(f"'{v}' is not a valid CIDR range")
        return v

    @field_validator("iap_members")
    @classmethod
    def validate_iap_members(cls, v: list[str]) -> list[str]:
        for member in v:
            kind, _, identity = member.partition(":")
            if not kind or not identity:
                raise ValueError(f"'{member}' must be an IAM member such as 'user:alice@example.com'")
        return v

    @field_validator("domain_url")
    @classmethod
    def validate_domain_url(cls, v: str) -> str:
        domain = v.strip()
        if "://" in domain or "/" in domain:
            raise ValueError(f"'{v}' must be a bare domain name without scheme or path")
        return domain.rstrip(".")

    @field_validator("client_ip_allowlist")
    @classmethod
    def validate_allowlist(cls, v: list[str]) -> list[str]:
        for cidr in v:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                raise ValueError(f"'{cidr}' is not a valid IP address or CIDR range")
        return v

    @model_validator(mode="after")
    def validate_private_traffic(self) -> "NetworkConfig":
        # Gateways and the services they call are reachable from the internet
        if self.enable_private_traffic_only and self.gateway_enabled:
            raise ValueError("enable_private_traffic_only cannot be combined with an enabled api_gateway")
        if self.iap_members and not self.enable_iap:
            raise ValueError("iap_members set while enable_iap is false")
        return self

    @property
    def gateway_enabled(self) -> bool:
        return self.api_gateway is not None and self.api_gateway.enabled


class StackConfig(ConfigModel):
    """Root configuration of a fullstack deployment."""

    project: str = Field(..., min_length=1)
    region: str
    backend_image: str | pulumi.Output
    frontend_image: str | pulumi.Output
    backend_name: str = "backend"
    frontend_name: str = "frontend"
    backend: InstanceConfig | None = None
    frontend: InstanceConfig | None = None
    network: NetworkConfig
    labels: dict[str, str] = Field(default_factory=dict)
    # Backing services attached to the backend
    cache: CacheConfig | None = None
    bucket: BucketConfig | None = None

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        if not REGION_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a valid GCP region")
        return v

    @field_validator("backend_image", "frontend_image")
    @classmethod
    def validate_image(cls, v: str | pulumi.Output) -> str | pulumi.Output:
        if isinstance(v, str) and not v.strip():
            raise ValueError("image reference is required")
        return v

    @field_validator("backend_name", "frontend_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        if not CONTAINER_NAME_PATTERN.match(v):
            raise ValueError(f"'{v}' must be lowercase letters, digits and hyphens")
        return v

    @field_validator("labels")
    @classmethod
    def validate_labels(cls, v: dict[str, str]) -> dict[str, str]:
        invalid = invalid_labels(v)
        if invalid:
            raise ValueError(f"invalid labels: {', '.join(sorted(invalid))}")
        return v

    @model_validator(mode="after")
    def validate_services(self) -> "StackConfig":
        if self.backend_name == self.frontend_name:
            raise ValueError("backend_name and frontend_name must differ")
        backend = self.backend
        if self.cache and backend and backend.private_vpc_access_connector:
            raise ValueError("backend.private_vpc_access_connector cannot be set together with cache")
        if self.bucket and backend:
            bound = set(backend.env_vars) | {binding.env_var for binding in backend.secrets}
            if BUCKET_NAME_ENV_VAR in bound:
                raise ValueError(f"backend env var {BUCKET_NAME_ENV_VAR} is set by the bucket")
        if self.cache and backend:
            volume_names = {volume.name for volume in backend.secret_volumes}
            volume_names.update(volume.name for sidecar in backend.sidecars for volume in sidecar.secret_volumes)
            if CACHE_CREDENTIALS_VOLUME_NAME in volume_names:
                raise ValueError(f"backend secret volume {CACHE_CREDENTIALS_VOLUME_NAME} is mounted by the cache")
        return self

    @property
    def gateway_regions(self) -> list[str]:
        """Regions hosting an API Gateway, defaulting to the stack region."""
        gateway = self.network.api_gateway
        if gateway is None or not gateway.enabled:
            return []
        return gateway.regions or [self.region]
