"""FullStack Component - backend and frontend on Cloud Run behind a load balancer.

Resources are built in dependency order:
- Redis cache and storage bucket (optional), attached to the backend
- Backend Cloud Run service
- Frontend Cloud Run service, pointed at the backend URL
- API Gateway (optional), wired to both services
- External HTTPS load balancer
"""

import re
from dataclasses import dataclass

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.api_gateway import APIGatewayComponent
from gcp_fullstack.bucket import BUCKET_EDITOR_ROLE, BUCKET_NAME_ENV_VAR, StorageBucketComponent
from gcp_fullstack.cache import (
    CACHE_EDITOR_ROLE,
    CREDENTIALS_FILE_NAME,
    CREDENTIALS_MOUNT_PATH,
    CREDENTIALS_VOLUME_NAME,
    CacheComponent,
)
from gcp_fullstack.cloud_run import BACKEND_DEFAULTS, FRONTEND_DEFAULTS, CloudRunServiceComponent, SecretFile
from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.models import StackConfig
from gcp_fullstack.network import LoadBalancerComponent

STACK_NAME_PATTERN = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")


@dataclass(frozen=True)
class FullStackResult:
    """Resources and deferred outputs of a fullstack deployment."""

    backend_service: gcp.cloudrunv2.Service
    frontend_service: gcp.cloudrunv2.Service
    api_gateway: gcp.apigateway.Gateway | None
    load_balancer: gcp.compute.URLMap
    backend_url: pulumi.Output[str]
    frontend_url: pulumi.Output[str]
    gateway_hostname: pulumi.Output[str] | None
    cache_instance: gcp.redis.Instance | None = None
    storage_bucket: gcp.storage.Bucket | None = None


class FullStack(pulumi.ComponentResource):
    """Backend and frontend Cloud Run services behind an HTTPS load balancer."""

    def __init__(
        self,
        name: str,
        config: StackConfig,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the fullstack deployment.

        Args:
            name: Stack name, used as prefix for every resource name
            config: Validated stack configuration
            opts: Pulumi resource options

        Raises:
            ConfigurationError: If the name or configuration is invalid. Nothing
                is registered in that case.
        """
        if not isinstance(config, StackConfig):
            raise ConfigurationError("a StackConfig is required", field="config")
        if not STACK_NAME_PATTERN.match(name):
            raise ConfigurationError(
                f"'{name}' must start with a letter and contain only lowercase letters, digits and hyphens",
                field="name",
            )

        super().__init__("fullstack:gcp:FullStack", name, None, opts)

        self.config = config
        network = config.network
        gateway_enabled = network.gateway_enabled
        app_base_url = f"https://{network.domain_url}"
        child_opts = pulumi.ResourceOptions(parent=self)

        # =====================================================================
        # Backing Services
        # =====================================================================
        backend_env_vars: dict[str, pulumi.Input[str]] = {}
        backend_files: list[SecretFile] = []
        backend_roles: list[str] = []
        vpc_connector = None

        self.cache: CacheComponent | None = None
        if config.cache:
            self.cache = CacheComponent(
                f"{name}-cache",
                stack_name=name,
                project=config.project,
                region=config.region,
                config=config.cache,
                labels=config.labels,
                opts=child_opts,
            )
            vpc_connector = self.cache.connector.self_link
            backend_files.append(
                SecretFile(
                    name=CREDENTIALS_VOLUME_NAME,
                    secret=self.cache.credentials_secret.secret_id,
                    path=CREDENTIALS_MOUNT_PATH,
                    file_name=CREDENTIALS_FILE_NAME,
                    version=self.cache.credentials_version.version,
                )
            )
            backend_roles.append(CACHE_EDITOR_ROLE)

        self.bucket: StorageBucketComponent | None = None
        if config.bucket:
            self.bucket = StorageBucketComponent(
                f"{name}-bucket",
                stack_name=name,
                project=config.project,
                config=config.bucket,
                labels=config.labels,
                opts=child_opts,
            )
            backend_env_vars[BUCKET_NAME_ENV_VAR] = self.bucket.name
            backend_roles.append(BUCKET_EDITOR_ROLE)

        # =====================================================================
        # Cloud Run Services
        # =====================================================================
        self.backend = CloudRunServiceComponent(
            f"{name}-{config.backend_name}",
            stack_name=name,
            service_name=config.backend_name,
            project=config.project,
            region=config.region,
            image=config.backend_image,
            defaults=BACKEND_DEFAULTS,
            instance=config.backend,
            app_base_url=app_base_url,
            extra_env_vars=backend_env_vars,
            # API Gateway calls the service URL directly, private-only stacks have no gateway
            public_ingress=gateway_enabled,
            vpc_connector=vpc_connector,
            secret_files=backend_files,
            extra_project_iam_roles=backend_roles,
            labels=config.labels,
            opts=child_opts,
        )

        self.frontend = CloudRunServiceComponent(
            f"{name}-{config.frontend_name}",
            stack_name=name,
            service_name=config.frontend_name,
            project=config.project,
            region=config.region,
            image=config.frontend_image,
            defaults=FRONTEND_DEFAULTS,
            instance=config.frontend,
            app_base_url=app_base_url,
            extra_env_vars={"BACKEND_API_URL": self.backend.uri},
            public_ingress=gateway_enabled,
            labels=config.labels,
            opts=child_opts,
        )

        # =====================================================================
        # API Gateway
        # =====================================================================
        self.api_gateway: APIGatewayComponent | None = None
        if gateway_enabled:
            self.api_gateway = APIGatewayComponent(
                f"{name}-gateway",
                stack_name=name,
                project=config.project,
                regions=config.gateway_regions,
                gateway_config=network.api_gateway,
                backend=self.backend,
                frontend=self.frontend,
                service_region=config.region,
                labels=config.labels,
                opts=child_opts,
            )
        else:
            pulumi.log.info(f"Routing traffic to Cloud Run services of {name}", resource=self)

        # =====================================================================
        # Load Balancer
        # =====================================================================
        self.load_balancer = LoadBalancerComponent(
            f"{name}-lb",
            stack_name=name,
            project=config.project,
            region=config.region,
            network=network,
            backend=self.backend,
            frontend=self.frontend,
            api_gateway=self.api_gateway,
            labels=config.labels,
            opts=child_opts,
        )

        self.register_outputs(
            {
                "backend_url": self.backend.uri,
                "frontend_url": self.frontend.uri,
                "gateway_hostname": self.api_gateway.gateway.default_hostname if self.api_gateway else None,
                "ip_address": self.load_balancer.ip_address,
                "cache_host": self.cache.instance.host if self.cache else None,
                "bucket_name": self.bucket.name if self.bucket else None,
            }
        )

    def get_backend_service(self) -> gcp.cloudrunv2.Service:
        return self.backend.service

    def get_frontend_service(self) -> gcp.cloudrunv2.Service:
        return self.frontend.service

    def get_api_gateway(self) -> gcp.apigateway.Gateway | None:
        """Primary-region gateway, or None when API Gateway is disabled."""
        return self.api_gateway.gateway if self.api_gateway else None

    def get_load_balancer(self) -> gcp.compute.URLMap:
        return self.load_balancer.url_map

    def get_certificate(self) -> gcp.compute.ManagedSslCertificate:
        return self.load_balancer.certificate

    def get_security_policy(self) -> gcp.compute.SecurityPolicy | None:
        return self.load_balancer.security_policy

    def get_backend_account(self) -> gcp.serviceaccount.Account:
        return self.backend.account

    def get_frontend_account(self) -> gcp.serviceaccount.Account:
        return self.frontend.account

    def get_gateway_service_account(self) -> gcp.serviceaccount.Account | None:
        return self.api_gateway.service_account if self.api_gateway else None

    def get_cache_instance(self) -> gcp.redis.Instance | None:
        return self.cache.instance if self.cache else None

    def get_cache_connector(self) -> gcp.vpcaccess.Connector | None:
        return self.cache.connector if self.cache else None

    def get_storage_bucket(self) -> gcp.storage.Bucket | None:
        return self.bucket.bucket if self.bucket else None

    def get_cold_start_slos(self) -> dict[str, gcp.monitoring.Slo]:
        """SLOs by service name, for the services that define one."""
        return {
            component.service_name: component.cold_start_slo.slo
            for component in (self.backend, self.frontend)
            if component.cold_start_slo
        }

    def result(self) -> FullStackResult:
        gateway = self.get_api_gateway()
        return FullStackResult(
            backend_service=self.backend.service,
            frontend_service=self.frontend.service,
            api_gateway=gateway,
            load_balancer=self.load_balancer.url_map,
            backend_url=self.backend.uri,
            frontend_url=self.frontend.uri,
            gateway_hostname=gateway.default_hostname if gateway else None,
            cache_instance=self.get_cache_instance(),
            storage_bucket=self.get_storage_bucket(),
        )


def build_fullstack(
    name: str,
    config: StackConfig,
    opts: pulumi.ResourceOptions | None = None,
) -> FullStackResult:
    """Build a fullstack deployment and return its resources and outputs.

    Raises:
        ConfigurationError: If the name or configuration is invalid.
    """
    return FullStack(name, config, opts=opts).result()
