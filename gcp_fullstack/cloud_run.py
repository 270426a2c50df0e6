"""Cloud Run Service Component - one container service with its own identity.

This module creates, per service:
- Dedicated service account
- Config secret mounted as a dotenv file, plus optional extra secret files
- Env vars sourced from Secret Manager
- Project-level IAM roles for the service account
- Cloud Run v2 service with startup and liveness probes and optional sidecars,
  optionally egressing through a Serverless VPC Access connector
- Optional cold start SLO
"""

from dataclasses import dataclass

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.labels import merge_labels
from gcp_fullstack.models import InstanceConfig, Probe, SidecarConfig
from gcp_fullstack.naming import SERVICE_ACCOUNT_ID_MAX_LENGTH, resource_name
from gcp_fullstack.secrets import CONFIG_VOLUME_NAME, SecretBinder, check_unique_bindings
from gcp_fullstack.slo import ColdStartSLOComponent

INGRESS_INTERNAL_LOAD_BALANCER = "INGRESS_TRAFFIC_INTERNAL_LOAD_BALANCER"
INGRESS_ALL = "INGRESS_TRAFFIC_ALL"
INVOKER_ROLE = "roles/run.invoker"
VPC_EGRESS = "PRIVATE_RANGES_ONLY"


@dataclass(frozen=True)
class ServiceDefaults:
    """Defaults applied where an InstanceConfig leaves a field unset."""

    container_port: int
    resource_limits: dict[str, str]
    secret_config_file_name: str
    secret_config_file_path: str


BACKEND_DEFAULTS = ServiceDefaults(
    container_port=4001,
    resource_limits={"memory": "1Gi", "cpu": "1000m"},
    secret_config_file_name=".env",
    secret_config_file_path="/app/config/",
)

FRONTEND_DEFAULTS = ServiceDefaults(
    container_port=3000,
    resource_limits={"memory": "2Gi", "cpu": "2000m"},
    secret_config_file_name=".env.production",
    secret_config_file_path="/app/.next/config/",
)


@dataclass(frozen=True)
class SecretFile:
    """Secret mounted as a file by a component, e.g. cache credentials."""

    name: str
    secret: pulumi.Input[str]
    path: str
    file_name: str = ".env"
    version: pulumi.Input[str] = "latest"


def _startup_probe(port: int, probe: Probe) -> gcp.cloudrunv2.ServiceTemplateContainerStartupProbeArgs:
    if probe.path:
        check = {
            "http_get": gcp.cloudrunv2.ServiceTemplateContainerStartupProbeHttpGetArgs(
                path=f"/{probe.path.lstrip('/')}",
                port=port,
            )
        }
    else:
        check = {"tcp_socket": gcp.cloudrunv2.ServiceTemplateContainerStartupProbeTcpSocketArgs(port=port)}

    return gcp.cloudrunv2.ServiceTemplateContainerStartupProbeArgs(
        initial_delay_seconds=probe.initial_delay_seconds,
        period_seconds=probe.period_seconds,
        timeout_seconds=probe.timeout_seconds,
        failure_threshold=probe.failure_threshold,
        **check,
    )


def _liveness_probe(port: int, probe: Probe) -> gcp.cloudrunv2.ServiceTemplateContainerLivenessProbeArgs:
    if probe.path:
        check = {
            "http_get": gcp.cloudrunv2.ServiceTemplateContainerLivenessProbeHttpGetArgs(
                path=f"/{probe.path.lstrip('/')}",
                port=port,
            )
        }
    else:
        check = {"tcp_socket": gcp.cloudrunv2.ServiceTemplateContainerLivenessProbeTcpSocketArgs(port=port)}

    return gcp.cloudrunv2.ServiceTemplateContainerLivenessProbeArgs(
        initial_delay_seconds=probe.initial_delay_seconds,
        period_seconds=probe.period_seconds,
        timeout_seconds=probe.timeout_seconds,
        failure_threshold=probe.failure_threshold,
        **check,
    )


def _sidecar_container(
    binder: SecretBinder,
    sidecar: SidecarConfig,
) -> tuple[gcp.cloudrunv2.ServiceTemplateContainerArgs, list[gcp.cloudrunv2.ServiceTemplateVolumeArgs]]:
    """Sidecar container and the secret volumes it mounts."""
    volumes, mounts = binder.mount_volumes(sidecar.secret_volumes)
    envs = [
        gcp.cloudrunv2.ServiceTemplateContainerEnvArgs(name=key, value=value)
        for key, value in sorted(sidecar.env_vars.items())
    ]
    envs += binder.bind_env_vars(sidecar.secrets, sidecar.env_vars, container=sidecar.name)

    container = gcp.cloudrunv2.ServiceTemplateContainerArgs(
        name=sidecar.name,
        image=sidecar.image,
        args=sidecar.args or None,
        envs=envs or None,
        resources=gcp.cloudrunv2.ServiceTemplateContainerResourcesArgs(cpu_idle=True),
        volume_mounts=mounts or None,
        startup_probe=_startup_probe(sidecar.port, sidecar.startup_probe) if sidecar.startup_probe else None,
        liveness_probe=_liveness_probe(sidecar.port, sidecar.liveness_probe) if sidecar.liveness_probe else None,
    )
    return container, volumes


class CloudRunServiceComponent(pulumi.ComponentResource):
    """Cloud Run service with its own service account and secrets."""

    def __init__(
        self,
        name: str,
        stack_name: str,
        service_name: str,
        project: str,
        region: str,
        image: pulumi.Input[str],
        defaults: ServiceDefaults,
        instance: InstanceConfig | None = None,
        app_base_url: str = "",
        extra_env_vars: dict[str, pulumi.Input[str]] | None = None,
        public_ingress: bool = False,
        vpc_connector: pulumi.Input[str] | None = None,
        secret_files: list[SecretFile] | None = None,
        extra_project_iam_roles: list[str] | None = None,
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create a Cloud Run service.

        Args:
            name: Pulumi resource name of the component
            stack_name: Name of the fullstack deployment, used as naming prefix
            service_name: Service role, e.g. "backend" or "frontend"
            project: GCP project id
            region: GCP region
            image: Container image reference
            defaults: Port, limits and config file defaults for this role
            instance: Optional tuning; unset fields use ``defaults``
            app_base_url: Public URL of the application
            extra_env_vars: Additional plain env vars, e.g. BACKEND_API_URL
            public_ingress: Accept traffic from outside the load balancer
            vpc_connector: Connector for private egress, overrides
                ``instance.private_vpc_access_connector``
            secret_files: Secrets of other components mounted as files
            extra_project_iam_roles: Roles needed by attached components
            labels: Common labels to apply
            opts: Pulumi resource options

        Raises:
            ConfigurationError: If the image or region is missing, or an env var
                or a volume is set twice.
        """
        if image is None or (isinstance(image, str) and not image.strip()):
            raise ConfigurationError("image reference is required", field=f"{service_name}_image")
        if not region:
            raise ConfigurationError("region is required", field="region")

        instance = instance or InstanceConfig()
        port = instance.container_port or defaults.container_port
        config_file_name = instance.secret_config_file_name or defaults.secret_config_file_name
        config_file_path = instance.secret_config_file_path or defaults.secret_config_file_path

        env_vars: dict[str, pulumi.Input[str]] = {
            "DOTENV_CONFIG_PATH": f"{config_file_path.rstrip('/')}/{config_file_name}",
            "APP_BASE_URL": app_base_url,
            **(extra_env_vars or {}),
        }
        reserved = set(env_vars) & set(instance.env_vars)
        if reserved:
            raise ConfigurationError(
                f"env vars {', '.join(sorted(reserved))} are set by the component",
                field=f"{service_name}.env_vars",
            )
        env_vars.update(sorted(instance.env_vars.items()))
        check_unique_bindings(instance.secrets, env_vars)

        secret_files = secret_files or []
        volume_names = [
            CONFIG_VOLUME_NAME,
            *(volume.name for volume in instance.secret_volumes),
            *(volume.name for sidecar in instance.sidecars for volume in sidecar.secret_volumes),
            *(secret_file.name for secret_file in secret_files),
        ]
        clashes = sorted({volume for volume in volume_names if volume_names.count(volume) > 1})
        if clashes:
            raise ConfigurationError(
                f"secret volumes {', '.join(clashes)} are mounted twice",
                field=f"{service_name}.secret_volumes",
            )
        if vpc_connector is None:
            vpc_connector = instance.private_vpc_access_connector
        project_iam_roles = list(dict.fromkeys([*instance.project_iam_roles, *(extra_project_iam_roles or [])]))

        super().__init__("fullstack:gcp:CloudRunService", name, None, opts)

        self.stack_name = stack_name
        self.service_name = service_name
        self.labels = merge_labels(labels, {service_name: "true"})
        child_opts = pulumi.ResourceOptions(parent=self)

        # =====================================================================
        # Service Account
        # =====================================================================
        account_id = resource_name(stack_name, f"{service_name}-sa", SERVICE_ACCOUNT_ID_MAX_LENGTH)
        self.account = gcp.serviceaccount.Account(
            account_id,
            account_id=account_id,
            display_name=f"{service_name.capitalize()} service account ({stack_name})",
            project=project,
            opts=child_opts,
        )
        self.member = pulumi.Output.concat("serviceAccount:", self.account.email)

        # =====================================================================
        # Secrets
        # =====================================================================
        binder = SecretBinder(
            stack_name,
            service_name,
            project=project,
            region=region,
            service_account_email=self.account.email,
            labels=self.labels,
            opts=child_opts,
        )
        self.config_secret, config_volume, config_mount = binder.create_config_secret(
            config_file_name, config_file_path
        )
        extra_volumes, extra_mounts = binder.mount_volumes(instance.secret_volumes)
        for secret_file in secret_files:
            volume, mount = binder.mount_secret(
                secret_file.name, secret_file.secret, secret_file.path, secret_file.file_name, secret_file.version
            )
            extra_volumes.append(volume)
            extra_mounts.append(mount)
        secret_envs = binder.bind_env_vars(instance.secrets, env_vars)
        sidecar_containers = []
        for sidecar in instance.sidecars:
            container, sidecar_volumes = _sidecar_container(binder, sidecar)
            sidecar_containers.append(container)
            extra_volumes.extend(sidecar_volumes)
        self.secret_accessors = binder.accessors

        # =====================================================================
        # Project IAM
        # =====================================================================
        self.project_iam_members = [
            gcp.projects.IAMMember(
                f"{stack_name}-{service_name}-{role.split('/')[-1]}",
                project=project,
                role=role,
                member=self.member,
                opts=child_opts,
            )
            for role in project_iam_roles
        ]

        # =====================================================================
        # Cloud Run Service
        # =====================================================================
        vpc_access = None
        if vpc_connector is not None:
            vpc_access = gcp.cloudrunv2.ServiceTemplateVpcAccessArgs(connector=vpc_connector, egress=VPC_EGRESS)

        service_id = resource_name(stack_name, service_name)
        self.service = gcp.cloudrunv2.Service(
            service_id,
            name=service_id,
            description=f"Serverless instance ({service_name})",
            location=region,
            project=project,
            ingress=INGRESS_ALL if public_ingress or instance.enable_public_ingress else INGRESS_INTERNAL_LOAD_BALANCER,
            deletion_protection=instance.deletion_protection,
            labels=self.labels,
            template=gcp.cloudrunv2.ServiceTemplateArgs(
                service_account=self.account.email,
                scaling=gcp.cloudrunv2.ServiceTemplateScalingArgs(
                    min_instance_count=instance.min_instance_count,
                    max_instance_count=instance.max_instance_count,
                ),
                vpc_access=vpc_access,
                containers=[
                    gcp.cloudrunv2.ServiceTemplateContainerArgs(
                        image=image,
                        envs=[
                            gcp.cloudrunv2.ServiceTemplateContainerEnvArgs(name=key, value=value)
                            for key, value in env_vars.items()
                        ]
                        + secret_envs,
                        resources=gcp.cloudrunv2.ServiceTemplateContainerResourcesArgs(
                            cpu_idle=True,
                            limits=instance.resource_limits or defaults.resource_limits,
                            startup_cpu_boost=instance.startup_cpu_boost,
                        ),
                        ports=gcp.cloudrunv2.ServiceTemplateContainerPortsArgs(
                            container_port=port,
                        ),
                        startup_probe=_startup_probe(port, instance.startup_probe),
                        liveness_probe=_liveness_probe(port, instance.liveness_probe),
                        volume_mounts=[config_mount, *extra_mounts],
                    ),
                    *sidecar_containers,
                ],
                volumes=[config_volume, *extra_volumes],
            ),
            opts=pulumi.ResourceOptions(
                parent=self,
                depends_on=self.secret_accessors,
            ),
        )

        # Reachable without authentication, e.g. directly from the load balancer
        self.public_invoker = None
        if instance.enable_unauthenticated:
            self.public_invoker = self.grant_invoker("allUsers", "public", project, region)

        self.cold_start_slo = None
        if instance.cold_start_slo:
            self.cold_start_slo = ColdStartSLOComponent(
                f"{stack_name}-{service_name}-slo",
                project=project,
                region=region,
                service_name=service_id,
                config=instance.cold_start_slo,
                opts=pulumi.ResourceOptions(parent=self, depends_on=[self.service]),
            )

        self.uri = self.service.uri
        self.service_account_email = self.account.email

        self.register_outputs(
            {
                "service_name": self.service.name,
                "service_uri": self.service.uri,
                "service_account_email": self.account.email,
                "config_secret_id": self.config_secret.secret_id,
            }
        )

    def grant_invoker(
        self,
        member: pulumi.Input[str],
        key: str,
        project: str,
        region: str,
        opts: pulumi.ResourceOptions | None = None,
    ) -> gcp.cloudrunv2.ServiceIamMember:
        """Allow ``member`` to invoke this service."""
        return gcp.cloudrunv2.ServiceIamMember(
            f"{self.stack_name}-{self.service_name}-{key}-invoker",
            name=self.service.name,
            project=project,
            location=region,
            role=INVOKER_ROLE,
            member=member,
            opts=opts or pulumi.ResourceOptions(parent=self),
        )
