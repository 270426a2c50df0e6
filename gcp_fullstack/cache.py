"""Cache Component - Memorystore Redis reachable from Cloud Run.

This module creates:
- Redis instance with AUTH and in-transit encryption
- Serverless VPC Access connector for Cloud Run egress to the private IP
- Firewall rule opening the Redis port to the connector range
- Secret holding the connection details as a dotenv file
"""

import base64

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.labels import merge_labels
from gcp_fullstack.models import CACHE_CREDENTIALS_VOLUME_NAME, CacheConfig
from gcp_fullstack.naming import VPC_CONNECTOR_NAME_MAX_LENGTH, resource_name
from gcp_fullstack.project_services import enable_api

CACHE_EDITOR_ROLE = "roles/redis.editor"
CREDENTIALS_VOLUME_NAME = CACHE_CREDENTIALS_VOLUME_NAME
CREDENTIALS_MOUNT_PATH = "/app/cache-config"
CREDENTIALS_FILE_NAME = ".env"


def cache_dotenv(
    host: str,
    port: int,
    read_host: str | None,
    read_port: int | None,
    auth_string: str,
    ca_certs: list[str],
) -> str:
    """Render the Redis connection details as dotenv lines.

    CA certificates are concatenated and base64 encoded so the value stays on
    one line.
    """
    certs = "\n".join(cert for cert in ca_certs if cert)
    values = {
        "REDIS_HOST": host,
        "REDIS_PORT": int(port),
        "REDIS_READ_HOST": read_host or "",
        "REDIS_READ_PORT": int(read_port) if read_port else "",
        "REDIS_AUTH_STRING": auth_string,
        "REDIS_TLS_CA_CERTS": base64.b64encode(certs.encode("utf-8")).decode("ascii"),
    }
    return "\n".join(f"{key}={value}" for key, value in values.items())


def _render_credentials(args: list) -> str:
    host, port, read_host, read_port, auth_string, server_ca_certs = args
    ca_certs = [cert.cert for cert in server_ca_certs or []]
    return cache_dotenv(host, port, read_host, read_port, auth_string, ca_certs)


class CacheComponent(pulumi.ComponentResource):
    """Private Redis cache with its network path and credentials secret."""

    def __init__(
        self,
        name: str,
        stack_name: str,
        project: str,
        region: str,
        config: CacheConfig,
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the cache.

        Args:
            name: Pulumi resource name of the component
            stack_name: Name of the fullstack deployment, used as naming prefix
            project: GCP project id
            region: Region of the instance and the connector
            config: Instance size, tier and network settings
            labels: Common labels to apply
            opts: Pulumi resource options
        """
        super().__init__("fullstack:gcp:Cache", name, None, opts)

        self.labels = merge_labels(labels, {"cache": "true"})
        child_opts = pulumi.ResourceOptions(parent=self)

        pulumi.log.debug(f"Deploying Redis cache with config: {config.model_dump()}", resource=self)

        redis_api = enable_api(stack_name, "cache-redis", project, "redis.googleapis.com", child_opts)
        vpcaccess_api = enable_api(stack_name, "cache-vpcaccess", project, "vpcaccess.googleapis.com", child_opts)

        # =====================================================================
        # Redis Instance
        # =====================================================================
        instance_name = resource_name(stack_name, "cache")
        self.instance = gcp.redis.Instance(
            instance_name,
            name=instance_name,
            project=project,
            region=region,
            tier=config.tier,
            memory_size_gb=config.memory_size_gb,
            redis_version=config.redis_version,
            authorized_network=config.authorized_network,
            auth_enabled=True,
            transit_encryption_mode="SERVER_AUTHENTICATION",
            labels=self.labels,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[redis_api]),
        )

        # =====================================================================
        # Private Network Path
        # =====================================================================
        connector_name = resource_name(stack_name, "cache-conn", VPC_CONNECTOR_NAME_MAX_LENGTH)
        self.connector = gcp.vpcaccess.Connector(
            connector_name,
            name=connector_name,
            project=project,
            region=region,
            network=config.authorized_network,
            ip_cidr_range=config.connector_ip_cidr_range,
            min_instances=config.connector_min_instances,
            max_instances=config.connector_max_instances,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[vpcaccess_api]),
        )

        firewall_name = resource_name(stack_name, "cache-allow-cloudrun")
        self.firewall = gcp.compute.Firewall(
            firewall_name,
            name=firewall_name,
            description="Allow TCP on the Redis instance port from the Cloud Run VPC connector",
            project=project,
            network=config.authorized_network,
            direction="INGRESS",
            priority=1000,
            allows=[
                gcp.compute.FirewallAllowArgs(
                    protocol="tcp",
                    ports=[self.instance.port.apply(lambda port: str(int(port)))],
                ),
            ],
            source_ranges=[config.connector_ip_cidr_range],
            opts=child_opts,
        )

        # =====================================================================
        # Credentials Secret
        # =====================================================================
        secret_id = resource_name(stack_name, "cache-creds")
        self.credentials_secret = gcp.secretmanager.Secret(
            secret_id,
            project=project,
            secret_id=secret_id,
            replication=gcp.secretmanager.SecretReplicationArgs(
                auto=gcp.secretmanager.SecretReplicationAutoArgs(),
            ),
            deletion_protection=False,
            labels=merge_labels(labels, {"cache_credentials": "true"}),
            opts=child_opts,
        )

        dotenv = pulumi.Output.all(
            self.instance.host,
            self.instance.port,
            self.instance.read_endpoint,
            self.instance.read_endpoint_port,
            self.instance.auth_string,
            self.instance.server_ca_certs,
        ).apply(_render_credentials)

        self.credentials_version = gcp.secretmanager.SecretVersion(
            f"{secret_id}-version",
            secret=self.credentials_secret.id,
            secret_data=pulumi.Output.secret(dotenv),
            opts=child_opts,
        )

        self.register_outputs(
            {
                "host": self.instance.host,
                "port": self.instance.port,
                "connector": self.connector.self_link,
                "credentials_secret_id": self.credentials_secret.secret_id,
            }
        )
