"""Secret Manager bindings for Cloud Run services.

Creates, for a single service identity:
- Env vars sourced from Secret Manager secrets
- Secret files mounted as volumes
- secretAccessor grants on every referenced secret
- The per-service config secret mounted as a dotenv file
"""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.models import SecretBinding, SecretVolume, duplicate_binding
from gcp_fullstack.naming import resource_name

SECRET_ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"
SECRET_FILE_MODE = 0o400
CONFIG_VOLUME_NAME = "envconfig"


def check_unique_bindings(
    bindings: list[SecretBinding],
    env_vars: dict[str, str] | None = None,
) -> None:
    """Reject bindings that reuse an env var or a secret within one service.

    Raises:
        ConfigurationError: On the first duplicate found.
    """
    duplicate = duplicate_binding(bindings, env_vars)
    if duplicate:
        raise ConfigurationError(duplicate, field="secrets")


def secret_env_var(binding: SecretBinding) -> gcp.cloudrunv2.ServiceTemplateContainerEnvArgs:
    """Env var whose value is read from a Secret Manager secret version."""
    return gcp.cloudrunv2.ServiceTemplateContainerEnvArgs(
        name=binding.env_var,
        value_source=gcp.cloudrunv2.ServiceTemplateContainerEnvValueSourceArgs(
            secret_key_ref=gcp.cloudrunv2.ServiceTemplateContainerEnvValueSourceSecretKeyRefArgs(
                secret=binding.secret_id,
                version=binding.version,
            ),
        ),
    )


def secret_volume(
    name: str,
    secret: pulumi.Input[str],
    file_name: str,
    version: pulumi.Input[str] = "latest",
) -> gcp.cloudrunv2.ServiceTemplateVolumeArgs:
    """Volume exposing one secret version as a read-only file."""
    return gcp.cloudrunv2.ServiceTemplateVolumeArgs(
        name=name,
        secret=gcp.cloudrunv2.ServiceTemplateVolumeSecretArgs(
            secret=secret,
            items=[
                gcp.cloudrunv2.ServiceTemplateVolumeSecretItemArgs(
                    path=file_name,
                    version=version,
                    mode=SECRET_FILE_MODE,
                ),
            ],
        ),
    )


class SecretBinder:
    """Binds Secret Manager secrets to one Cloud Run service identity."""

    def __init__(
        self,
        stack_name: str,
        service_name: str,
        project: str,
        region: str,
        service_account_email: pulumi.Input[str],
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Args:
            stack_name: Name of the fullstack deployment
            service_name: Service the secrets are bound to
            project: GCP project id
            region: Region used for user-managed secret replication
            service_account_email: Identity granted access to the secrets
            labels: Labels applied to created secrets
            opts: Options for every resource the binder creates
        """
        self.stack_name = stack_name
        self.service_name = service_name
        self.project = project
        self.region = region
        self.member = pulumi.Output.concat("serviceAccount:", service_account_email)
        self.labels = labels or {}
        self.opts = opts
        self.accessors: list[gcp.secretmanager.SecretIamMember] = []

    def _grant_access(self, key: str, secret_id: pulumi.Input[str]) -> gcp.secretmanager.SecretIamMember:
        accessor = gcp.secretmanager.SecretIamMember(
            f"{self.stack_name}-{self.service_name}-{key}-accessor",
            project=self.project,
            secret_id=secret_id,
            role=SECRET_ACCESSOR_ROLE,
            member=self.member,
            opts=self.opts,
        )
        self.accessors.append(accessor)
        return accessor

    def bind_env_vars(
        self,
        bindings: list[SecretBinding],
        env_vars: dict[str, str] | None = None,
        container: str | None = None,
    ) -> list[gcp.cloudrunv2.ServiceTemplateContainerEnvArgs]:
        """Build secret-sourced env vars and grant the service access.

        Args:
            bindings: Secret to env var bindings
            env_vars: Plain env vars of the same container, checked for clashes
            container: Sidecar name, when the env vars belong to a sidecar

        Returns:
            One env var descriptor per binding, in binding order.

        Raises:
            ConfigurationError: If an env var or secret is bound twice.
        """
        check_unique_bindings(bindings, env_vars)

        envs = []
        for binding in bindings:
            # Env var names are unique within a container
            key = f"env-{binding.env_var}" if container is None else f"sidecar-{container}-env-{binding.env_var}"
            self._grant_access(key, binding.secret_id)
            envs.append(secret_env_var(binding))
        return envs

    def mount_secret(
        self,
        name: str,
        secret: pulumi.Input[str],
        path: str,
        file_name: str = ".env",
        version: pulumi.Input[str] = "latest",
    ) -> tuple[gcp.cloudrunv2.ServiceTemplateVolumeArgs, gcp.cloudrunv2.ServiceTemplateContainerVolumeMountArgs]:
        """Mount one secret version as ``path/file_name`` and grant the service access."""
        self._grant_access(f"vol-{name}", secret)
        volume = secret_volume(name, secret, file_name, version)
        mount = gcp.cloudrunv2.ServiceTemplateContainerVolumeMountArgs(
            name=name,
            mount_path=path,
        )
        return volume, mount

    def mount_volumes(
        self,
        volumes: list[SecretVolume],
    ) -> tuple[list[gcp.cloudrunv2.ServiceTemplateVolumeArgs], list[gcp.cloudrunv2.ServiceTemplateContainerVolumeMountArgs]]:
        """Mount additional secrets as files and grant the service access."""
        template_volumes = []
        mounts = []
        for volume in volumes:
            template_volume, mount = self.mount_secret(
                volume.name, volume.secret_id, volume.path, volume.file_name, volume.version
            )
            template_volumes.append(template_volume)
            mounts.append(mount)
        return template_volumes, mounts

    def create_config_secret(
        self,
        file_name: str,
        file_path: str,
    ) -> tuple[gcp.secretmanager.Secret, gcp.cloudrunv2.ServiceTemplateVolumeArgs, gcp.cloudrunv2.ServiceTemplateContainerVolumeMountArgs]:
        """Create the service's dotenv secret and mount it at ``file_path``.

        The secret is created empty; versions are added out of band.
        """
        secret_id = resource_name(self.stack_name, f"{self.service_name}-secrets")
        secret = gcp.secretmanager.Secret(
            secret_id,
            project=self.project,
            secret_id=secret_id,
            replication=gcp.secretmanager.SecretReplicationArgs(
                user_managed=gcp.secretmanager.SecretReplicationUserManagedArgs(
                    replicas=[
                        gcp.secretmanager.SecretReplicationUserManagedReplicaArgs(
                            location=self.region,
                        ),
                    ],
                ),
            ),
            labels=self.labels,
            opts=self.opts,
        )
        self._grant_access("config", secret.secret_id)

        volume = secret_volume(CONFIG_VOLUME_NAME, secret.secret_id, file_name)
        mount = gcp.cloudrunv2.ServiceTemplateContainerVolumeMountArgs(
            name=CONFIG_VOLUME_NAME,
            mount_path=file_path,
        )
        return secret, volume, mount
