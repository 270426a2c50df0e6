"""Unit tests for Secret Manager bindings."""

import pulumi
import pytest

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.models import SecretBinding, SecretVolume
from gcp_fullstack.secrets import (
    SECRET_ACCESSOR_ROLE,
    SECRET_FILE_MODE,
    SecretBinder,
    check_unique_bindings,
    secret_env_var,
    secret_volume,
)


def _binder(service_name: str = "backend") -> SecretBinder:
    return SecretBinder(
        "secrets-stack",
        service_name,
        project="test-project",
        region="us-central1",
        service_account_email="backend@test-project.iam.gserviceaccount.com",
        labels={"environment": "test"},
    )


class TestCheckUniqueBindings:
    """Tests for duplicate binding detection."""

    def test_unique_bindings_pass(self):
        check_unique_bindings(
            [
                SecretBinding(secret_id="db-password", env_var="DB_PASSWORD"),
                SecretBinding(secret_id="api-key", env_var="API_KEY"),
            ],
            {"LOG_LEVEL": "info"},
        )

    def test_env_var_clash(self):
        with pytest.raises(ConfigurationError, match="DB_PASSWORD") as exc_info:
            check_unique_bindings(
                [SecretBinding(secret_id="db-password", env_var="DB_PASSWORD")],
                {"DB_PASSWORD": "plain"},
            )
        assert exc_info.value.field == "secrets"

    def test_secret_reused(self):
        with pytest.raises(ConfigurationError, match="db-password"):
            check_unique_bindings(
                [
                    SecretBinding(secret_id="db-password", env_var="DB_PASSWORD"),
                    SecretBinding(secret_id="db-password", env_var="DATABASE_PASSWORD"),
                ]
            )


class TestDescriptors:
    """Tests for env var and volume descriptors."""

    def test_secret_env_var(self):
        env = secret_env_var(SecretBinding(secret_id="db-password", env_var="DB_PASSWORD", version="3"))
        assert env.name == "DB_PASSWORD"
        assert env.value is None
        assert env.value_source.secret_key_ref.secret == "db-password"
        assert env.value_source.secret_key_ref.version == "3"

    def test_secret_volume_is_read_only(self):
        volume = secret_volume("certs", "tls-cert", "cert.pem")
        assert volume.name == "certs"
        assert volume.secret.secret == "tls-cert"
        item = volume.secret.items[0]
        assert item.path == "cert.pem"
        assert item.version == "latest"
        assert item.mode == SECRET_FILE_MODE == 0o400


class TestSecretBinder:
    """Tests for SecretBinder resources."""

    @pulumi.runtime.test
    def test_bind_env_vars_grants_access(self, mocks):
        binder = _binder()
        envs = binder.bind_env_vars(
            [
                SecretBinding(secret_id="db-password", env_var="DB_PASSWORD"),
                SecretBinding(secret_id="projects/p/secrets/api-key", env_var="API_KEY"),
            ]
        )
        assert [env.name for env in envs] == ["DB_PASSWORD", "API_KEY"]
        assert len(binder.accessors) == 2

        def check(_):
            accessor = mocks.inputs_of("secrets-stack-backend-env-DB_PASSWORD-accessor", "SecretIamMember")
            assert accessor["role"] == SECRET_ACCESSOR_ROLE
            assert accessor["member"] == "serviceAccount:backend@test-project.iam.gserviceaccount.com"
            assert accessor["secretId"] == "db-password"
            mocks.inputs_of("secrets-stack-backend-env-API_KEY-accessor", "SecretIamMember")

        return pulumi.Output.all(*[accessor.urn for accessor in binder.accessors]).apply(check)

    @pulumi.runtime.test
    def test_same_secret_name_in_two_projects(self, mocks):
        binder = _binder()
        binder.bind_env_vars(
            [
                SecretBinding(secret_id="projects/a/secrets/db", env_var="PRIMARY_DB"),
                SecretBinding(secret_id="projects/b/secrets/db", env_var="REPLICA_DB"),
            ]
        )
        assert len(binder.accessors) == 2

        def check(_):
            names = mocks.names_of("SecretIamMember")
            assert len(names) == len(set(names)) == 2
            primary = mocks.inputs_of("secrets-stack-backend-env-PRIMARY_DB-accessor", "SecretIamMember")
            assert primary["secretId"] == "projects/a/secrets/db"
            replica = mocks.inputs_of("secrets-stack-backend-env-REPLICA_DB-accessor", "SecretIamMember")
            assert replica["secretId"] == "projects/b/secrets/db"

        return pulumi.Output.all(*[accessor.urn for accessor in binder.accessors]).apply(check)

    @pulumi.runtime.test
    def test_mount_secret_output(self, mocks):
        binder = _binder()
        secret_id = pulumi.Output.from_input("secrets-stack-cache-creds")
        volume, mount = binder.mount_secret("cache-credentials", secret_id, "/app/cache-config", version="3")
        assert volume.name == mount.name == "cache-credentials"
        assert mount.mount_path == "/app/cache-config"

        def check(_):
            accessor = mocks.inputs_of("secrets-stack-backend-vol-cache-credentials-accessor", "SecretIamMember")
            assert accessor["secretId"] == "secrets-stack-cache-creds"

        return binder.accessors[0].urn.apply(check)

    def test_bind_env_vars_rejects_duplicates_before_creating(self, mocks):
        binder = _binder()
        with pytest.raises(ConfigurationError):
            binder.bind_env_vars(
                [SecretBinding(secret_id="token", env_var="TOKEN")],
                {"TOKEN": "plain"},
            )
        assert binder.accessors == []

    @pulumi.runtime.test
    def test_mount_volumes(self, mocks):
        binder = _binder()
        volumes, mounts = binder.mount_volumes(
            [SecretVolume(secret_id="tls-cert", name="certs", path="/etc/certs", file_name="cert.pem")]
        )
        assert volumes[0].name == "certs"
        assert mounts[0].name == "certs"
        assert mounts[0].mount_path == "/etc/certs"

        def check(_):
            accessor = mocks.inputs_of("secrets-stack-backend-vol-certs-accessor", "SecretIamMember")
            assert accessor["secretId"] == "tls-cert"

        return binder.accessors[0].urn.apply(check)

    @pulumi.runtime.test
    def test_create_config_secret(self, mocks):
        binder = _binder("frontend")
        secret, volume, mount = binder.create_config_secret(".env.production", "/app/.next/config/")
        assert volume.name == "envconfig"
        assert volume.secret.items[0].path == ".env.production"
        assert mount.mount_path == "/app/.next/config/"
        assert len(binder.accessors) == 1

        def check(args):
            secret_id, _ = args
            assert secret_id == "secrets-stack-frontend-secrets"
            inputs = mocks.inputs_of("secrets-stack-frontend-secrets", "Secret")
            replicas = inputs["replication"]["userManaged"]["replicas"]
            assert replicas == [{"location": "us-central1"}]
            assert inputs["labels"] == {"environment": "test"}
            mocks.inputs_of("secrets-stack-frontend-config-accessor", "SecretIamMember")

        return pulumi.Output.all(secret.secret_id, binder.accessors[0].urn).apply(check)
