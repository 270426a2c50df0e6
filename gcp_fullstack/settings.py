"""Stack configuration loaded from environment variables using Pydantic Settings."""

import logging
from typing import Annotated

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from gcp_fullstack.errors import LoadError
from gcp_fullstack.models import BucketConfig, CacheConfig, NetworkConfig, StackConfig

logger = logging.getLogger(__name__)

DEFAULT_LABELS = {
    "environment": "production",
    "managed-by": "pulumi",
}


class Settings(BaseSettings):
    """Fullstack settings loaded from environment variables.

    GCP_PROJECT, GCP_REGION, BACKEND_IMAGE, FRONTEND_IMAGE and DOMAIN_URL
    are required. Values may also come from a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Required
    gcp_project: str
    gcp_region: str
    backend_image: str
    frontend_image: str
    domain_url: str

    # Optional
    enable_cloud_armor: bool = False
    client_ip_allowlist: Annotated[list[str], NoDecode] = []  # Comma-separated CIDRs
    enable_private_traffic_only: bool = False
    enable_iap: bool = False
    enable_cache: bool = False
    enable_bucket: bool = False

    @field_validator("client_ip_allowlist", mode="before")
    @classmethod
    def split_allowlist(cls, v: str | list[str] | None) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [cidr.strip() for cidr in v.split(",") if cidr.strip()]
        return v

    def to_stack_config(self, labels: dict[str, str] | None = None) -> StackConfig:
        """Build the stack configuration for these settings.

        Args:
            labels: Labels applied to every resource. Defaults to
                environment=production and managed-by=pulumi.

        Returns:
            A validated StackConfig.

        Raises:
            ConfigurationError: If a loaded value is not a valid stack setting.
        """
        return StackConfig(
            project=self.gcp_project,
            region=self.gcp_region,
            backend_image=self.backend_image,
            frontend_image=self.frontend_image,
            network=NetworkConfig(
                domain_url=self.domain_url,
                enable_cloud_armor=self.enable_cloud_armor,
                client_ip_allowlist=self.client_ip_allowlist,
                enable_private_traffic_only=self.enable_private_traffic_only,
                enable_iap=self.enable_iap,
            ),
            cache=CacheConfig() if self.enable_cache else None,
            bucket=BucketConfig() if self.enable_bucket else None,
            labels=DEFAULT_LABELS if labels is None else labels,
        )


def load_config(**overrides) -> Settings:
    """Load settings from the environment.

    Args:
        **overrides: Keyword arguments passed to Settings, e.g. ``_env_file=None``.

    Returns:
        The loaded, immutable settings.

    Raises:
        LoadError: If a required variable is missing or a value is malformed.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        variables = [str(error["loc"][0]).upper() for error in e.errors() if error["loc"]]
        raise LoadError(
            f"failed to load configuration from environment variables: {', '.join(variables)}",
            variables=variables,
        ) from e

    logger.info("Configuration loaded successfully:")
    logger.info(f"  GCP Project: {settings.gcp_project}")
    logger.info(f"  GCP Region: {settings.gcp_region}")
    logger.info(f"  Backend Image: {settings.backend_image}")
    logger.info(f"  Frontend Image: {settings.frontend_image}")
    logger.info(f"  Domain URL: {settings.domain_url}")
    logger.info(f"  Enable Cloud Armor: {settings.enable_cloud_armor}")
    logger.info(f"  Client IP Allowlist: {settings.client_ip_allowlist}")
    logger.info(f"  Enable Private Traffic Only: {settings.enable_private_traffic_only}")
    logger.info(f"  Enable IAP: {settings.enable_iap}")
    logger.info(f"  Enable Cache: {settings.enable_cache}")
    logger.info(f"  Enable Bucket: {settings.enable_bucket}")

    return settings
