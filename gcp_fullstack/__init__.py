"""Fullstack Cloud Run deployment on GCP with Pulumi.

Components:
- FullStack: backend and frontend Cloud Run services behind a load balancer
- CloudRunServiceComponent: one Cloud Run service with identity and secrets
- APIGatewayComponent: optional API Gateway with CORS and JWT auth
- LoadBalancerComponent: HTTPS load balancer, Cloud Armor, IAP and IP allowlist
- CacheComponent: optional Memorystore Redis reached through a VPC connector
- StorageBucketComponent: optional private bucket for the backend
- ColdStartSLOComponent: optional container startup latency SLO and alert
"""

from gcp_fullstack.api_gateway import APIGatewayComponent
from gcp_fullstack.bucket import StorageBucketComponent
from gcp_fullstack.cache import CacheComponent
from gcp_fullstack.cloud_run import CloudRunServiceComponent, SecretFile
from gcp_fullstack.errors import ConfigurationError, FullStackError, LoadError
from gcp_fullstack.fullstack import FullStack, FullStackResult, build_fullstack
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
from gcp_fullstack.naming import resource_name
from gcp_fullstack.network import LoadBalancerComponent
from gcp_fullstack.settings import Settings, load_config
from gcp_fullstack.slo import ColdStartSLOComponent

__all__ = [
    "APIConfig",
    "APIGatewayComponent",
    "APIGatewayConfig",
    "APIPath",
    "BucketConfig",
    "CacheComponent",
    "CacheConfig",
    "CloudRunServiceComponent",
    "ColdStartSLOComponent",
    "ColdStartSLOConfig",
    "ConfigurationError",
    "FullStack",
    "FullStackError",
    "FullStackResult",
    "InstanceConfig",
    "JWTAuth",
    "LoadBalancerComponent",
    "LoadError",
    "NetworkConfig",
    "Probe",
    "SecretBinding",
    "SecretFile",
    "SecretVolume",
    "Settings",
    "SidecarConfig",
    "StackConfig",
    "StorageBucketComponent",
    "Upstream",
    "build_fullstack",
    "load_config",
    "resource_name",
]
