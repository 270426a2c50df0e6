"""GCP Fullstack Infrastructure - Main Entry Point.

Deploys a backend and a frontend container on Cloud Run behind an external
HTTPS load balancer. Settings are read from environment variables (or a
.env file), see gcp_fullstack.settings.

Architecture:
- Backend: Cloud Run service, reached on /api/* through the load balancer
- Frontend: Cloud Run service serving every other path
- Edge: managed TLS certificate, optional Cloud Armor and IP allowlist
"""

import logging

import pulumi

from gcp_fullstack import LoadError, build_fullstack, load_config

logging.basicConfig(level=logging.INFO)

stack_name = pulumi.get_stack()

# =============================================================================
# Configuration
# =============================================================================
try:
    settings = load_config()
except LoadError as e:
    pulumi.log.error(str(e))
    raise

# =============================================================================
# Fullstack Deployment
# =============================================================================
fullstack = build_fullstack(f"{stack_name}-fullstack", settings.to_stack_config())

# =============================================================================
# Outputs
# =============================================================================
pulumi.export("backendServiceUrl", fullstack.backend_url)
pulumi.export("frontendServiceUrl", fullstack.frontend_url)
if fullstack.gateway_hostname is not None:
    pulumi.export("apiGatewayUrl", fullstack.gateway_hostname.apply(lambda h: f"https://{h}"))
