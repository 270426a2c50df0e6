"""API Gateway Component - managed gateway in front of the Cloud Run services.

This module creates:
- Dedicated gateway service account allowed to invoke both services
- API and API config generated from the routing configuration
- One gateway per requested region
"""

import base64

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.cloud_run import CloudRunServiceComponent
from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.labels import merge_labels
from gcp_fullstack.models import APIConfig, APIGatewayConfig
from gcp_fullstack.naming import API_GATEWAY_ID_MAX_LENGTH, SERVICE_ACCOUNT_ID_MAX_LENGTH, resource_name
from gcp_fullstack.openapi import render_openapi_spec


class APIGatewayComponent(pulumi.ComponentResource):
    """API Gateway routing to the backend and frontend Cloud Run services."""

    def __init__(
        self,
        name: str,
        stack_name: str,
        project: str,
        regions: list[str],
        gateway_config: APIGatewayConfig,
        backend: CloudRunServiceComponent,
        frontend: CloudRunServiceComponent,
        service_region: str,
        frontend_service_account_email: pulumi.Input[str] | None = None,
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create API Gateway resources.

        Args:
            name: Pulumi resource name of the component
            stack_name: Name of the fullstack deployment, used as naming prefix
            project: GCP project id
            regions: Regions to deploy a gateway in, first one is the primary
            gateway_config: Gateway name, routes, CORS and JWT settings
            backend: Backend Cloud Run service
            frontend: Frontend Cloud Run service
            service_region: Region of the Cloud Run services
            frontend_service_account_email: Issuer of the JWTs checked by derived
                JWT auth. Defaults to the frontend service account.
            labels: Common labels to apply
            opts: Pulumi resource options

        Raises:
            ConfigurationError: If no region is given.
        """
        if not regions:
            raise ConfigurationError("at least one gateway region is required", field="network.api_gateway.regions")

        api_config = gateway_config.config
        if frontend_service_account_email is None:
            frontend_service_account_email = frontend.service_account_email

        super().__init__("fullstack:gcp:APIGateway", name, None, opts)

        self.labels = merge_labels(labels, {"gateway": "true"})
        child_opts = pulumi.ResourceOptions(parent=self)
        gateway_name = gateway_config.name

        pulumi.log.info(f"Routing traffic to API Gateway '{gateway_name}' in {', '.join(regions)}")

        # =====================================================================
        # Gateway Identity
        # =====================================================================
        account_id = resource_name(stack_name, f"{gateway_name}-sa", SERVICE_ACCOUNT_ID_MAX_LENGTH)
        self.service_account = gcp.serviceaccount.Account(
            account_id,
            account_id=account_id,
            display_name=f"API Gateway service account ({gateway_name})",
            project=project,
            opts=child_opts,
        )
        member = pulumi.Output.concat("serviceAccount:", self.service_account.email)

        self.backend_invoker = backend.grant_invoker(member, gateway_name, project, service_region, opts=child_opts)
        self.frontend_invoker = frontend.grant_invoker(member, gateway_name, project, service_region, opts=child_opts)

        # =====================================================================
        # API and API Config
        # =====================================================================
        api_id = resource_name(stack_name, f"{gateway_name}-api", API_GATEWAY_ID_MAX_LENGTH)
        self.api = gcp.apigateway.Api(
            api_id,
            api_id=api_id,
            display_name=f"Gateway API (apiID: {api_id})",
            project=project,
            labels=self.labels,
            opts=child_opts,
        )

        self.openapi_spec = pulumi.Output.all(
            backend.uri,
            frontend.uri,
            frontend_service_account_email,
            self.api.managed_service,
        ).apply(lambda args: self._render_spec(api_id, api_config, *args))

        self.api_config = gcp.apigateway.ApiConfig(
            f"{api_id}-config",
            api=self.api.api_id,
            api_config_id_prefix=f"{api_id}-",
            display_name=f"Config for {api_id}",
            project=project,
            openapi_documents=[
                gcp.apigateway.ApiConfigOpenapiDocumentArgs(
                    document=gcp.apigateway.ApiConfigOpenapiDocumentDocumentArgs(
                        path=api_config.openapi_spec_path,
                        contents=self.openapi_spec.apply(
                            lambda spec: base64.b64encode(spec.encode("utf-8")).decode("ascii")
                        ),
                    ),
                ),
            ],
            gateway_config=gcp.apigateway.ApiConfigGatewayConfigArgs(
                backend_config=gcp.apigateway.ApiConfigGatewayConfigBackendConfigArgs(
                    google_service_account=self.service_account.email,
                ),
            ),
            labels=self.labels,
            opts=pulumi.ResourceOptions(parent=self, replace_on_changes=["*"]),
        )

        # =====================================================================
        # Gateways
        # =====================================================================
        self.gateways: dict[str, gcp.apigateway.Gateway] = {}
        for region in regions:
            suffix = gateway_name if len(regions) == 1 else f"{gateway_name}-{region}"
            gateway_id = resource_name(stack_name, suffix, API_GATEWAY_ID_MAX_LENGTH)
            self.gateways[region] = gcp.apigateway.Gateway(
                gateway_id,
                gateway_id=gateway_id,
                display_name=f"Gateway (gatewayID: {gateway_id})",
                api_config=self.api_config.id,
                region=region,
                project=project,
                labels=self.labels,
                opts=child_opts,
            )

        self.gateway = self.gateways[regions[0]]

        self.register_outputs(
            {
                "api_id": self.api.api_id,
                "api_config_id": self.api_config.api_config_id,
                "gateway_hostnames": {region: gw.default_hostname for region, gw in self.gateways.items()},
                "service_account_email": self.service_account.email,
            }
        )

    def _render_spec(
        self,
        api_id: str,
        api_config: APIConfig,
        backend_url: str,
        frontend_url: str,
        frontend_email: str | None,
        managed_service: str | None,
    ) -> str:
        spec = render_openapi_spec(
            api_id,
            backend_url,
            frontend_url,
            frontend_email,
            api_config,
            managed_service=managed_service,
        )
        pulumi.log.debug(f"OpenAPI document for {api_id}:\n{spec}", resource=self)
        return spec
