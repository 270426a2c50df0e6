"""Load Balancer Component - public HTTPS entrypoint for the fullstack.

This module creates the external load balancer:
- Serverless NEGs targeting the Cloud Run services, or the API gateways
- Backend services with the optional Cloud Armor policy attached, optionally
  behind Identity-Aware Proxy
- URL map, managed TLS certificate and HTTPS proxy
- Global or regional IP address with forwarding rules (unless private-only)
- Optional HTTP to HTTPS redirect and DNS record
- Optional proxy-only subnet for regional managed proxies
"""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.api_gateway import APIGatewayComponent
from gcp_fullstack.cloud_run import CloudRunServiceComponent
from gcp_fullstack.labels import merge_labels
from gcp_fullstack.models import NetworkConfig
from gcp_fullstack.naming import resource_name
from gcp_fullstack.project_services import enable_api
from gcp_fullstack.security_policy import new_security_policy

API_GATEWAY_PLATFORM = "apigateway.googleapis.com"
LOAD_BALANCING_SCHEME = "EXTERNAL"
DNS_RECORD_TTL = 300
IAP_ACCESSOR_ROLE = "roles/iap.httpsResourceAccessor"
IAP_APIS = {
    "iap": "iap.googleapis.com",
    "cloudidentity": "cloudidentity.googleapis.com",
    "identitytoolkit": "identitytoolkit.googleapis.com",
}


class LoadBalancerComponent(pulumi.ComponentResource):
    """External HTTPS load balancer in front of Cloud Run or API Gateway."""

    def __init__(
        self,
        name: str,
        stack_name: str,
        project: str,
        region: str,
        network: NetworkConfig,
        backend: CloudRunServiceComponent,
        frontend: CloudRunServiceComponent,
        api_gateway: APIGatewayComponent | None = None,
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the load balancer.

        Args:
            name: Pulumi resource name of the component
            stack_name: Name of the fullstack deployment, used as naming prefix
            project: GCP project id
            region: Region of the Cloud Run services and regional entrypoint
            network: Domain, security and entrypoint settings
            backend: Backend Cloud Run service
            frontend: Frontend Cloud Run service
            api_gateway: When set, all traffic is routed to the gateways
            labels: Common labels to apply
            opts: Pulumi resource options
        """
        super().__init__("fullstack:gcp:LoadBalancer", name, None, opts)

        self.stack_name = stack_name
        self.project = project
        self.region = region
        self.labels = merge_labels(labels, {"load_balancer": "true"})
        child_opts = pulumi.ResourceOptions(parent=self)

        # =====================================================================
        # Identity-Aware Proxy
        # =====================================================================
        self.iap_apis: list[gcp.projects.Service] = []
        self.iap_members = network.iap_members
        self.iap_bindings: list[gcp.iap.WebBackendServiceIamMember] = []
        if network.enable_iap:
            self.iap_apis = [
                enable_api(stack_name, key, project, service, child_opts) for key, service in IAP_APIS.items()
            ]

        # =====================================================================
        # Cloud Armor
        # =====================================================================
        self.security_policy = new_security_policy(
            stack_name,
            project,
            network.enable_cloud_armor,
            network.client_ip_allowlist,
            opts=child_opts,
        )

        # =====================================================================
        # Serverless NEGs and URL Map
        # =====================================================================
        self.backend_negs: list[gcp.compute.RegionNetworkEndpointGroup] = []
        self.backend_services: dict[str, gcp.compute.BackendService] = {}

        if api_gateway is not None:
            self.url_map = self._route_to_gateway(api_gateway, child_opts)
        else:
            self.url_map = self._route_to_cloud_run(network, backend, frontend, child_opts)

        # =====================================================================
        # TLS Certificate and HTTPS Proxy
        # =====================================================================
        cert_name = resource_name(stack_name, "tls-cert")
        self.certificate = gcp.compute.ManagedSslCertificate(
            cert_name,
            name=cert_name,
            description=f"TLS cert for {network.domain_url}",
            project=project,
            managed=gcp.compute.ManagedSslCertificateManagedArgs(
                domains=[network.domain_url],
            ),
            opts=child_opts,
        )

        https_proxy_name = resource_name(stack_name, "https-proxy")
        self.https_proxy = gcp.compute.TargetHttpsProxy(
            https_proxy_name,
            name=https_proxy_name,
            description=f"Proxy to LB traffic for {stack_name}",
            project=project,
            url_map=self.url_map.self_link,
            ssl_certificates=[self.certificate.self_link],
            opts=child_opts,
        )

        # =====================================================================
        # Internet Entrypoint
        # =====================================================================
        self.ip_address: pulumi.Output[str] | None = None
        self.forwarding_rules: dict[str, pulumi.CustomResource] = {}
        self.dns_record = None
        self.proxy_subnet = None

        if network.proxy_subnet_cidr_range:
            subnet_name = resource_name(stack_name, "proxy-subnet")
            self.proxy_subnet = gcp.compute.Subnetwork(
                subnet_name,
                name=subnet_name,
                description=f"Proxy-only subnet for {stack_name}",
                project=project,
                region=region,
                network=network.proxy_network_name,
                ip_cidr_range=network.proxy_subnet_cidr_range,
                purpose="REGIONAL_MANAGED_PROXY",
                role="ACTIVE",
                opts=child_opts,
            )

        if network.enable_private_traffic_only:
            pulumi.log.warn(
                f"Private traffic only: no public entrypoint is created, so the managed "
                f"certificate for {network.domain_url} will not be provisioned",
                resource=self,
            )
        else:
            if network.enable_global_entrypoint:
                self._create_global_entrypoint(network, child_opts)
            else:
                self._create_regional_entrypoint(network, child_opts)

            if network.dns_managed_zone:
                dns_name = resource_name(stack_name, "dns")
                self.dns_record = gcp.dns.RecordSet(
                    dns_name,
                    project=project,
                    managed_zone=network.dns_managed_zone,
                    name=f"{network.domain_url}.",
                    type="A",
                    ttl=DNS_RECORD_TTL,
                    rrdatas=[self.ip_address],
                    opts=child_opts,
                )

        self.register_outputs(
            {
                "url_map": self.url_map.self_link,
                "certificate": self.certificate.self_link,
                "https_proxy": self.https_proxy.self_link,
                "ip_address": self.ip_address,
            }
        )

    def _backend_service(
        self,
        key: str,
        negs: list[gcp.compute.RegionNetworkEndpointGroup],
        opts: pulumi.ResourceOptions,
    ) -> gcp.compute.BackendService:
        service_name = resource_name(self.stack_name, f"{key}-bes")
        service = gcp.compute.BackendService(
            service_name,
            name=service_name,
            description=f"Service backend for {self.stack_name} {key}",
            project=self.project,
            load_balancing_scheme=LOAD_BALANCING_SCHEME,
            backends=[gcp.compute.BackendServiceBackendArgs(group=neg.self_link) for neg in negs],
            security_policy=self.security_policy.self_link if self.security_policy else None,
            iap=gcp.compute.BackendServiceIapArgs(enabled=True) if self.iap_apis else None,
            opts=pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(depends_on=self.iap_apis)),
        )
        self.backend_services[key] = service

        for index, member in enumerate(self.iap_members):
            self.iap_bindings.append(
                gcp.iap.WebBackendServiceIamMember(
                    f"{service_name}-iap-{index}",
                    project=self.project,
                    web_backend_service=service.name,
                    role=IAP_ACCESSOR_ROLE,
                    member=member,
                    opts=opts,
                )
            )
        return service

    def _route_to_gateway(
        self,
        api_gateway: APIGatewayComponent,
        opts: pulumi.ResourceOptions,
    ) -> gcp.compute.URLMap:
        """Send all traffic to the API gateways, one NEG per gateway region."""
        for gateway_region, gateway in api_gateway.gateways.items():
            neg_name = resource_name(self.stack_name, f"gateway-neg-{gateway_region}")
            self.backend_negs.append(
                gcp.compute.RegionNetworkEndpointGroup(
                    neg_name,
                    name=neg_name,
                    description=f"NEG to route LB traffic to API Gateway in {gateway_region}",
                    project=self.project,
                    region=gateway_region,
                    network_endpoint_type="SERVERLESS",
                    serverless_deployment=gcp.compute.RegionNetworkEndpointGroupServerlessDeploymentArgs(
                        platform=API_GATEWAY_PLATFORM,
                        resource=gateway.gateway_id,
                    ),
                    opts=opts,
                )
            )

        gateway_service = self._backend_service("gateway", self.backend_negs, opts)

        url_map_name = resource_name(self.stack_name, "lb")
        return gcp.compute.URLMap(
            url_map_name,
            name=url_map_name,
            description=f"URL map to LB traffic for {self.stack_name}",
            project=self.project,
            default_service=gateway_service.self_link,
            opts=opts,
        )

    def _route_to_cloud_run(
        self,
        network: NetworkConfig,
        backend: CloudRunServiceComponent,
        frontend: CloudRunServiceComponent,
        opts: pulumi.ResourceOptions,
    ) -> gcp.compute.URLMap:
        """Send API paths to the backend and everything else to the frontend."""
        services = {}
        for component in (backend, frontend):
            neg_name = resource_name(self.stack_name, f"{component.service_name}-neg")
            neg = gcp.compute.RegionNetworkEndpointGroup(
                neg_name,
                name=neg_name,
                description=f"NEG to route LB traffic to {component.service_name}",
                project=self.project,
                region=self.region,
                network_endpoint_type="SERVERLESS",
                cloud_run=gcp.compute.RegionNetworkEndpointGroupCloudRunArgs(
                    service=component.service.name,
                ),
                opts=opts,
            )
            self.backend_negs.append(neg)
            services[component.service_name] = self._backend_service(component.service_name, [neg], opts)

        backend_service = services[backend.service_name]
        frontend_service = services[frontend.service_name]

        url_map_name = resource_name(self.stack_name, "lb")
        return gcp.compute.URLMap(
            url_map_name,
            name=url_map_name,
            description=f"URL map to LB traffic for {self.stack_name}",
            project=self.project,
            default_service=backend_service.self_link,
            host_rules=[
                gcp.compute.URLMapHostRuleArgs(
                    # Exact domain to avoid host header attacks
                    hosts=[network.domain_url],
                    path_matcher="traffic-paths",
                ),
            ],
            path_matchers=[
                gcp.compute.URLMapPathMatcherArgs(
                    name="traffic-paths",
                    default_service=frontend_service.self_link,
                    path_rules=[
                        gcp.compute.URLMapPathMatcherPathRuleArgs(
                            paths=network.backend_path_patterns,
                            service=backend_service.self_link,
                        ),
                    ],
                ),
            ],
            opts=opts,
        )

    def _http_redirect_proxy(self, opts: pulumi.ResourceOptions) -> gcp.compute.TargetHttpProxy:
        redirect_name = resource_name(self.stack_name, "http-redirect")
        self.redirect_url_map = gcp.compute.URLMap(
            redirect_name,
            name=redirect_name,
            description=f"HTTP to HTTPS redirect for {self.stack_name}",
            project=self.project,
            default_url_redirect=gcp.compute.URLMapDefaultUrlRedirectArgs(
                https_redirect=True,
                strip_query=False,
                redirect_response_code="MOVED_PERMANENTLY_DEFAULT",
            ),
            opts=opts,
        )
        http_proxy_name = resource_name(self.stack_name, "http-proxy")
        return gcp.compute.TargetHttpProxy(
            http_proxy_name,
            name=http_proxy_name,
            project=self.project,
            url_map=self.redirect_url_map.self_link,
            opts=opts,
        )

    def _create_global_entrypoint(self, network: NetworkConfig, opts: pulumi.ResourceOptions) -> None:
        address_name = resource_name(self.stack_name, "global-ip")
        address = gcp.compute.GlobalAddress(
            address_name,
            name=address_name,
            description=f"IP address for {self.stack_name}",
            project=self.project,
            ip_version="IPV4",
            labels=self.labels,
            opts=opts,
        )
        self.ip_address = address.address

        targets = {"fw-https": ("443", self.https_proxy.self_link)}
        if network.enable_http_redirect:
            targets["fw-http"] = ("80", self._http_redirect_proxy(opts).self_link)

        for suffix, (port, target) in targets.items():
            rule_name = resource_name(self.stack_name, suffix)
            self.forwarding_rules[suffix] = gcp.compute.GlobalForwardingRule(
                rule_name,
                name=rule_name,
                description=f"Forwarding rule to LB traffic for {self.stack_name}",
                project=self.project,
                port_range=port,
                load_balancing_scheme=LOAD_BALANCING_SCHEME,
                target=target,
                ip_address=address.address,
                labels=self.labels,
                opts=opts,
            )

    def _create_regional_entrypoint(self, network: NetworkConfig, opts: pulumi.ResourceOptions) -> None:
        # Classic load balancer with a regional forwarding rule requires Standard tier
        address_name = resource_name(self.stack_name, "regional-ip")
        address = gcp.compute.Address(
            address_name,
            name=address_name,
            description=f"Regional IP address for {self.stack_name}",
            project=self.project,
            region=self.region,
            network_tier="STANDARD",
            labels=self.labels,
            opts=opts,
        )
        self.ip_address = address.address

        targets = {"fw-https": ("443", self.https_proxy.self_link)}
        if network.enable_http_redirect:
            targets["fw-http"] = ("80", self._http_redirect_proxy(opts).self_link)

        for suffix, (port, target) in targets.items():
            rule_name = resource_name(self.stack_name, suffix)
            self.forwarding_rules[suffix] = gcp.compute.ForwardingRule(
                rule_name,
                name=rule_name,
                description=f"Regional forwarding rule to LB traffic for {self.stack_name}",
                project=self.project,
                region=self.region,
                port_range=port,
                load_balancing_scheme=LOAD_BALANCING_SCHEME,
                target=target,
                ip_address=address.address,
                network_tier="STANDARD",
                labels=self.labels,
                opts=opts,
            )
