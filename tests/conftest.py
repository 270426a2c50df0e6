"""Pytest configuration and fixtures.

Pulumi mocks are installed BEFORE any component module is imported so
every resource created in a test is registered against the mock engine.
"""

import pulumi
import pytest


class FullStackMocks(pulumi.runtime.Mocks):
    """Mock engine returning plausible computed outputs for GCP resources.

    Every registered resource is recorded as (type, name, inputs). Inputs use
    the engine's camelCase property names.
    """

    def __init__(self):
        self.resources: list[tuple[str, str, dict]] = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.resources.append((args.typ, args.name, dict(args.inputs)))
        state = dict(args.inputs)
        project = args.inputs.get("project", "test-project")

        if args.typ == "gcp:cloudrunv2/service:Service":
            service_name = args.inputs.get("name", args.name)
            state["name"] = service_name
            state["uri"] = f"https://{service_name}-xyz.a.run.app"
        elif args.typ == "gcp:serviceaccount/account:Account":
            state["email"] = f"{args.inputs['accountId']}@{project}.iam.gserviceaccount.com"
        elif args.typ == "gcp:apigateway/api:Api":
            state["managedService"] = f"{args.inputs['apiId']}.apigateway.{project}.cloud.goog"
        elif args.typ == "gcp:apigateway/apiConfig:ApiConfig":
            state["apiConfigId"] = f"{args.inputs.get('apiConfigIdPrefix', '')}0001"
        elif args.typ == "gcp:apigateway/gateway:Gateway":
            state["defaultHostname"] = f"{args.inputs['gatewayId']}-abc.uc.gateway.dev"
        elif args.typ in ("gcp:compute/globalAddress:GlobalAddress", "gcp:compute/address:Address"):
            state["address"] = "203.0.113.10"
        elif args.typ == "gcp:redis/instance:Instance":
            state.update(
                host="10.0.0.3",
                port=6378,
                readEndpoint="",
                readEndpointPort=0,
                authString="redis-auth",
                serverCaCerts=[{"cert": "CERT-A"}, {"cert": "CERT-B"}],
            )
        elif args.typ == "gcp:vpcaccess/connector:Connector":
            state["selfLink"] = f"projects/{project}/locations/{args.inputs['region']}/connectors/{args.inputs['name']}"
        elif args.typ == "gcp:secretmanager/secretVersion:SecretVersion":
            state["version"] = "1"
        elif args.typ == "gcp:storage/bucket:Bucket":
            state["url"] = f"gs://{args.inputs['name']}"
        elif args.typ == "gcp:monitoring/slo:Slo":
            service_id = args.inputs.get("service", "")
            state["name"] = f"projects/{project}/services/{service_id}/serviceLevelObjectives/{args.name}"

        if args.typ.startswith("gcp:compute/"):
            state["selfLink"] = f"https://www.googleapis.com/compute/v1/projects/{project}/{args.name}"

        return [f"{args.name}_id", state]

    def call(self, args: pulumi.runtime.MockCallArgs):
        return {}

    def inputs_of(self, name: str, kind: str) -> dict:
        """Inputs of the resource registered as ``name`` whose type ends with ``kind``."""
        for typ, res_name, inputs in self.resources:
            if res_name == name and typ.endswith(f":{kind}"):
                return inputs
        raise KeyError(f"{kind} '{name}' was not registered")

    def names_of(self, kind: str) -> list[str]:
        return [name for typ, name, _ in self.resources if typ.endswith(f":{kind}")]


MOCKS = FullStackMocks()
pulumi.runtime.set_mocks(MOCKS, project="gcp-fullstack", stack="test", preview=False)


@pytest.fixture
def mocks():
    """Mock engine with an empty resource record."""
    MOCKS.resources.clear()
    yield MOCKS
    MOCKS.resources.clear()


@pytest.fixture
def stack_config():
    """Factory for a valid StackConfig with overridable fields."""
    from gcp_fullstack.models import NetworkConfig, StackConfig

    def make(**overrides) -> StackConfig:
        values = {
            "project": "test-project",
            "region": "us-central1",
            "backend_image": "gcr.io/test-project/backend:latest",
            "frontend_image": "gcr.io/test-project/frontend:latest",
            "network": NetworkConfig(domain_url="app.example.com"),
            "labels": {"environment": "test"},
        }
        values.update(overrides)
        return StackConfig(**values)

    return make


@pytest.fixture
def env_vars():
    """Fixture providing the required environment variables."""
    return {
        "GCP_PROJECT": "test-project",
        "GCP_REGION": "us-central1",
        "BACKEND_IMAGE": "gcr.io/test-project/backend:latest",
        "FRONTEND_IMAGE": "gcr.io/test-project/frontend:latest",
        "DOMAIN_URL": "app.example.com",
    }
