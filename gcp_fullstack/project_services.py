"""Project API enablement for the optional components."""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.naming import resource_name


def enable_api(
    stack_name: str,
    key: str,
    project: str,
    service: str,
    opts: pulumi.ResourceOptions | None = None,
) -> gcp.projects.Service:
    """Enable a Google API on the project.

    The API stays enabled when the stack is destroyed, other stacks in the
    same project may depend on it.
    """
    name = resource_name(stack_name, f"{key}-api")
    return gcp.projects.Service(
        name,
        project=project,
        service=service,
        disable_on_destroy=False,
        disable_dependent_services=False,
        opts=pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(retain_on_delete=True)),
    )
