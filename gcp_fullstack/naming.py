"""Resource naming shared by every fullstack component.

Names are ``{stack}-{suffix}``. When the result exceeds the provider limit the
stack portion is shortened first so the resource kind stays readable.
"""

MAX_RESOURCE_NAME_LENGTH = 63

# Provider specific limits
SERVICE_ACCOUNT_ID_MAX_LENGTH = 28
API_GATEWAY_ID_MAX_LENGTH = 50
VPC_CONNECTOR_NAME_MAX_LENGTH = 25

SEPARATOR = "-"


def resource_name(
    stack_name: str,
    suffix: str,
    max_length: int = MAX_RESOURCE_NAME_LENGTH,
) -> str:
    """Build a deterministic resource name for a stack.

    Args:
        stack_name: Name of the fullstack deployment
        suffix: Resource kind, e.g. "backend" or "fw-https"
        max_length: Provider limit for the resulting name

    Returns:
        The joined name, at most ``max_length`` characters and never ending
        with a separator.
    """
    stack_name = stack_name.strip(SEPARATOR)
    suffix = suffix.strip(SEPARATOR)

    if not stack_name:
        return suffix[:max_length].rstrip(SEPARATOR)
    if not suffix:
        return stack_name[:max_length].rstrip(SEPARATOR)

    name = f"{stack_name}{SEPARATOR}{suffix}"
    if len(name) <= max_length:
        return name

    # Room left for the stack portion once the suffix and separator are kept
    budget = max_length - len(suffix) - len(SEPARATOR)
    prefix = stack_name[:budget].rstrip(SEPARATOR) if budget > 0 else ""
    if not prefix:
        return suffix[:max_length].rstrip(SEPARATOR)

    return f"{prefix}{SEPARATOR}{suffix}"
