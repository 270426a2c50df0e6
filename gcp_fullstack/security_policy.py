"""Cloud Armor security policy for the load balancer.

Rules are evaluated from the lowest priority number up:
- Preconfigured WAF rules deny common attacks (when Cloud Armor is enabled)
- Client IP allowlist rules allow known ranges, then deny everyone else
- The mandatory default rule allows all remaining traffic
"""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.naming import resource_name

DEFAULT_RULE_PRIORITY = 2147483647
WAF_BASE_PRIORITY = 100
ALLOWLIST_BASE_PRIORITY = 1000

# Cloud Armor accepts at most 10 ranges per SRC_IPS_V1 rule
MAX_RANGES_PER_RULE = 10

PRECONFIGURED_WAF_RULES = [
    "sqli-v33-stable",
    "xss-v33-stable",
    "lfi-v33-stable",
    "rfi-v33-stable",
    "rce-v33-stable",
    "methodenforcement-v33-stable",
    "scannerdetection-v33-stable",
    "protocolattack-v33-stable",
    "sessionfixation-v33-stable",
    "nodejs-v33-stable",
]


def _src_ips_rule(
    action: str,
    priority: int,
    ranges: list[str],
    description: str,
) -> gcp.compute.SecurityPolicyRuleArgs:
    return gcp.compute.SecurityPolicyRuleArgs(
        action=action,
        priority=priority,
        description=description,
        match=gcp.compute.SecurityPolicyRuleMatchArgs(
            versioned_expr="SRC_IPS_V1",
            config=gcp.compute.SecurityPolicyRuleMatchConfigArgs(
                src_ip_ranges=ranges,
            ),
        ),
    )


def default_rule() -> gcp.compute.SecurityPolicyRuleArgs:
    """Every policy needs a lowest-priority rule matching all sources."""
    return _src_ips_rule("allow", DEFAULT_RULE_PRIORITY, ["*"], "Default allow rule")


def preconfigured_waf_rules() -> list[gcp.compute.SecurityPolicyRuleArgs]:
    """Deny rules for the preconfigured OWASP rule sets."""
    return [
        gcp.compute.SecurityPolicyRuleArgs(
            action="deny(502)",
            priority=WAF_BASE_PRIORITY + i,
            description=f"preconfigured waf rule {rule}",
            match=gcp.compute.SecurityPolicyRuleMatchArgs(
                expr=gcp.compute.SecurityPolicyRuleMatchExprArgs(
                    expression=f"evaluatePreconfiguredWaf('{rule}', {{'sensitivity': 1}})",
                ),
            ),
        )
        for i, rule in enumerate(PRECONFIGURED_WAF_RULES)
    ]


def ip_allowlist_rules(client_ip_allowlist: list[str]) -> list[gcp.compute.SecurityPolicyRuleArgs]:
    """Allow the given ranges and deny every other client.

    Ranges keep their order and are split across as many rules as needed.
    An empty allowlist yields no rules.
    """
    if not client_ip_allowlist:
        return []

    chunks = [
        client_ip_allowlist[i : i + MAX_RANGES_PER_RULE]
        for i in range(0, len(client_ip_allowlist), MAX_RANGES_PER_RULE)
    ]
    rules = [
        _src_ips_rule("allow", ALLOWLIST_BASE_PRIORITY + i, chunk, "IPs allowlist rule")
        for i, chunk in enumerate(chunks)
    ]
    rules.append(
        _src_ips_rule(
            "deny(403)",
            ALLOWLIST_BASE_PRIORITY + len(chunks),
            ["*"],
            "Default IP fallback deny rule",
        )
    )
    return rules


def security_policy_rules(
    enable_cloud_armor: bool,
    client_ip_allowlist: list[str],
) -> list[gcp.compute.SecurityPolicyRuleArgs]:
    """All rules of the policy, or an empty list when no policy is needed."""
    if not enable_cloud_armor and not client_ip_allowlist:
        return []

    rules = [default_rule()]
    if enable_cloud_armor:
        rules.extend(preconfigured_waf_rules())
    rules.extend(ip_allowlist_rules(client_ip_allowlist))
    return rules


def new_security_policy(
    stack_name: str,
    project: str,
    enable_cloud_armor: bool,
    client_ip_allowlist: list[str],
    opts: pulumi.ResourceOptions | None = None,
) -> gcp.compute.SecurityPolicy | None:
    """Create the Cloud Armor policy, or return None when nothing is enforced."""
    rules = security_policy_rules(enable_cloud_armor, client_ip_allowlist)
    if not rules:
        return None

    policy_name = resource_name(stack_name, "armor")
    return gcp.compute.SecurityPolicy(
        policy_name,
        name=policy_name,
        description=f"Cloud Armor security policy for {stack_name}",
        project=project,
        type="CLOUD_ARMOR",
        rules=rules,
        opts=opts,
    )
