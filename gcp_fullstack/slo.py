"""Cold Start SLO Component - container startup latency objective.

This module creates, for one Cloud Run service:
- Custom monitored service of type CLOUD_RUN
- Request based SLO on the container startup latency distribution
- Optional alert policy on the SLO burn rate
"""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.models import ColdStartSLOConfig
from gcp_fullstack.naming import resource_name

MONITORING_NAME_MAX_LENGTH = 100
STARTUP_LATENCY_METRIC = "run.googleapis.com/container/startup_latencies"

BURN_RATE_LOOKBACK = "3600s"
ALERT_DURATION = "300s"
ALERT_AUTO_CLOSE = "1800s"


def startup_latency_filter(service_name: str) -> str:
    """Monitoring filter selecting the startup latencies of one service."""
    return " AND ".join(
        [
            'resource.type="cloud_run_revision"',
            f'resource.labels.service_name="{service_name}"',
            f'metric.type="{STARTUP_LATENCY_METRIC}"',
        ]
    )


def burn_rate_filter(slo_name: str) -> str:
    return f'select_slo_burn_rate("{slo_name}", "{BURN_RATE_LOOKBACK}")'


class ColdStartSLOComponent(pulumi.ComponentResource):
    """Startup latency SLO of a Cloud Run service, with an optional alert."""

    def __init__(
        self,
        name: str,
        project: str,
        region: str,
        service_name: str,
        config: ColdStartSLOConfig,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the SLO.

        Args:
            name: Pulumi resource name of the component
            project: GCP project id
            region: Region of the Cloud Run service
            service_name: Cloud Run service name
            config: Goal, window, latency bound and alerting settings
            opts: Pulumi resource options
        """
        super().__init__("fullstack:gcp:ColdStartSLO", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self)

        monitored_id = resource_name(service_name, "monitoring-service", MONITORING_NAME_MAX_LENGTH)
        self.monitored_service = gcp.monitoring.GenericService(
            monitored_id,
            project=project,
            service_id=monitored_id,
            display_name=f"Cloud Run cold start monitored service ({service_name})",
            basic_service=gcp.monitoring.GenericServiceBasicServiceArgs(
                service_type="CLOUD_RUN",
                service_labels={
                    "service_name": service_name,
                    "location": region,
                },
            ),
            opts=child_opts,
        )

        slo_id = resource_name(service_name, "startup-latency-slo", MONITORING_NAME_MAX_LENGTH)
        self.slo = gcp.monitoring.Slo(
            slo_id,
            project=project,
            service=self.monitored_service.service_id,
            display_name=f"Container startup latency ({service_name})",
            goal=config.goal,
            rolling_period_days=config.rolling_period_days,
            request_based_sli=gcp.monitoring.SloRequestBasedSliArgs(
                distribution_cut=gcp.monitoring.SloRequestBasedSliDistributionCutArgs(
                    distribution_filter=startup_latency_filter(service_name),
                    # Good boots finish below the bound
                    range=gcp.monitoring.SloRequestBasedSliDistributionCutRangeArgs(
                        min=0.0,
                        max=config.max_boot_time_ms,
                    ),
                ),
            ),
            opts=pulumi.ResourceOptions(parent=self, depends_on=[self.monitored_service]),
        )

        self.alert_policy = None
        if config.alert_channel_id:
            alert_name = resource_name(service_name, "startup-latency-slo-alert", MONITORING_NAME_MAX_LENGTH)
            self.alert_policy = gcp.monitoring.AlertPolicy(
                alert_name,
                project=project,
                display_name=f"Cold start SLO burn rate ({service_name})",
                combiner="OR",
                conditions=[
                    gcp.monitoring.AlertPolicyConditionArgs(
                        display_name="SLO burn rate too high",
                        condition_threshold=gcp.monitoring.AlertPolicyConditionConditionThresholdArgs(
                            filter=self.slo.name.apply(burn_rate_filter),
                            comparison="COMPARISON_GT",
                            threshold_value=config.alert_burn_rate_threshold,
                            duration=ALERT_DURATION,
                        ),
                    ),
                ],
                notification_channels=[f"projects/{project}/notificationChannels/{config.alert_channel_id}"],
                alert_strategy=gcp.monitoring.AlertPolicyAlertStrategyArgs(auto_close=ALERT_AUTO_CLOSE),
                opts=child_opts,
            )
        else:
            pulumi.log.debug(f"No alert channel for the {service_name} cold start SLO", resource=self)

        self.register_outputs(
            {
                "slo_name": self.slo.name,
                "alert_policy": self.alert_policy.name if self.alert_policy else None,
            }
        )
