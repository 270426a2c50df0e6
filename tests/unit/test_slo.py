"""Unit tests for the cold start SLO component."""

import pulumi

from gcp_fullstack.models import ColdStartSLOConfig
from gcp_fullstack.slo import ColdStartSLOComponent, burn_rate_filter, startup_latency_filter


def _slo(service_name: str, **config) -> ColdStartSLOComponent:
    return ColdStartSLOComponent(
        f"{service_name}-slo",
        project="test-project",
        region="us-central1",
        service_name=service_name,
        config=ColdStartSLOConfig(**config),
    )


def test_startup_latency_filter():
    assert startup_latency_filter("web-backend") == (
        'resource.type="cloud_run_revision" AND '
        'resource.labels.service_name="web-backend" AND '
        'metric.type="run.googleapis.com/container/startup_latencies"'
    )


def test_burn_rate_filter():
    assert burn_rate_filter("projects/p/services/s/serviceLevelObjectives/o") == (
        'select_slo_burn_rate("projects/p/services/s/serviceLevelObjectives/o", "3600s")'
    )


class TestColdStartSLOComponent:
    """Tests for SLO resources."""

    @pulumi.runtime.test
    def test_slo(self, mocks):
        component = _slo("slo-stack-backend", goal=0.95, rolling_period_days=28, max_boot_time_ms=2500)
        assert component.alert_policy is None

        def check(_):
            service = mocks.inputs_of("slo-stack-backend-monitoring-service", "GenericService")
            assert service["serviceId"] == "slo-stack-backend-monitoring-service"
            assert service["basicService"] == {
                "serviceType": "CLOUD_RUN",
                "serviceLabels": {"service_name": "slo-stack-backend", "location": "us-central1"},
            }

            slo = mocks.inputs_of("slo-stack-backend-startup-latency-slo", "Slo")
            assert slo["service"] == "slo-stack-backend-monitoring-service"
            assert slo["goal"] == 0.95
            assert slo["rollingPeriodDays"] == 28
            cut = slo["requestBasedSli"]["distributionCut"]
            assert cut["distributionFilter"] == startup_latency_filter("slo-stack-backend")
            assert cut["range"] == {"min": 0, "max": 2500}
            assert mocks.names_of("AlertPolicy") == []

        return component.slo.urn.apply(check)

    @pulumi.runtime.test
    def test_alert_policy(self, mocks):
        component = _slo("alert-stack-frontend", alert_channel_id="12345", alert_burn_rate_threshold=5)
        assert component.alert_policy is not None

        def check(slo_name):
            policy = mocks.inputs_of("alert-stack-frontend-startup-latency-slo-alert", "AlertPolicy")
            assert policy["combiner"] == "OR"
            assert policy["notificationChannels"] == ["projects/test-project/notificationChannels/12345"]
            assert policy["alertStrategy"] == {"autoClose": "1800s"}
            threshold = policy["conditions"][0]["conditionThreshold"]
            assert threshold["filter"] == burn_rate_filter(slo_name)
            assert threshold["comparison"] == "COMPARISON_GT"
            assert threshold["thresholdValue"] == 5
            assert threshold["duration"] == "300s"

        return pulumi.Output.all(component.slo.name, component.alert_policy.urn).apply(lambda args: check(args[0]))
