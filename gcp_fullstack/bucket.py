"""Storage Bucket Component - private object storage for the backend.

The bucket is never public: uniform bucket-level access with public access
prevention enforced. Versioning is on, with lifecycle rules that expire old
objects and prune noncurrent versions.
"""

import pulumi
import pulumi_gcp as gcp

from gcp_fullstack.labels import merge_labels
from gcp_fullstack.models import BUCKET_NAME_ENV_VAR, BucketConfig
from gcp_fullstack.naming import resource_name
from gcp_fullstack.project_services import enable_api

BUCKET_EDITOR_ROLE = "roles/storage.objectAdmin"

NONCURRENT_VERSIONS_KEPT = 10
NONCURRENT_VERSION_MAX_AGE_DAYS = 30

CORS_ORIGINS = ["https://*.run.app", "https://*.googleapis.com"]
CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "HEAD"]
CORS_MAX_AGE_SECONDS = 3600


def _lifecycle_rules(config: BucketConfig) -> list[gcp.storage.BucketLifecycleRuleArgs]:
    delete = gcp.storage.BucketLifecycleRuleActionArgs(type="Delete")
    return [
        gcp.storage.BucketLifecycleRuleArgs(
            action=delete,
            condition=gcp.storage.BucketLifecycleRuleConditionArgs(age=config.retention_days),
        ),
        gcp.storage.BucketLifecycleRuleArgs(
            action=delete,
            condition=gcp.storage.BucketLifecycleRuleConditionArgs(
                num_newer_versions=NONCURRENT_VERSIONS_KEPT,
                age=NONCURRENT_VERSION_MAX_AGE_DAYS,
            ),
        ),
    ]


class StorageBucketComponent(pulumi.ComponentResource):
    """Private, versioned Cloud Storage bucket."""

    def __init__(
        self,
        name: str,
        stack_name: str,
        project: str,
        config: BucketConfig,
        labels: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("fullstack:gcp:StorageBucket", name, None, opts)

        self.labels = merge_labels(labels, {"bucket": "true"})
        child_opts = pulumi.ResourceOptions(parent=self)

        storage_api = enable_api(stack_name, "bucket-storage", project, "storage.googleapis.com", child_opts)

        bucket_name = resource_name(stack_name, "storage")
        self.bucket = gcp.storage.Bucket(
            bucket_name,
            name=bucket_name,
            project=project,
            location=config.location,
            storage_class=config.storage_class,
            force_destroy=config.force_destroy,
            uniform_bucket_level_access=True,
            public_access_prevention="enforced",
            versioning=gcp.storage.BucketVersioningArgs(enabled=True),
            lifecycle_rules=_lifecycle_rules(config),
            cors=[
                gcp.storage.BucketCorArgs(
                    origins=CORS_ORIGINS,
                    methods=CORS_METHODS,
                    response_headers=["*"],
                    max_age_seconds=CORS_MAX_AGE_SECONDS,
                ),
            ],
            labels=self.labels,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[storage_api]),
        )

        self.name = self.bucket.name
        self.url = self.bucket.url

        self.register_outputs(
            {
                "bucket_name": self.bucket.name,
                "bucket_url": self.bucket.url,
            }
        )
