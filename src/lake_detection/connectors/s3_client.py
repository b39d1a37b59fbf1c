"""S3 client connector for the ROI catalog and detection outputs."""

import os
from typing import Any

import boto3
from dagster import ConfigurableResource

from lake_detection.connectors.settings import SettingsResource


def s3_credentials() -> dict[str, str | None]:
    """Access keys from the environment, falling back to the MinIO root user.

    :returns: boto3-style credential keyword arguments
    """
    return {
        "aws_access_key_id": os.environ.get("AWS_ACCESS_KEY_ID") or os.environ.get("MINIO_ROOT_USER"),
        "aws_secret_access_key": os.environ.get("AWS_SECRET_ACCESS_KEY") or os.environ.get("MINIO_ROOT_PASSWORD"),
    }


class S3Resource(ConfigurableResource[Any]):
    """S3 resource for creating boto3 S3 clients against AWS or MinIO."""

    settings: SettingsResource

    def create_client(self) -> Any:
        """Create S3 client.

        :returns: Configured S3 client
        """
        return boto3.client(
            "s3",
            endpoint_url=self.settings.aws_s3_endpoint,
            region_name=self.settings.aws_region,
            use_ssl=self.settings.aws_s3_use_ssl,
            **s3_credentials(),
        )

    def get_client(self) -> Any:
        return self.create_client()

    def upload_bytes(self, key: str, body: bytes, content_type: str, s3_client: Any | None = None) -> str:
        """Upload an in-memory object to the pipeline bucket.

        :param key: Object key
        :param body: Object content
        :param content_type: MIME type
        :param s3_client: Optional S3 client to reuse
        :returns: s3:// URI of the object
        """
        bucket = self.settings.aws_s3_pipeline_bucket_name
        client = s3_client or self.get_client()
        client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        return f"s3://{bucket}/{key}"
