"""S3-backed artifact store for staged templates."""

import uuid

from botocore.exceptions import BotoCoreError, ClientError

from nestdeploy.utils.errors import (
    ErrorContext,
    StagingError,
    client_error_code,
    error_handler,
)
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)

# Buckets in this region must be created without a LocationConstraint
DEFAULT_REGION = "us-east-1"


class ArtifactStore:
    """Creates staging buckets and reads/writes template objects in them."""

    def __init__(self, s3_client, container_prefix: str = "nestdeploy"):
        """Initialize artifact store.

        Args:
            s3_client: boto3 S3 client
            container_prefix: Prefix of generated bucket names
        """
        self.s3_client = s3_client
        self.container_prefix = container_prefix

    def new_container_name(self) -> str:
        """Generate a bucket name that is never reused across attempts."""
        return f"{self.container_prefix}.{uuid.uuid4()}"

    def create_container(self) -> str:
        """Create a fresh staging bucket.

        Returns:
            Name of the created bucket

        Raises:
            StagingError: If the bucket cannot be created
        """
        name = self.new_container_name()
        params = {"Bucket": name}

        region = self.s3_client.meta.region_name
        if region and region != DEFAULT_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        logger.info(f"Creating S3 bucket {name} to store CloudFormation templates")
        try:
            self.s3_client.create_bucket(**params)
        except (ClientError, BotoCoreError) as e:
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=name, operation="create_container", aws_service="s3"),
                message="Failed to create staging bucket",
            ) from e

        return name

    def delete_container(self, container: str) -> None:
        """Delete a staging bucket, removing any objects left behind.

        Raises:
            StagingError: If the bucket cannot be deleted
        """
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=container):
                contents = page.get("Contents", [])
                if contents:
                    logger.warning(f"Removing {len(contents)} leftover object(s) from {container}")
                    self.s3_client.delete_objects(
                        Bucket=container,
                        Delete={"Objects": [{"Key": item["Key"]} for item in contents]},
                    )

            self.s3_client.delete_bucket(Bucket=container)
            logger.info(f"Deleted S3 bucket {container}")

        except ClientError as e:
            if client_error_code(e) == "NoSuchBucket":
                return
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=container, operation="delete_container", aws_service="s3"),
                message="Failed to remove S3 bucket",
            ) from e
        except BotoCoreError as e:
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=container, operation="delete_container", aws_service="s3"),
                message="Failed to remove S3 bucket",
            ) from e

    def put(self, container: str, key: str, body: bytes, content_type: str) -> str:
        """Upload an object and return its location.

        Raises:
            StagingError: If the upload fails
        """
        try:
            self.s3_client.put_object(
                Bucket=container,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=container, key=key, operation="put", aws_service="s3"),
                message=f"Failed to upload {key}",
            ) from e

        location = self.location(container, key)
        logger.debug(f"Uploaded {len(body)} bytes to {location}")
        return location

    def delete(self, container: str, key: str) -> None:
        """Delete an object. Deleting a missing key succeeds.

        Raises:
            StagingError: If the delete call fails
        """
        try:
            self.s3_client.delete_object(Bucket=container, Key=key)
        except ClientError as e:
            if client_error_code(e) in ("NoSuchKey", "NoSuchBucket"):
                return
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=container, key=key, operation="delete", aws_service="s3"),
                message="Failed to remove S3 item",
            ) from e
        except BotoCoreError as e:
            raise error_handler.wrap(
                e,
                StagingError,
                ErrorContext(container=container, key=key, operation="delete", aws_service="s3"),
                message="Failed to remove S3 item",
            ) from e

    def location(self, container: str, key: str) -> str:
        """Path-style HTTPS URL of an object, as CloudFormation expects."""
        endpoint = self.s3_client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{container}/{key}"
