"""Test configuration and fixtures."""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from nestdeploy.config.models import DeployConfig
from nestdeploy.deployment.service import DeploymentService
from nestdeploy.orchestrator.orchestrator import DeploymentOrchestrator
from nestdeploy.staging.store import ArtifactStore
from nestdeploy.template.models import Resource, Template

S3_ENDPOINT = "https://s3.us-west-2.amazonaws.com"
UPDATE_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError the way the service would raise it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"RequestId": "req-1234"},
        },
        operation,
    )


class FakePaginator:
    """list_objects_v2 paginator over a FakeS3Client bucket."""

    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket: str):
        if Bucket not in self.client.buckets:
            raise client_error("NoSuchBucket", "The specified bucket does not exist", "ListObjectsV2")
        keys = sorted(self.client.buckets[Bucket])
        yield {"Contents": [{"Key": key} for key in keys]} if keys else {}


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client."""

    def __init__(self, region: str = "us-west-2"):
        self.meta = SimpleNamespace(endpoint_url=S3_ENDPOINT, region_name=region)
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.calls: List[tuple] = []
        self.fail_create_bucket: Optional[Exception] = None
        self.fail_put_keys: Dict[str, Exception] = {}
        self.fail_delete_keys: Dict[str, Exception] = {}
        self.fail_delete_bucket: Optional[Exception] = None
        self._lock = threading.Lock()

    def _record(self, operation: str, **kwargs):
        with self._lock:
            self.calls.append((operation, kwargs))

    def calls_to(self, operation: str) -> List[dict]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def create_bucket(self, Bucket: str, **kwargs):
        self._record("create_bucket", Bucket=Bucket, **kwargs)
        if self.fail_create_bucket:
            raise self.fail_create_bucket
        self.buckets[Bucket] = {}
        return {"Location": f"/{Bucket}"}

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str):
        self._record("put_object", Bucket=Bucket, Key=Key, ContentType=ContentType)
        if Key in self.fail_put_keys:
            raise self.fail_put_keys[Key]
        with self._lock:
            self.buckets[Bucket][Key] = Body
        return {"ETag": '"etag"'}

    def delete_object(self, Bucket: str, Key: str):
        self._record("delete_object", Bucket=Bucket, Key=Key)
        if Key in self.fail_delete_keys:
            raise self.fail_delete_keys[Key]
        if Bucket not in self.buckets:
            raise client_error("NoSuchBucket", "The specified bucket does not exist", "DeleteObject")
        self.buckets[Bucket].pop(Key, None)
        return {}

    def get_paginator(self, name: str):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def delete_objects(self, Bucket: str, Delete: dict):
        self._record("delete_objects", Bucket=Bucket, Delete=Delete)
        for item in Delete["Objects"]:
            self.buckets[Bucket].pop(item["Key"], None)
        return {}

    def delete_bucket(self, Bucket: str):
        self._record("delete_bucket", Bucket=Bucket)
        if self.fail_delete_bucket:
            raise self.fail_delete_bucket
        if Bucket not in self.buckets:
            raise client_error("NoSuchBucket", "The specified bucket does not exist", "DeleteBucket")
        if self.buckets[Bucket]:
            raise client_error("BucketNotEmpty", "The bucket you tried to delete is not empty", "DeleteBucket")
        del self.buckets[Bucket]
        return {}


class FakeCloudFormationClient:
    """In-memory stand-in for the boto3 CloudFormation client.

    ``change_set_statuses`` is consumed one entry per describe_change_set
    call, the last entry repeats. ``in_progress_polls`` makes the next
    describe_stacks calls after a create or execute report an
    ``*_IN_PROGRESS`` status. ``stale_polls`` makes the next describe_stacks
    calls after an execute still report the record from before it.
    """

    def __init__(self):
        self.stacks: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.change_set_statuses: List[str] = ["CREATE_PENDING", "CREATE_COMPLETE"]
        self.change_set_reason: Optional[str] = None
        self.create_result = "CREATE_COMPLETE"
        self.update_result = "UPDATE_COMPLETE"
        self.in_progress_polls = 0
        self.stale_polls = 0
        self.updated: Dict[str, datetime] = {}
        self.fail: Dict[str, Exception] = {}
        self._pending: Dict[str, str] = {}
        self._stale: Dict[str, tuple] = {}

    def calls_to(self, operation: str) -> List[dict]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def _call(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        if operation in self.fail:
            raise self.fail[operation]

    def describe_stacks(self, StackName: str):
        self._call("describe_stacks", StackName=StackName)
        if StackName not in self.stacks:
            raise client_error(
                "ValidationError", f"Stack with id {StackName} does not exist", "DescribeStacks"
            )
        status = self.stacks[StackName]
        updated = self.updated.get(StackName)
        if self.stale_polls and StackName in self._stale:
            self.stale_polls -= 1
            status, updated = self._stale[StackName]
        elif self.in_progress_polls and StackName in self._pending:
            self.in_progress_polls -= 1
            status = self._pending[StackName]
        stack = {
            "StackId": f"arn:aws:cloudformation:us-west-2:123456789012:stack/{StackName}/abc",
            "StackName": StackName,
            "StackStatus": status,
        }
        if updated is not None:
            stack["LastUpdatedTime"] = updated
        return {"Stacks": [stack]}

    def create_stack(self, **kwargs):
        self._call("create_stack", **kwargs)
        name = kwargs["StackName"]
        self.stacks[name] = self.create_result
        self._pending[name] = "CREATE_IN_PROGRESS"
        return {"StackId": f"arn:aws:cloudformation:us-west-2:123456789012:stack/{name}/abc"}

    def create_change_set(self, **kwargs):
        self._call("create_change_set", **kwargs)
        return {
            "Id": f"arn:aws:cloudformation:us-west-2:123456789012:changeSet/"
                  f"{kwargs['ChangeSetName']}/{uuid.uuid4()}",
            "StackId": f"arn:aws:cloudformation:us-west-2:123456789012:stack/{kwargs['StackName']}/abc",
        }

    def describe_change_set(self, ChangeSetName: str, StackName: str):
        self._call("describe_change_set", ChangeSetName=ChangeSetName, StackName=StackName)
        status = self.change_set_statuses[0]
        if len(self.change_set_statuses) > 1:
            self.change_set_statuses.pop(0)
        response = {"Status": status, "ExecutionStatus": "AVAILABLE"}
        if status == "FAILED":
            response["ExecutionStatus"] = "UNAVAILABLE"
            if self.change_set_reason is not None:
                response["StatusReason"] = self.change_set_reason
        return response

    def execute_change_set(self, ChangeSetName: str, StackName: str):
        self._call("execute_change_set", ChangeSetName=ChangeSetName, StackName=StackName)
        previous = self.updated.get(StackName)
        self._stale[StackName] = (self.stacks[StackName], previous)
        self.stacks[StackName] = self.update_result
        self.updated[StackName] = (previous or UPDATE_EPOCH) + timedelta(minutes=1)
        self._pending[StackName] = "UPDATE_IN_PROGRESS"
        return {}


def make_template(*resources) -> Template:
    """Build a template from (name, type) pairs."""
    template = Template(description="test template")
    for name, type_tag in resources:
        template.add_resource(Resource(name=name, type=type_tag, properties={"Name": name}))
    return template


@pytest.fixture
def s3_client() -> FakeS3Client:
    """Create an in-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def cf_client() -> FakeCloudFormationClient:
    """Create an in-memory CloudFormation client."""
    return FakeCloudFormationClient()


@pytest.fixture
def store(s3_client) -> ArtifactStore:
    """Create an artifact store backed by the fake S3 client."""
    return ArtifactStore(s3_client, container_prefix="nestdeploy-test")


@pytest.fixture
def service(cf_client) -> DeploymentService:
    """Create a deployment service backed by the fake CloudFormation client."""
    return DeploymentService(cf_client)


@pytest.fixture
def fast_config() -> DeployConfig:
    """Configuration that polls without sleeping and does not wait on stacks."""
    return DeployConfig(
        polling={"initial_delay": 0, "max_delay": 0, "jitter": False, "max_attempts": 10},
        deployment={"wait_for_completion": False},
    )


@pytest.fixture
def orchestrator(store, service, fast_config) -> DeploymentOrchestrator:
    """Create an orchestrator wired to the fake clients."""
    return DeploymentOrchestrator(store, service, config=fast_config)


@pytest.fixture
def sample_template() -> Template:
    """Five resources, one of a hot type."""
    return make_template(
        ("Cluster", "AWS::ECS::Cluster"),
        ("Service", "AWS::ECS::Service"),
        ("Bucket", "AWS::S3::Bucket"),
        ("Role", "AWS::IAM::Role"),
        ("Queue", "AWS::SQS::Queue"),
    )
