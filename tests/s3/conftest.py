import contextlib
import os
from dataclasses import dataclass

import botocore.session
import pytest
from botocore.config import Config

from s3req import Pipeline, S3Config, S3Session

# Any S3-compatible server, e.g. MinIO: S3REQ_TEST_ENDPOINT=http://localhost:9000
S3_ENDPOINT = os.environ.get("S3REQ_TEST_ENDPOINT")
S3_ACCESS_KEY = os.environ.get("S3REQ_TEST_ACCESS_KEY", "foo")
S3_SECRET_KEY = os.environ.get("S3REQ_TEST_SECRET_KEY", "foobarbaz")
S3_REGION = os.environ.get("S3REQ_TEST_REGION", "us-east-1")

S3_BUCKET = "s3req-test"

S3_CONFIG = Config(signature_version="s3v4", s3={"addressing_style": "path"})

requires_s3 = pytest.mark.skipif(not S3_ENDPOINT, reason="Requires an S3 server (set S3REQ_TEST_ENDPOINT)")


@dataclass
class S3BackendConfig:
    """Configuration for an S3-compatible backend."""

    endpoint_url: str
    access_key: str
    secret_key: str
    region: str

    def to_config(self) -> S3Config:
        return S3Config(self.access_key, self.secret_key, self.region, self.endpoint_url)


@contextlib.contextmanager
def get_botocore_client(backend: S3BackendConfig):
    session = botocore.session.Session()
    client = session.create_client(
        "s3",
        endpoint_url=backend.endpoint_url,
        aws_secret_access_key=backend.secret_key,
        aws_access_key_id=backend.access_key,
        region_name=backend.region,
        config=S3_CONFIG,
    )
    yield client
    client.close()


def _empty_and_delete_bucket(client, bucket: str):
    try:
        objects = client.list_objects_v2(Bucket=bucket).get("Contents", [])
    except client.exceptions.NoSuchBucket:
        return
    for obj in objects:
        client.delete_object(Bucket=bucket, Key=obj["Key"])
    client.delete_bucket(Bucket=bucket)


@pytest.fixture(scope="function")
def s3_bucket():
    return S3_BUCKET


@pytest.fixture(scope="function")
def s3_backend() -> S3BackendConfig:
    if not S3_ENDPOINT:
        pytest.skip("S3REQ_TEST_ENDPOINT is not set")
    return S3BackendConfig(
        endpoint_url=S3_ENDPOINT,
        access_key=S3_ACCESS_KEY,
        secret_key=S3_SECRET_KEY,
        region=S3_REGION,
    )


@pytest.fixture(scope="function")
async def s3_client(s3_backend: S3BackendConfig):
    async with S3Session(s3_backend.to_config(), pipeline=Pipeline()) as client:
        yield client


@pytest.fixture()
def setup_bucket(s3_bucket, s3_backend: S3BackendConfig):
    """Create an empty bucket for the test and delete it afterwards."""
    with get_botocore_client(s3_backend) as client:
        _empty_and_delete_bucket(client, s3_bucket)
        client.create_bucket(Bucket=s3_bucket)

    yield

    with get_botocore_client(s3_backend) as client:
        _empty_and_delete_bucket(client, s3_bucket)
