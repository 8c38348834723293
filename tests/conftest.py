import os
import time

# must be set before the handlers import common
os.environ.pop("LOCALSTACK_URL", None)
os.environ.pop("JWT_AUDIENCE", None)
os.environ["AWS_REGION"] = "us-east-1"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["JWT_SECRET"] = "test-secret"

import boto3
import jwt
import pytest
from moto import mock_aws

from common import ResourceStore

BUCKET = "product-images"
TABLE = "Products"


def make_token(sub, secret="test-secret", ttl=900, **claims):
    now = int(time.time())
    payload = {"iat": now, "exp": now + ttl, **claims}
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, secret, algorithm="HS256")


def make_event(body, token=None, method="POST", headers=None):
    h = {"Content-Type": "application/json"}
    if token is not None:
        h["Authorization"] = f"Bearer {token}"
    h.update(headers or {})
    return {"httpMethod": method, "headers": h, "body": body}


@pytest.fixture
def aws():
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName=TABLE,
            KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=BUCKET)
        yield table, s3


@pytest.fixture
def store(aws):
    table, s3 = aws
    return ResourceStore(table, s3, BUCKET)


def object_keys(s3, bucket=BUCKET):
    return sorted(o["Key"] for o in s3.list_objects_v2(Bucket=bucket).get("Contents", []))
