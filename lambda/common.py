import os
import json
import base64
import binascii
import logging
from urllib.parse import urlparse, unquote

import boto3
import jwt
from requests_toolbelt.multipart import decoder

# =========================================================
# AWS CONFIGURATION (Switch between Local and Production)
# =========================================================

AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# Local endpoint for development (LocalStack). Leave unset for real AWS.
LOCALSTACK_URL = os.getenv("LOCALSTACK_URL")

PRODUCTS_TABLE_NAME = os.getenv("PRODUCTS_TABLE", "Products")
PRODUCT_IMAGES_BUCKET = os.getenv("PRODUCT_IMAGES_BUCKET", "product-images")

# S3 DeleteObjects accepts at most this many keys per call
MAX_BULK_DELETE = 1000

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logging.getLogger().setLevel(LOG_LEVEL)
logger = logging.getLogger(__name__)


def _aws_kwargs():
    kwargs = {"region_name": AWS_REGION}
    if LOCALSTACK_URL:
        kwargs["endpoint_url"] = LOCALSTACK_URL
        kwargs["aws_access_key_id"] = os.getenv("AWS_ACCESS_KEY_ID", "test")
        kwargs["aws_secret_access_key"] = os.getenv("AWS_SECRET_ACCESS_KEY", "test")
    return kwargs


# =========================================================
# RESOURCE STORE (DynamoDB products + S3 product images)
# =========================================================
class StorageError(Exception):
    """Raised when S3 reports per-object failures for a bulk delete."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ResourceStore:
    """
    Service-level access to the products table and the image bucket.
    Built once per process and shared read-only across invocations.
    """

    def __init__(self, table, s3, bucket_name=PRODUCT_IMAGES_BUCKET):
        self.table = table
        self.s3 = s3
        self.bucket_name = bucket_name

    @classmethod
    def from_env(cls):
        dynamodb = boto3.resource("dynamodb", **_aws_kwargs())
        s3 = boto3.client("s3", **_aws_kwargs())
        return cls(dynamodb.Table(PRODUCTS_TABLE_NAME), s3, PRODUCT_IMAGES_BUCKET)

    def get_product(self, product_id):
        """Fetch owner and image locations of a product, or None."""
        resp = self.table.get_item(
            Key={"id": product_id},
            ProjectionExpression="seller_id, image_urls",
        )
        return resp.get("Item")

    def delete_product(self, product_id):
        self.table.delete_item(Key={"id": product_id})

    def remove_objects(self, keys):
        """
        Delete keys from the image bucket in one DeleteObjects call.
        Returns the list of deleted keys. ClientError propagates;
        per-object failures raise StorageError.
        """
        resp = self.s3.delete_objects(
            Bucket=self.bucket_name,
            Delete={"Objects": [{"Key": k} for k in keys]},
        )
        errors = resp.get("Errors", [])
        if errors:
            raise StorageError(f"Failed to delete {len(errors)} of {len(keys)} objects", errors)
        return [d["Key"] for d in resp.get("Deleted", [])]

    def object_key_from_url(self, url):
        """
        Derive the object key from a stored image location.
        Path-style: http://host/<bucket>/<key>
        Virtual-hosted: https://<bucket>.s3.<region>.amazonaws.com/<key>
        """
        if not isinstance(url, str) or not url:
            return None
        parsed = urlparse(url)
        if parsed.netloc.startswith(f"{self.bucket_name}."):
            key = parsed.path.lstrip("/")
        else:
            path = parsed.path if parsed.path.startswith("/") else "/" + parsed.path
            marker = f"/{self.bucket_name}/"
            idx = path.find(marker)
            if idx == -1:
                return None
            key = path[idx + len(marker):]
        return unquote(key) or None


STORE = ResourceStore.from_env()

# =========================================================
# RESPONSES & UTILS
# =========================================================
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def make_response(status_code, body, headers=None):
    """Standard API Gateway Lambda proxy response."""
    if headers is None:
        headers = {"Content-Type": "application/json", "Access-Control-Allow-Origin": "*"}
    if not isinstance(body, str):
        body = json.dumps(body, default=str)
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": body,
    }


def error_response(status_code, error, **extra):
    body = {"error": error}
    body.update(extra)
    return make_response(status_code, body)


def preflight_response():
    return make_response(200, "ok", headers={**CORS_HEADERS, "Access-Control-Allow-Methods": "POST, OPTIONS"})


def get_http_method(event):
    method = event.get("httpMethod")
    if not method:
        method = ((event.get("requestContext") or {}).get("http") or {}).get("method", "")
    return method.upper()


def get_header(event, name):
    headers = event.get("headers", {}) or {}
    name = name.lower()
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


class BadRequest(Exception):
    pass


def raw_body_bytes(event):
    body = event.get("body") or ""
    if not event.get("isBase64Encoded"):
        return body.encode("utf-8")
    try:
        return base64.b64decode(body, validate=True)
    except binascii.Error as e:
        raise BadRequest(f"Request body is not valid base64: {e}")


def _part_name(content_disposition):
    # form-data; name="field"[; filename="..."]
    for param in content_disposition.split(b";")[1:]:
        key, sep, value = param.strip().partition(b"=")
        if sep and key.lower() == b"name":
            return value.strip(b'"').decode("utf-8", "replace")
    return None


def parse_form_fields(event, content_type):
    """
    Parse a multipart/form-data body into {field: text}.
    File parts and parts without a name are rejected.
    """
    if "boundary=" not in content_type.lower():
        raise BadRequest("Multipart content type has no boundary")
    try:
        multipart_data = decoder.MultipartDecoder(raw_body_bytes(event), content_type)
    except (decoder.ImproperBodyPartContentException, decoder.NonMultipartContentTypeException) as e:
        raise BadRequest(f"Malformed multipart body: {e}")

    form_data = {}
    for part in multipart_data.parts:
        content_disposition = part.headers.get(b"Content-Disposition", b"")
        if b"filename=" in content_disposition:
            raise BadRequest("File uploads are not accepted")
        name = _part_name(content_disposition)
        if not name:
            raise BadRequest("Multipart part is missing a field name")
        try:
            form_data[name] = part.content.decode("utf-8")
        except UnicodeDecodeError:
            raise BadRequest(f"Form field {name!r} is not valid UTF-8")
    return form_data


def _json_object(raw, what):
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BadRequest(f"Failed to parse JSON from {what}: {e}")
    if not isinstance(parsed, dict):
        raise BadRequest("Request body must be a JSON object")
    return parsed


def parse_body(event):
    """
    Return the request body as a dict. Accepts JSON or multipart/form-data,
    where a "body" form part carries JSON. Raises BadRequest otherwise.
    """
    content_type = get_header(event, "content-type") or ""
    if content_type.startswith("multipart/form-data"):
        body = parse_form_fields(event, content_type)
        raw_json = body.pop("body", None)
        if raw_json:
            body.update(_json_object(raw_json, "multipart form"))
        return body

    raw = raw_body_bytes(event)
    if not raw:
        return {}
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise BadRequest("Request body is not valid UTF-8")
    return _json_object(text, "request body")


# =========================================================
# AUTH CONFIG (JWT)
# =========================================================
JWT_SECRET = os.getenv("JWT_SECRET", "local-secret")  # 🔒 In prod: AWS Secrets Manager
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")  # e.g. "authenticated"


def verify_token(token):
    """
    Resolve a bearer token to the caller's user id (the "sub" claim).
    Returns (user_id, error).
    """
    if not token:
        return None, "Missing token"
    options = {"require": ["exp", "sub"]}
    try:
        if JWT_AUDIENCE:
            payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], audience=JWT_AUDIENCE, options=options)
        else:
            payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], options={**options, "verify_aud": False})
    except jwt.ExpiredSignatureError:
        return None, "Token expired"
    except jwt.InvalidTokenError:
        return None, "Invalid token"

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        return None, "Token has no subject"
    return user_id, None


def bearer_token_from_event(event):
    auth_header = get_header(event, "Authorization")
    if not auth_header:
        return None
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip()
    return auth_header.strip()


def verify_jwt_from_event(event):
    """Returns (user_id, error) for the Authorization header of an API Gateway event."""
    token = bearer_token_from_event(event)
    if token is None:
        return None, "Missing Authorization header"
    return verify_token(token)
