import logging

from botocore.exceptions import BotoCoreError, ClientError
from common import (
    STORE, MAX_BULK_DELETE, StorageError, BadRequest, make_response, error_response,
    preflight_response, get_http_method, get_header, parse_body, bearer_token_from_event, verify_token,
)

logger = logging.getLogger(__name__)


def owned_by(path, user_id):
    # objects live under "<user_id>/..."
    return path.split("/", 1)[0] == user_id


def lambda_handler(event, context, store=None):
    """
    Deletes image objects from the product-images bucket.
    Every path must sit under the caller's own "<user_id>/" prefix,
    otherwise nothing is deleted.

    Body: {"filePaths": ["<user_id>/a.png", ...]}
    """
    if get_http_method(event) == "OPTIONS":
        return preflight_response()

    store = store or STORE

    try:
        if not get_header(event, "Authorization"):
            return error_response(401, "Authorization header required")

        user_id, error = verify_token(bearer_token_from_event(event))
        if error:
            logger.warning("Auth error: %s", error)
            return error_response(401, "Invalid authentication token")

        logger.info("Authenticated user: %s", user_id)

        try:
            body = parse_body(event)
        except BadRequest as e:
            return error_response(400, str(e))

        file_paths = body.get("filePaths")
        logger.info("Attempting to delete files: %s", file_paths)

        if not file_paths or not isinstance(file_paths, list):
            return error_response(400, "filePaths must be a non-empty array")
        if not all(isinstance(p, str) and p for p in file_paths):
            return error_response(400, "filePaths must contain only strings")
        if len(file_paths) > MAX_BULK_DELETE:
            return error_response(400, f"filePaths may contain at most {MAX_BULK_DELETE} entries")

        invalid_paths = [p for p in file_paths if not owned_by(p, user_id)]
        if invalid_paths:
            logger.error("Access denied for paths: %s", invalid_paths)
            return error_response(
                403,
                "Access denied: You can only delete your own files",
                invalidPaths=invalid_paths,
            )

        try:
            deleted = store.remove_objects(file_paths)
        except StorageError as e:
            logger.error("Storage deletion error: %s %s", e.message, e.errors)
            return error_response(500, e.message, details=e.errors)
        except ClientError as e:
            logger.error("Storage deletion error: %s", e)
            err = e.response.get("Error", {})
            return error_response(500, err.get("Message") or str(e), details=err)
        except BotoCoreError as e:
            logger.error("Storage deletion error: %s", e)
            return error_response(500, str(e), details={"type": type(e).__name__})

        logger.info("Storage deletion result: %s", deleted)

        return make_response(200, {
            "success": True,
            "deletedFiles": deleted,
            "message": f"Successfully deleted {len(deleted)} files",
        })

    except Exception as e:
        logger.exception("Unexpected error deleting files")
        return error_response(500, "Internal server error", details=str(e))
