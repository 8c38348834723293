import logging

from botocore.exceptions import BotoCoreError, ClientError
from common import (
    STORE, MAX_BULK_DELETE, StorageError, BadRequest, make_response, error_response,
    preflight_response, get_http_method, parse_body, verify_jwt_from_event,
)

logger = logging.getLogger(__name__)


def remove_product_images(store, product_id, image_urls):
    """
    Best-effort cleanup of a deleted product's images. Failures are logged
    and never reach the caller; the product row is already gone.
    """
    keys = []
    for url in image_urls:
        key = store.object_key_from_url(url)
        if key:
            keys.append(key)
        else:
            logger.warning("Skipping image location outside bucket %s for product %s: %s",
                           store.bucket_name, product_id, url)

    for start in range(0, len(keys), MAX_BULK_DELETE):
        batch = keys[start:start + MAX_BULK_DELETE]
        try:
            store.remove_objects(batch)
        except StorageError as e:
            logger.error("Storage deletion failed for product %s (keys=%s): %s %s",
                         product_id, batch, e.message, e.errors)
        except (ClientError, BotoCoreError) as e:
            logger.error("Storage deletion failed for product %s (keys=%s): %s", product_id, batch, e)


def lambda_handler(event, context, store=None):
    """
    Deletes a product owned by the caller, then its images.

    Body: {"productId": "..."}
    Responses:
        200 product deleted (image cleanup is best-effort)
        400 missing productId, bad body, or a failed lookup/delete
        401 missing or invalid token
        403 caller is not the product's seller
        404 product not found
    """
    if get_http_method(event) == "OPTIONS":
        return preflight_response()

    store = store or STORE

    try:
        try:
            body = parse_body(event)
        except BadRequest as e:
            return error_response(400, str(e))

        product_id = body.get("productId")
        if not product_id:
            return error_response(400, "Product ID is required.")
        if not isinstance(product_id, str):
            return error_response(400, "Product ID must be a string.")

        user_id, error = verify_jwt_from_event(event)
        if error:
            logger.warning("Auth error: %s", error)
            return error_response(401, "User not authenticated.")

        product = store.get_product(product_id)
        if not product:
            return error_response(404, "Product not found.")

        if product.get("seller_id") != user_id:
            logger.warning("User %s denied delete of product %s", user_id, product_id)
            return error_response(403, "Permission denied. You are not the owner of this product.")

        store.delete_product(product_id)
        logger.info("Product %s deleted by %s", product_id, user_id)

        image_urls = product.get("image_urls") or []
        if image_urls:
            remove_product_images(store, product_id, list(image_urls))

        return make_response(200, {"message": "Product deleted successfully"})

    except ClientError as e:
        logger.error("Product delete failed: %s", e)
        return error_response(400, e.response.get("Error", {}).get("Message") or str(e))
    except Exception as e:
        logger.exception("Unexpected error deleting product")
        return error_response(400, str(e))
