"""CDN cache invalidation via CloudFront."""

import time
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from blog_publisher.lib.publisher.errors import InvalidationError


class CdnInvalidator(Protocol):
    """CDN capability consumed by the orchestrator."""

    def invalidate(self, distribution_id: str, paths: list[str]) -> str:
        """Request invalidation of ``paths`` and return the invalidation id."""
        ...


def create_cloudfront_client(region: str) -> Any:
    """Create a boto3 CloudFront client."""
    return boto3.client("cloudfront", region_name=region)


class CloudFrontInvalidator:
    """boto3-backed :class:`CdnInvalidator`."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def invalidate(self, distribution_id: str, paths: list[str]) -> str:
        caller_reference = str(time.time_ns())
        try:
            response = self._client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "CallerReference": caller_reference,
                    "Paths": {"Quantity": len(paths), "Items": list(paths)},
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise InvalidationError(distribution_id, paths, str(exc)) from exc
        return response["Invalidation"]["Id"]


def invalidation_path(prefix: str) -> str:
    """Path pattern covering everything under a normalized prefix."""
    return f"/{prefix}/*" if prefix else "/*"


def invalidate_prefix(invalidator: CdnInvalidator | None, distribution_id: str | None, prefix: str) -> bool:
    """Invalidate the CDN cache for a prefix without ever raising.

    Returns:
        True when the invalidation was accepted; False when no distribution
        is configured or the request failed.
    """
    if not distribution_id or invalidator is None:
        logger.warning("CloudFront distribution id not set; skipping invalidation.")
        return False

    path = invalidation_path(prefix)
    try:
        invalidation_id = invalidator.invalidate(distribution_id, [path])
    except InvalidationError as exc:
        logger.warning("CloudFront invalidation failed: {}", exc)
        return False

    logger.info("CloudFront invalidation {} created for {} on {}", invalidation_id, path, distribution_id)
    return True
