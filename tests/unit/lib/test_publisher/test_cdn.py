"""Unit tests for CloudFront invalidation."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from blog_publisher.lib.publisher.cdn import CloudFrontInvalidator, invalidate_prefix, invalidation_path
from blog_publisher.lib.publisher.errors import InvalidationError


def _cloudfront_client() -> MagicMock:
    client = MagicMock()
    client.create_invalidation.return_value = {"Invalidation": {"Id": "I123", "Status": "InProgress"}}
    return client


class TestInvalidationPath:
    def test_with_prefix(self) -> None:
        assert invalidation_path("blog") == "/blog/*"

    def test_without_prefix(self) -> None:
        assert invalidation_path("") == "/*"


class TestCloudFrontInvalidator:
    """Tests for CloudFrontInvalidator."""

    def test_creates_invalidation(self) -> None:
        client = _cloudfront_client()
        invalidation_id = CloudFrontInvalidator(client).invalidate("E1", ["/blog/*"])

        assert invalidation_id == "I123"
        kwargs = client.create_invalidation.call_args.kwargs
        assert kwargs["DistributionId"] == "E1"
        assert kwargs["InvalidationBatch"]["Paths"] == {"Quantity": 1, "Items": ["/blog/*"]}
        assert kwargs["InvalidationBatch"]["CallerReference"]

    def test_client_error_is_wrapped(self) -> None:
        client = MagicMock()
        client.create_invalidation.side_effect = ClientError(
            {"Error": {"Code": "NoSuchDistribution", "Message": "missing"}}, "CreateInvalidation"
        )
        with pytest.raises(InvalidationError, match="E1"):
            CloudFrontInvalidator(client).invalidate("E1", ["/*"])


class TestInvalidatePrefix:
    """Tests for the non-raising invalidate_prefix."""

    def test_unset_distribution_never_calls(self) -> None:
        invalidator = MagicMock()
        assert invalidate_prefix(invalidator, None, "blog") is False
        invalidator.invalidate.assert_not_called()

    def test_success(self) -> None:
        client = _cloudfront_client()
        assert invalidate_prefix(CloudFrontInvalidator(client), "E1", "") is True
        assert client.create_invalidation.call_args.kwargs["InvalidationBatch"]["Paths"]["Items"] == ["/*"]

    def test_failure_is_a_flag(self) -> None:
        """Invalidation errors are reported as False, never raised."""
        invalidator = MagicMock()
        invalidator.invalidate.side_effect = InvalidationError("E1", ["/blog/*"], "throttled")
        assert invalidate_prefix(invalidator, "E1", "blog") is False
