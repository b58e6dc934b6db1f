"""Error taxonomy for the publish/sync engine.

Every error carries the context needed to diagnose it (bucket, prefix,
counts, keys) without additional logging.
"""


class PublisherError(Exception):
    """Base class for all publisher errors."""


class ConfigError(PublisherError):
    """A required setting is missing or invalid. Raised before any network call.

    Args:
        message: Human-readable error description.
        setting: Name of the offending environment variable, if known.
    """

    def __init__(self, message: str, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class NotFoundError(PublisherError):
    """A local directory or file the operation reads does not exist."""

    def __init__(self, path: object, message: str | None = None) -> None:
        self.path = path
        super().__init__(message or f"out directory not found: {path}")


class TransientStoreError(PublisherError):
    """An object store or network call failed. Not retried internally.

    Args:
        operation: Store operation that failed (list, get, put, delete).
        bucket: Bucket the call targeted.
        key: Object key or prefix involved, if any.
        message: Underlying failure description.
    """

    def __init__(self, operation: str, bucket: str, key: str | None, message: str) -> None:
        self.operation = operation
        self.bucket = bucket
        self.key = key
        target = f"s3://{bucket}/{key}" if key is not None else f"s3://{bucket}"
        super().__init__(f"{operation} failed for {target}: {message}")


class SnapshotIncompleteError(PublisherError):
    """The snapshot could not copy every object; mutation must not proceed."""

    def __init__(self, bucket: str, prefix: str, failed_keys: list[str], snapshot_dir: object = None) -> None:
        self.bucket = bucket
        self.prefix = prefix
        self.failed_keys = list(failed_keys)
        self.snapshot_dir = snapshot_dir
        super().__init__(
            f"S3 snapshot failed for {len(self.failed_keys)} objects under s3://{bucket}/{prefix}. Aborting."
        )


class DeleteIncompleteError(PublisherError):
    """Objects remain under the prefix after delete and one retry."""

    def __init__(self, bucket: str, prefix: str, remaining: list[str]) -> None:
        self.bucket = bucket
        self.prefix = prefix
        self.remaining = list(remaining)
        super().__init__(
            f'S3 delete incomplete: {len(self.remaining)} objects still remain under prefix "{prefix}" '
            f"in bucket {bucket}."
        )


class InvalidationError(PublisherError):
    """The CDN rejected or failed an invalidation request."""

    def __init__(self, distribution_id: str, paths: list[str], message: str) -> None:
        self.distribution_id = distribution_id
        self.paths = list(paths)
        super().__init__(f"Invalidation of {paths} on {distribution_id} failed: {message}")


class BuildError(PublisherError):
    """The external site build step failed."""

    def __init__(self, command: list[str], reason: str) -> None:
        self.command = list(command)
        self.reason = reason
        super().__init__(f"{' '.join(command)} failed with {reason}")
