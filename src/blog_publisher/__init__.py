"""Blog publisher: snapshot, reconcile, and sync a static site build to S3."""

__version__ = "0.1.0"
