"""Publisher configuration via Pydantic Settings.

All configuration is loaded from environment variables (or a local ``.env``)
once per invocation and never mutated afterwards.
"""

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from blog_publisher.lib.publisher.errors import ConfigError


class PublishTarget(StrEnum):
    """Environment a publish is aimed at."""

    PROD = "prod"
    STG = "stg"


@dataclass(frozen=True)
class TargetLocation:
    """Effective bucket, prefix, and CDN distribution for one target."""

    target: PublishTarget
    bucket: str | None
    prefix: str
    distribution_id: str | None


def _env(name: str) -> AliasChoices:
    return AliasChoices(f"publisher_{name}")


class PublisherSettings(BaseSettings):
    """Publisher settings loaded from ``PUBLISHER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # AWS
    region: str = Field(
        default="",
        validation_alias=_env("aws_region"),
        description="AWS region for S3, CloudFront, and CodeBuild clients",
    )

    # Source bucket (markdown + images)
    source_bucket: str | None = Field(
        default=None,
        validation_alias=_env("source_bucket"),
        description="Bucket receiving post markdown and images",
    )
    posts_prefix: str = Field(default="posts", validation_alias=_env("posts_prefix"))
    images_prefix: str = Field(default="images", validation_alias=_env("images_prefix"))

    # Site buckets
    prod_bucket: str | None = Field(default=None, validation_alias=_env("prod_bucket"))
    prod_prefix: str | None = Field(default=None, validation_alias=_env("prod_prefix"))
    stg_bucket: str | None = Field(default=None, validation_alias=_env("stg_bucket"))
    stg_prefix: str | None = Field(default=None, validation_alias=_env("stg_prefix"))

    # CloudFront
    prod_cloudfront_distribution_id: str | None = Field(
        default=None,
        validation_alias=_env("prod_cloudfront_distribution_id"),
    )
    stg_cloudfront_distribution_id: str | None = Field(
        default=None,
        validation_alias=_env("stg_cloudfront_distribution_id"),
    )
    cloudfront_distribution_id: str | None = Field(
        default=None,
        validation_alias=_env("cloudfront_distribution_id"),
        description="Fallback distribution when no per-target id is set",
    )

    # Build
    codebuild_project: str | None = Field(
        default=None,
        validation_alias=_env("codebuild_project"),
        description="CodeBuild project started when local build is disabled",
    )
    local_build: bool = Field(
        default=False,
        validation_alias=_env("local_build"),
        description="Build the site locally and sync it to the target bucket",
    )
    blog_next_dir: str | None = Field(
        default=None,
        validation_alias=_env("blog_next_dir"),
        description="Static site project directory (default: ../blog-next)",
    )
    artifact_dir: str | None = Field(
        default=None,
        validation_alias=_env("artifact_dir"),
        description="Build output directory (default: <blog_next_dir>/out)",
    )
    snapshot_root: str | None = Field(
        default=None,
        validation_alias=_env("snapshot_root"),
        description="Directory holding one snapshot per run (default: <blog_next_dir>/../S3log)",
    )
    transfer_workers: int = Field(
        default=8,
        validation_alias=_env("transfer_workers"),
        description="Parallel transfers per phase",
        gt=0,
        le=64,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("log_level", "publisher_log_level"),
    )
    log_dir: str | None = Field(
        default=None,
        validation_alias=AliasChoices("log_dir", "publisher_log_dir"),
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    @field_validator(
        "source_bucket",
        "prod_bucket",
        "prod_prefix",
        "stg_bucket",
        "stg_prefix",
        "prod_cloudfront_distribution_id",
        "stg_cloudfront_distribution_id",
        "cloudfront_distribution_id",
        "codebuild_project",
        "blog_next_dir",
        "artifact_dir",
        "snapshot_root",
        "log_dir",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("region", "posts_prefix", "images_prefix", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("local_build", mode="before")
    @classmethod
    def parse_flag(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "on")
        return v

    @property
    def blog_dir(self) -> Path:
        """Resolved static site project directory."""
        if self.blog_next_dir:
            return Path(self.blog_next_dir).resolve()
        return (Path.cwd() / ".." / "blog-next").resolve()

    @property
    def artifact_path(self) -> Path:
        """Resolved build output directory."""
        if self.artifact_dir:
            return Path(self.artifact_dir).resolve()
        return self.blog_dir / "out"

    @property
    def snapshot_path(self) -> Path:
        """Resolved root under which per-run snapshot directories are created."""
        if self.snapshot_root:
            return Path(self.snapshot_root).resolve()
        return self.blog_dir.parent / "S3log"

    def resolve_target(self, target: PublishTarget | str = PublishTarget.PROD) -> TargetLocation:
        """Return the effective bucket/prefix/distribution for a target.

        Raises:
            ConfigError: If the staging target is requested without a staging bucket.
        """
        target = PublishTarget(target)
        if target is PublishTarget.PROD:
            return TargetLocation(
                target=target,
                bucket=self.prod_bucket,
                prefix=self.prod_prefix or "",
                distribution_id=self.prod_cloudfront_distribution_id or self.cloudfront_distribution_id,
            )
        if not self.stg_bucket:
            raise ConfigError("PUBLISHER_STG_BUCKET is required for stg sync.", setting="PUBLISHER_STG_BUCKET")
        return TargetLocation(
            target=target,
            bucket=self.stg_bucket,
            prefix=self.stg_prefix or "",
            distribution_id=self.stg_cloudfront_distribution_id or self.cloudfront_distribution_id,
        )

    def require_region(self) -> str:
        """Return the region or raise ConfigError when unset."""
        if not self.region:
            raise ConfigError("PUBLISHER_AWS_REGION is required.", setting="PUBLISHER_AWS_REGION")
        return self.region


def require_bucket(location: TargetLocation, operation: str) -> str:
    """Return the target bucket or raise ConfigError naming the operation."""
    if not location.bucket:
        name = f"PUBLISHER_{location.target.value.upper()}_BUCKET"
        raise ConfigError(f"{name} is required for {operation}.", setting=name)
    return location.bucket


def get_settings() -> PublisherSettings:
    """Create and return publisher settings."""
    return PublisherSettings()
