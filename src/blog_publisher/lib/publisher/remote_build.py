"""Remote site build trigger (AWS CodeBuild)."""

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from blog_publisher.lib.publisher.errors import BuildError


def create_codebuild_client(region: str) -> Any:
    """Create a boto3 CodeBuild client."""
    return boto3.client("codebuild", region_name=region)


def build_environment(
    slug: str,
    *,
    source_bucket: str | None = None,
    posts_prefix: str = "posts",
    images_prefix: str = "images",
    prod_bucket: str | None = None,
    prod_prefix: str | None = None,
    distribution_id: str | None = None,
) -> list[dict[str, str]]:
    """Build the ``environmentVariablesOverride`` list for a remote build."""
    variables = {"BLOG_SLUG": slug}
    if source_bucket:
        variables.update(
            {
                "SOURCE_BUCKET": source_bucket,
                "SOURCE_POSTS_PREFIX": posts_prefix,
                "SOURCE_IMAGES_PREFIX": images_prefix,
            }
        )
    if prod_bucket:
        variables["PROD_BUCKET"] = prod_bucket
    if prod_prefix:
        variables["PROD_PREFIX"] = prod_prefix
    if distribution_id:
        variables["CLOUDFRONT_DISTRIBUTION_ID"] = distribution_id
    return [{"name": name, "value": value, "type": "PLAINTEXT"} for name, value in variables.items()]


def start_remote_build(client: Any, project: str, environment: list[dict[str, str]]) -> str:
    """Start a CodeBuild run and return its build id.

    Raises:
        BuildError: If CodeBuild rejects the request.
    """
    try:
        response = client.start_build(projectName=project, environmentVariablesOverride=environment)
    except (ClientError, BotoCoreError) as exc:
        raise BuildError(["codebuild", "start-build", project], str(exc)) from exc
    build_id = response["build"]["id"]
    logger.info("Started CodeBuild {} ({})", project, build_id)
    return build_id
