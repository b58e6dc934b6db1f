"""Article CLI commands for the local build output."""

import typer

from blog_publisher.core.config import get_settings
from blog_publisher.lib.publisher.errors import PublisherError


def list_articles_command() -> None:
    """List built articles (dated folders) in the build output."""
    from blog_publisher.services.publish_service import list_out_articles

    try:
        articles = list_out_articles(get_settings())
    except PublisherError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    if not articles:
        typer.echo("No articles found.")
        return
    for article in articles:
        typer.echo(f"  {article.slug:24s}  {article.title}")
    typer.echo(f"\nTotal: {len(articles)}")


def delete_article_command(
    slug: str = typer.Argument(..., help="Article folder name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an article's build output, draft, sources, and images locally."""
    from blog_publisher.services.publish_service import delete_out_article

    if not yes:
        typer.confirm(f"Delete article {slug}?", abort=True)
    try:
        result = delete_out_article(get_settings(), slug)
    except ValueError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    for path in result.removed_paths:
        typer.echo(f"  removed {path}")
    if not result.removed_paths:
        typer.echo(f"Nothing to delete for {slug}.")
