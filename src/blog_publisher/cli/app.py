"""Typer CLI root application."""

import typer

from blog_publisher.core.config import get_settings
from blog_publisher.core.logging import setup_logging

app = typer.Typer(name="blog-publisher", help="Static blog publish and S3 sync CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


def _register_subcommands() -> None:
    """Register all CLI commands."""
    from blog_publisher.cli.articles_cmd import delete_article_command, list_articles_command
    from blog_publisher.cli.publish_cmd import (
        check_state_command,
        diff_command,
        download_prefix_command,
        preview_command,
        publish_command,
        resume_command,
        sync_command,
    )

    app.command("preview")(preview_command)
    app.command("publish")(publish_command)
    app.command("sync")(sync_command)
    app.command("resume")(resume_command)
    app.command("check-state")(check_state_command)
    app.command("download-prefix")(download_prefix_command)
    app.command("diff")(diff_command)
    app.command("list-articles")(list_articles_command)
    app.command("delete-article")(delete_article_command)


_register_subcommands()
