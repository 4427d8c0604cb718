"""CLI application for the Drupal updater."""

import asyncio
import logging

import typer
from pydantic import ValidationError
from rich.console import Console

from updater.config import Config, configure_logging
from updater.errors import UpdaterError
from updater.workflow import UpdateWorkflow

console = Console()
logger = logging.getLogger(__name__)


def format_validation_error(error: ValidationError) -> str:
    """Format config validation errors one per line."""
    lines = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "config"
        lines.append(f"{field}: {item['msg']}")
    return "\n".join(lines)


app = typer.Typer(
    name="drupal-updater",
    help="Drupal Updater - Update Drupal dependencies and open a merge request",
    add_completion=False,
)


@app.command()
def update(
    repository_url: str = typer.Argument(help="Git URL of the Drupal project"),
    token: str = typer.Argument(help="Access token for the code-hosting platform"),
    branch: str = typer.Option("main", "--branch", help="Branch to update"),
    sites: list[str] = typer.Option(["default"], "--sites", help="Sites to update (repeatable)"),
    security: bool = typer.Option(False, "--security", help="Only apply security updates"),
    auto_merge: bool = typer.Option(False, "--auto-merge", help="Request auto-merge of the merge request"),
    skip_cbf: bool = typer.Option(False, "--skip-cbf", help="Skip coding standard fixes"),
    skip_rector: bool = typer.Option(False, "--skip-rector", help="Skip deprecation removal"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Update locally without pushing"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Drupal Updater - Update a Drupal project and open a merge request."""

    try:
        config = Config.from_env(
            repository_url=repository_url,
            token=token,
            branch=branch,
            sites=sites,
            security=security,
            auto_merge=auto_merge,
            skip_cbf=skip_cbf,
            skip_rector=skip_rector,
            dry_run=dry_run,
            verbose=verbose,
        )
    except ValidationError as e:
        console.print(f"Error: Invalid configuration\n{format_validation_error(e)}", style="red")
        raise typer.Exit(1)

    configure_logging(config.verbose)

    try:
        workflow = UpdateWorkflow.from_config(config)
        merge_request = asyncio.run(workflow.run())
    except UpdaterError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)

    if merge_request:
        console.print(f"Merge request created: {merge_request.url}", style="green")
    else:
        console.print("No merge request created")


if __name__ == "__main__":
    app()
