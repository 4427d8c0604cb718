"""Run configuration and logging setup."""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from rich.console import Console
from rich.logging import RichHandler

DRUPALCODE_TOKEN_ENV = "DRUPALCODE_ACCESS_TOKEN"


class Config(BaseModel):
    """Settings for a single update run."""

    repository_url: str
    token: str
    branch: str = "main"
    sites: list[str] = Field(default_factory=lambda: ["default"])
    security: bool = False
    skip_cbf: bool = False
    skip_rector: bool = False
    dry_run: bool = False
    verbose: bool = False
    auto_merge: bool = False
    drupalcode_token: str | None = None
    work_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    script_dir: Path = Path("/opt/drupdater")
    max_parallel: int | None = Field(default=None, ge=1)

    @field_validator("repository_url", "token", "branch")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("sites")
    @classmethod
    def _valid_sites(cls, value: list[str]) -> list[str]:
        sites = [site.strip() for site in value if site.strip()]
        if not sites:
            raise ValueError("at least one site is required")
        if len(set(sites)) != len(sites):
            raise ValueError("site names must be unique")
        return sites

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        """Build a config, taking the drupal.org GitLab token from the environment."""
        values = dict(overrides)
        if not values.get("drupalcode_token"):
            values["drupalcode_token"] = os.environ.get(DRUPALCODE_TOKEN_ENV) or None
        return cls(**values)


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route log records through rich.

    Args:
        verbose: Log at DEBUG instead of INFO
        console: Console to write to, stderr by default
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # HTTP client chatter only when asked for
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
