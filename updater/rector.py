"""Rector runner for removing deprecated API usage."""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from .errors import CommandError
from .process import run

logger = logging.getLogger(__name__)


class RectorTotals(BaseModel):
    changed_files: int = 0
    errors: int = 0


class RectorFileDiff(BaseModel):
    file: str
    diff: str = ""
    applied_rectors: list[str] = Field(default_factory=list)


class RectorReport(BaseModel):
    """JSON output of `rector process`."""

    totals: RectorTotals = Field(default_factory=RectorTotals)
    file_diffs: list[RectorFileDiff] = Field(default_factory=list)
    changed_files: list[str] = Field(default_factory=list)


class Rector:
    """Runs rector with the drupal-rector configuration."""

    def __init__(
        self,
        composer_executable: str = "composer",
        script_dir: str | Path = "/opt/drupdater",
        timeout: float | None = None,
    ):
        self.composer_executable = composer_executable
        self.config_file = Path(script_dir) / "rector.php"
        self.timeout = timeout

    async def run(self, dir: str | Path, directories: list[str]) -> RectorReport:
        """Process the given directories and report what changed."""
        logger.debug("Running rector on %s", ", ".join(directories))
        cmd = [
            self.composer_executable, "exec", "--", "rector", "process",
            f"--config={self.config_file}",
            "--no-progress-bar", "--no-diffs", "--debug",
            "--output-format=json",
            *directories,
        ]
        code, out, err = await run(cmd, cwd=dir, timeout=self.timeout)
        if code != 0:
            raise CommandError(cmd, code, err or out)

        # --debug output precedes the JSON document
        lines = out.splitlines()
        start = next((i for i, line in enumerate(lines) if line.startswith("{")), None)
        if start is None:
            return RectorReport()
        try:
            return RectorReport.model_validate(json.loads("\n".join(lines[start:])))
        except json.JSONDecodeError as e:
            raise CommandError(cmd, code, f"Invalid rector report: {e}") from e
