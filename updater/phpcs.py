"""PHP_CodeSniffer runner."""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from .errors import CommandError
from .process import run

logger = logging.getLogger(__name__)

# phpcbf exits 1 when it fixed files, 2 when some could not be fixed
PHPCBF_OK_CODES = (0, 1)


class PhpcsMessage(BaseModel):
    message: str = ""
    source: str = ""
    severity: int = 0
    fixable: bool = False
    type: str = ""
    line: int = 0
    column: int = 0


class PhpcsFile(BaseModel):
    errors: int = 0
    warnings: int = 0
    messages: list[PhpcsMessage] = Field(default_factory=list)


class PhpcsTotals(BaseModel):
    errors: int = 0
    warnings: int = 0
    fixable: int = 0


class PhpcsReport(BaseModel):
    """JSON report of a phpcs run."""

    files: dict[str, PhpcsFile] = Field(default_factory=dict)
    totals: PhpcsTotals = Field(default_factory=PhpcsTotals)

    def fixable_files(self) -> list[str]:
        """Files with at least one automatically fixable message."""
        return [
            name
            for name, file in self.files.items()
            if any(message.fixable for message in file.messages)
        ]


class Phpcs:
    """Runs phpcs and phpcbf installed in the project."""

    def __init__(self, composer_executable: str = "composer", timeout: float | None = None):
        self.composer_executable = composer_executable
        self.timeout = timeout

    async def run(self, dir: str | Path) -> PhpcsReport:
        logger.debug("Running phpcs in %s", dir)
        cmd = [
            self.composer_executable, "exec", "--", "phpcs",
            "--report=json", "-q",
            "--runtime-set", "ignore_errors_on_exit", "1",
            "--runtime-set", "ignore_warnings_on_exit", "1",
        ]
        code, out, err = await run(cmd, cwd=dir, timeout=self.timeout)
        if code != 0:
            raise CommandError(cmd, code, err or out)
        try:
            return PhpcsReport.model_validate(json.loads(out))
        except json.JSONDecodeError as e:
            raise CommandError(cmd, code, f"Invalid phpcs report: {e}") from e

    async def run_cbf(self, dir: str | Path) -> None:
        logger.debug("Running phpcbf in %s", dir)
        cmd = [self.composer_executable, "exec", "--", "phpcbf"]
        code, out, err = await run(cmd, cwd=dir, timeout=self.timeout)
        if code not in PHPCBF_OK_CODES:
            raise CommandError(cmd, code, err or out)
