"""Drush command adapter."""

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from .errors import CommandError
from .models import UpdateHook
from .process import run

logger = logging.getLogger(__name__)

NO_UPDATES_MESSAGE = "No database updates required"


class Drush:
    """Runs Drush through `composer exec` for a given site."""

    def __init__(
        self,
        composer_executable: str = "composer",
        script_dir: str | Path = "/opt/drupdater",
        timeout: float | None = None,
    ):
        self.composer_executable = composer_executable
        self.script_dir = Path(script_dir)
        self.timeout = timeout
        self._cache: dict[tuple[str, str, str], str] = {}

    async def _exec(self, dir: str | Path, site: str, *args: str) -> tuple[str, str]:
        cmd = [self.composer_executable, "exec", "--", "drush", *args]
        code, out, err = await run(cmd, cwd=dir, env={"SITE_NAME": site}, timeout=self.timeout)
        if code != 0:
            raise CommandError(cmd, code, err or out)
        return out, err

    async def install_site(self, dir: str | Path, site: str) -> None:
        await self._exec(dir, site, "--existing-config", "--yes", "site:install", f"--sites-subdir={site}")

    async def update_site(self, dir: str | Path, site: str) -> None:
        await self._exec(dir, site, "updatedb", "--yes", "-vvv")

    async def config_resave(self, dir: str | Path, site: str) -> None:
        """Re-save every configuration object so schema changes are written."""
        await self._exec(dir, site, "php:script", str(self.script_dir / "config-resave.php"))

    async def export_configuration(self, dir: str | Path, site: str) -> None:
        await self._exec(dir, site, "config:export", "--yes")

    async def get_config_sync_dir(self, dir: str | Path, site: str, relative: bool = False) -> str:
        """Configuration sync directory of a site.

        Args:
            dir: Project directory
            site: Site name
            relative: Return the path relative to the project directory

        Returns:
            Absolute or relative path of the sync directory
        """
        sync_dir = await self._cached_eval(
            dir,
            site,
            "print realpath(\\Drupal\\Core\\Site\\Settings::get('config_sync_directory'));",
        )
        return _relative_to(sync_dir, dir) if relative else sync_dir

    async def get_translation_path(self, dir: str | Path, site: str, relative: bool = False) -> str:
        path = await self._cached_eval(
            dir,
            site,
            "print \\Drupal::config('locale.settings')->get('translation.path');",
        )
        if relative and os.path.isabs(path):
            return _relative_to(path, dir)
        return path

    async def is_module_enabled(self, dir: str | Path, site: str, module: str) -> bool:
        out, _ = await self._exec(
            dir, site, "pm:list", "--status=enabled", "--field=name", f"--filter={module}"
        )
        return out.strip() == module

    async def localize_translations(self, dir: str | Path, site: str) -> None:
        await self._exec(dir, site, "locale-deploy:localize-translations")

    async def get_update_hooks(self, dir: str | Path, site: str) -> dict[str, UpdateHook]:
        """Pending database upgrade hooks of a site, keyed by hook name."""
        out, err = await self._exec(dir, site, "updatedb-status", "--format=json")
        if NO_UPDATES_MESSAGE in out or NO_UPDATES_MESSAGE in err or not out.strip():
            return {}

        try:
            data = json.loads(out)
        except json.JSONDecodeError as e:
            logger.error("Failed to decode upgrade hooks of %s: %s", site, e)
            raise

        # Drush prints an empty list instead of an empty object
        if not data:
            return {}
        try:
            return {name: UpdateHook.model_validate(hook) for name, hook in data.items()}
        except ValidationError as e:
            logger.error("Unexpected upgrade hook format for %s: %s", site, e)
            raise

    async def _cached_eval(self, dir: str | Path, site: str, code: str) -> str:
        key = (str(dir), site, code)
        # Check cache first
        if key not in self._cache:
            out, _ = await self._exec(dir, site, "ev", code)
            self._cache[key] = out.strip()
        return self._cache[key]


def _relative_to(path: str, dir: str | Path) -> str:
    return os.path.relpath(path, os.path.realpath(dir))
