"""Site settings used to run a site against a throwaway database."""

import logging
import os
import re
from pathlib import Path

import yaml

from .composer import Composer
from .drush import Drush
from .errors import CommandError

logger = logging.getLogger(__name__)

INSTALL_PROFILES = ["standard"]

DATABASE_SETTINGS = """
$databases['default']['default'] = [
  'database' => '{database}',
  'prefix' => '',
  'driver' => 'sqlite',
  'namespace' => 'Drupal\\\\sqlite\\\\Driver\\\\Database\\\\sqlite',
  'autoload' => 'core/modules/sqlite/src/Driver/Database/sqlite/',
];
$settings['skip_permissions_hardening'] = TRUE;
$settings['file_private_path'] = '{private_dir}';
$settings['hash_salt'] = 'changeme';
"""

EXCLUDE_SQLITE_SETTINGS = """
if (isset($settings['config_exclude_modules'])) {
  $settings['config_exclude_modules'][] = 'sqlite';
}
else {
  $settings['config_exclude_modules'] = ['sqlite'];
}
"""


class SiteSettings:
    """Edits settings.php and core.extension.yml of a site."""

    def __init__(self, composer: Composer, drush: Drush):
        self.composer = composer
        self.drush = drush

    async def configure_database(self, dir: str | Path, site: str) -> None:
        """Point a site at an SQLite database shared by all clones of the project.

        The database and private files live next to the clone so the clone
        used for installation and the clone being updated see the same site.
        """
        project_root = Path(dir).resolve()
        database = project_root.parent / f"{site}.sqlite"
        private_dir = project_root.parent / "private" / site

        settings = DATABASE_SETTINGS.format(database=database, private_dir=private_dir)
        if not await self.is_sqlite_module_enabled(dir, site):
            logger.debug("Enabling sqlite module for %s", site)
            await self.add_sqlite_module(dir, site)
            settings += EXCLUDE_SQLITE_SETTINGS

        settings_path = project_root / await self._web_root(dir) / "sites" / site / "settings.php"
        logger.debug("Writing database settings to %s", settings_path)
        with settings_path.open("a") as f:
            f.write(settings)

    async def is_sqlite_module_enabled(self, dir: str | Path, site: str) -> bool:
        extensions = self._read_extensions(await self._core_extension_path(dir, site))
        return (extensions.get("module") or {}).get("sqlite") == 0

    async def add_sqlite_module(self, dir: str | Path, site: str) -> None:
        path = await self._core_extension_path(dir, site)
        extensions = self._read_extensions(path)
        extensions.setdefault("module", {})
        if extensions["module"] is None:
            extensions["module"] = {}
        extensions["module"]["sqlite"] = 0
        path.write_text(yaml.safe_dump(extensions, sort_keys=False))

    async def remove_profile(self, dir: str | Path, site: str) -> None:
        """Drop install profile lines so the site installs from existing config."""
        path = await self._core_extension_path(dir, site)
        names = "|".join(re.escape(profile) for profile in INSTALL_PROFILES)
        pattern = re.compile(rf"^\s*(?:profile:\s*(?:{names})\s*$|(?:{names}):)")
        lines = path.read_text().splitlines(keepends=True)
        kept = [line for line in lines if not pattern.match(line)]
        path.write_text("".join(kept))

    async def _core_extension_path(self, dir: str | Path, site: str) -> Path:
        sync_dir = await self.drush.get_config_sync_dir(dir, site)
        if not os.path.isabs(sync_dir):
            sync_dir = os.path.join(dir, sync_dir)
        return Path(sync_dir) / "core.extension.yml"

    async def _web_root(self, dir: str | Path) -> str:
        try:
            web_root = await self.composer.get_config(dir, "extra.drupal-scaffold.locations.web-root")
        except CommandError:
            logger.debug("No web root configured in %s, assuming web", dir)
            return "web"
        return str(web_root).strip().strip("/") or "."

    @staticmethod
    def _read_extensions(path: Path) -> dict:
        return yaml.safe_load(path.read_text()) or {}
