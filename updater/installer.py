"""Installs the project's sites from their exported configuration."""

import asyncio
import logging
from pathlib import Path

from .composer import Composer
from .drush import Drush
from .pipeline import chunked, default_group_size
from .repo import clone_repository
from .settings import SiteSettings

logger = logging.getLogger(__name__)


class SiteInstaller:
    """Installs every site of the unmodified branch into SQLite databases.

    The databases sit next to the clone, so the clone being updated runs
    its database updates against these installed sites.
    """

    def __init__(
        self,
        composer: Composer,
        drush: Drush,
        settings: SiteSettings,
        work_dir: str | Path | None = None,
        group_size: int | None = None,
    ):
        self.composer = composer
        self.drush = drush
        self.settings = settings
        self.work_dir = work_dir
        self.group_size = group_size or default_group_size()

    async def install(
        self,
        repository_url: str,
        branch: str,
        token: str,
        sites: list[str],
        author: tuple[str, str] | None = None,
    ) -> None:
        logger.info("Cloning %s for site installation", repository_url)
        repository = await clone_repository(repository_url, branch, token, self.work_dir, author)
        path = str(repository.path)

        await self.composer.install(path)

        for group in chunked(sites, self.group_size):
            await asyncio.gather(*(self.install_site(path, site) for site in group))

    async def install_site(self, path: str, site: str) -> None:
        logger.info("Installing site %s", site)
        await self.settings.configure_database(path, site)
        await self.settings.remove_profile(path, site)
        await self.drush.install_site(path, site)
