"""Concurrent per-site update pipeline."""

import asyncio
import logging
import os
from collections.abc import Iterator

from .drush import Drush
from .errors import SiteUpdateError
from .events import EventDispatcher, PostSiteUpdateEvent, PreSiteUpdateEvent
from .models import SiteUpdateResult, UpdateHook, UpdateHooksPerSite
from .repo import Worktree
from .settings import SiteSettings

logger = logging.getLogger(__name__)


def default_group_size() -> int:
    """Sites processed at once; one CPU stays free for everything else."""
    return max(1, (os.cpu_count() or 1) - 1)


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SiteUpdatePipeline:
    """Runs database updates and config export for every site.

    Sites are processed in groups; a group must finish completely before the
    next one starts, and the first failure stops the pipeline.
    """

    def __init__(
        self,
        settings: SiteSettings,
        drush: Drush,
        dispatcher: EventDispatcher,
        group_size: int | None = None,
    ):
        self.settings = settings
        self.drush = drush
        self.dispatcher = dispatcher
        self.group_size = group_size or default_group_size()

    async def run(self, path: str, worktree: Worktree, sites: list[str]) -> UpdateHooksPerSite:
        """Update every site.

        Args:
            path: Project directory
            worktree: Working tree configuration commits go to
            sites: Site names

        Returns:
            Upgrade hooks per site, for sites that had any
        """
        hooks: UpdateHooksPerSite = {}

        for group in chunked(sites, self.group_size):
            results: asyncio.Queue[SiteUpdateResult] = asyncio.Queue(maxsize=len(group))
            await asyncio.gather(*(self._update_into(results, path, worktree, site) for site in group))

            collected: dict[str, SiteUpdateResult] = {}
            while not results.empty():
                result = results.get_nowait()
                collected[result.site] = result

            for site in group:
                result = collected[site]
                if result.error is not None:
                    raise SiteUpdateError(site, result.error) from result.error

            for site in group:
                if collected[site].discovered_hooks:
                    hooks[site] = collected[site].discovered_hooks

        return hooks

    async def _update_into(
        self, results: asyncio.Queue, path: str, worktree: Worktree, site: str
    ) -> None:
        try:
            discovered = await self.update_site(path, worktree, site)
            await results.put(SiteUpdateResult(site, discovered))
        except Exception as e:
            logger.error("Updating site %s failed: %s", site, e)
            await results.put(SiteUpdateResult(site, error=e))

    async def update_site(self, path: str, worktree: Worktree, site: str) -> dict[str, UpdateHook]:
        """Run the update steps for one site and commit its exported config."""
        logger.info("Updating site %s", site)

        await self.dispatcher.dispatch(PreSiteUpdateEvent(path, worktree, site))

        await self.settings.configure_database(path, site)
        hooks = await self.drush.get_update_hooks(path, site)
        await self.drush.update_site(path, site)
        await self.drush.config_resave(path, site)

        await self.dispatcher.dispatch(PostSiteUpdateEvent(path, worktree, site))

        await self.drush.export_configuration(path, site)
        sync_dir = await self.drush.get_config_sync_dir(path, site, relative=True)
        if await worktree.commit_paths([sync_dir], f"Update configuration {site}"):
            logger.info("Committed configuration changes of %s", site)

        return hooks
