"""Removes deprecated API usage from custom code with drupal-rector."""

import logging

from ..composer import Composer
from ..events import POST_DEPENDENCY_UPDATE, PRIORITY_LOW, Addon, PostDependencyUpdateEvent, Subscription
from ..rector import Rector

logger = logging.getLogger(__name__)

RECTOR_PACKAGE = "palantirnet/drupal-rector"


class DeprecationsRemover(Addon):
    def __init__(self, composer: Composer, rector: Rector):
        self.composer = composer
        self.rector = rector

    def subscriptions(self) -> dict[str, Subscription]:
        return {POST_DEPENDENCY_UPDATE: Subscription(self.on_post_dependency_update, PRIORITY_LOW)}

    async def on_post_dependency_update(self, event: PostDependencyUpdateEvent) -> None:
        directories = await self.composer.get_custom_code_directories(event.path)
        if not directories:
            logger.debug("No custom code to check for deprecations")
            return

        installed = await self.composer.is_package_installed(event.path, RECTOR_PACKAGE)
        if not installed:
            logger.debug("Temporarily installing %s", RECTOR_PACKAGE)
            await self.composer.require(event.path, "--dev", RECTOR_PACKAGE)

        try:
            report = await self.rector.run(event.path, directories)
        finally:
            if not installed:
                await self.composer.remove(event.path, RECTOR_PACKAGE)

        if report.totals.changed_files == 0:
            return
        if await event.worktree.commit_paths(report.changed_files, "Remove deprecations"):
            logger.info("Removed deprecations in %d files", report.totals.changed_files)
