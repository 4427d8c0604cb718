"""Commits updated interface translations of sites using locale_deploy."""

import logging

from ..drush import Drush
from ..events import POST_SITE_UPDATE, Addon, PostSiteUpdateEvent, Subscription

logger = logging.getLogger(__name__)

LOCALE_DEPLOY_MODULE = "locale_deploy"


class TranslationsUpdater(Addon):
    def __init__(self, drush: Drush):
        self.drush = drush

    def subscriptions(self) -> dict[str, Subscription]:
        return {POST_SITE_UPDATE: Subscription(self.on_post_site_update)}

    async def on_post_site_update(self, event: PostSiteUpdateEvent) -> None:
        if not await self.drush.is_module_enabled(event.path, event.site, LOCALE_DEPLOY_MODULE):
            logger.debug("%s is not enabled on %s", LOCALE_DEPLOY_MODULE, event.site)
            return

        await self.drush.localize_translations(event.path, event.site)
        translation_path = await self.drush.get_translation_path(event.path, event.site, relative=True)
        if await event.worktree.commit_paths([translation_path], "Update translations"):
            logger.info("Updated translations of %s", event.site)
        else:
            logger.debug("No translation changes for %s", event.site)
