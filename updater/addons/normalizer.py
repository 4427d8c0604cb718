"""Runs composer normalize after the update when the project uses it."""

import logging

from ..composer import Composer
from ..errors import CommandError
from ..events import POST_DEPENDENCY_UPDATE, PRIORITY_MIN, Addon, PostDependencyUpdateEvent, Subscription

logger = logging.getLogger(__name__)

NORMALIZE_PACKAGE = "ergebnis/composer-normalize"


class ComposerNormalizer(Addon):
    def __init__(self, composer: Composer):
        self.composer = composer

    def subscriptions(self) -> dict[str, Subscription]:
        return {POST_DEPENDENCY_UPDATE: Subscription(self.on_post_dependency_update, PRIORITY_MIN)}

    async def on_post_dependency_update(self, event: PostDependencyUpdateEvent) -> None:
        if not await self.composer.is_package_installed(event.path, NORMALIZE_PACKAGE):
            logger.debug("%s is not installed, skipping normalization", NORMALIZE_PACKAGE)
            return
        try:
            await self.composer.normalize(event.path)
        except CommandError as e:
            logger.warning("composer normalize failed: %s", e)
