"""Keeps Composer's plugin allowlist in step with installed plugins."""

import logging

from ..composer import Composer
from ..events import (
    POST_DEPENDENCY_UPDATE,
    PRE_DEPENDENCY_UPDATE,
    PRIORITY_HIGH,
    Addon,
    PostDependencyUpdateEvent,
    PreDependencyUpdateEvent,
    Subscription,
)
from ..report import render_allow_plugins

logger = logging.getLogger(__name__)


class AllowPlugins(Addon):
    """Allows every plugin during the update, then records new ones as disabled."""

    def __init__(self, composer: Composer):
        self.composer = composer
        self.allow_plugins: dict[str, bool] | bool = {}
        self.new_plugins: list[str] = []

    def subscriptions(self) -> dict[str, Subscription]:
        return {
            PRE_DEPENDENCY_UPDATE: Subscription(self.on_pre_dependency_update),
            POST_DEPENDENCY_UPDATE: Subscription(self.on_post_dependency_update, PRIORITY_HIGH),
        }

    def render_report(self) -> str:
        return render_allow_plugins(self.new_plugins)

    async def on_pre_dependency_update(self, event: PreDependencyUpdateEvent) -> None:
        self.allow_plugins = await self.composer.get_allow_plugins(event.path)
        await self.composer.set_config(event.path, "allow-plugins", True)

    async def on_post_dependency_update(self, event: PostDependencyUpdateEvent) -> None:
        if isinstance(self.allow_plugins, bool):
            # A blanket setting already covers new plugins
            await self.composer.set_allow_plugins(event.path, self.allow_plugins)
            return
        installed = await self.composer.get_installed_plugins(event.path)
        for plugin in sorted(installed):
            if plugin not in self.allow_plugins:
                logger.info("New Composer plugin %s added to allow-plugins as disabled", plugin)
                self.allow_plugins[plugin] = False
                self.new_plugins.append(plugin)
        await self.composer.set_allow_plugins(event.path, self.allow_plugins)
