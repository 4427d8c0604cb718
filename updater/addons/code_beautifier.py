"""Fixes coding standard violations in custom code with PHPCBF."""

import logging
from pathlib import Path

from ..composer import Composer
from ..events import POST_DEPENDENCY_UPDATE, Addon, PostDependencyUpdateEvent, Subscription
from ..phpcs import Phpcs

logger = logging.getLogger(__name__)

CODER_PACKAGE = "drupal/coder"
CONFIG_FILES = ("phpcs.xml", "phpcs.xml.dist", ".phpcs.xml", ".phpcs.xml.dist")

PHPCS_CONFIG_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<ruleset name="drupal">
  <description>PHP CodeSniffer configuration for the Drupal project.</description>
{files}
  <arg name="extensions" value="php,module,inc,install,test,profile,theme,info,txt,md,yml"/>
  <config name="drupal_core_version" value="{core_version}"/>
  <rule ref="Drupal"/>
  <rule ref="DrupalPractice"/>
</ruleset>
"""


def render_phpcs_config(directories: list[str], core_version: str) -> str:
    files = "\n".join(f"  <file>{directory}</file>" for directory in directories)
    return PHPCS_CONFIG_TEMPLATE.format(files=files, core_version=core_version)


class CodeBeautifier(Addon):
    """Runs PHPCS on custom code and commits what PHPCBF can fix."""

    def __init__(self, composer: Composer, phpcs: Phpcs):
        self.composer = composer
        self.phpcs = phpcs

    def subscriptions(self) -> dict[str, Subscription]:
        return {POST_DEPENDENCY_UPDATE: Subscription(self.on_post_dependency_update)}

    async def on_post_dependency_update(self, event: PostDependencyUpdateEvent) -> None:
        path = Path(event.path)

        if not await self.composer.is_package_installed(event.path, CODER_PACKAGE):
            logger.info("Installing %s", CODER_PACKAGE)
            await self.composer.require(event.path, "--dev", CODER_PACKAGE)

        if not any((path / name).exists() for name in CONFIG_FILES):
            await self._write_default_config(event)

        report = await self.phpcs.run(event.path)
        if report.totals.fixable == 0:
            logger.debug("No fixable coding standard violations")
            return

        await self.phpcs.run_cbf(event.path)
        files = [self._relative(path, name) for name in report.fixable_files()]
        if files and await event.worktree.commit_paths(files, "Update coding styles"):
            logger.info("Fixed coding standards in %d files", len(files))

    async def _write_default_config(self, event: PostDependencyUpdateEvent) -> None:
        directories = await self.composer.get_custom_code_directories(event.path)
        core_version = await self.composer.get_installed_package_version(event.path, "drupal/core")
        major = core_version.lstrip("v").split(".")[0]

        (Path(event.path) / "phpcs.xml").write_text(render_phpcs_config(directories, major))
        await event.worktree.commit_paths(["phpcs.xml"], "Add PHPCS config")

    @staticmethod
    def _relative(root: Path, name: str) -> str:
        file = Path(name)
        if file.is_absolute():
            try:
                return str(file.resolve().relative_to(root.resolve()))
            except ValueError:
                return name
        return name
