"""Update workflow orchestration."""

import asyncio
import logging
import shutil
from dataclasses import dataclass

from .addons.allow_plugins import AllowPlugins
from .addons.code_beautifier import CodeBeautifier
from .addons.deprecations import DeprecationsRemover
from .addons.normalizer import ComposerNormalizer
from .addons.patches import PatchReconciler
from .addons.translations import TranslationsUpdater
from .codehosting import DRUPALCODE_URL, GitLab, Platform, create_platform
from .composer import Composer
from .config import Config
from .drush import Drush
from .errors import CommandError, DependencyUpdateError
from .events import (
    Addon,
    EventDispatcher,
    PostDependencyUpdateEvent,
    PreDependencyUpdateEvent,
    PreReportCreateEvent,
)
from .installer import SiteInstaller
from .issues import DrupalOrgClient
from .models import MergeRequest, WorkflowUpdateResult
from .phpcs import Phpcs
from .pipeline import SiteUpdatePipeline
from .rector import Rector
from .repo import Repository, clone_repository, project_dir
from .settings import SiteSettings
from .strategy import MaintenanceStrategy, SecurityStrategy, WorkflowStrategy

logger = logging.getLogger(__name__)

COMPOSER_FILES = ["composer.json", "composer.lock"]


@dataclass
class UpdatedCode:
    """State handed from the dependency update to the site update."""

    repository: Repository
    branch: str
    result: WorkflowUpdateResult


def build_addons(
    config: Config,
    composer: Composer,
    drush: Drush,
    upstream: GitLab | None = None,
) -> list[Addon]:
    """Addons for a run, in registration order."""
    addons: list[Addon] = [
        PatchReconciler(composer, DrupalOrgClient(), upstream),
        AllowPlugins(composer),
    ]
    if not config.skip_cbf:
        addons.append(CodeBeautifier(composer, Phpcs()))
    if not config.skip_rector:
        addons.append(DeprecationsRemover(composer, Rector(script_dir=config.script_dir)))
    addons.append(ComposerNormalizer(composer))
    addons.append(TranslationsUpdater(drush))
    return addons


class UpdateWorkflow:
    """Drives one update run from clone to merge request.

    The dependency update and the installation of the sites run
    concurrently; the sites are updated once both have finished.
    """

    def __init__(
        self,
        config: Config,
        strategy: WorkflowStrategy,
        addons: list[Addon],
        composer: Composer,
        platform: Platform,
        installer: SiteInstaller,
        pipeline: SiteUpdatePipeline,
        dispatcher: EventDispatcher,
    ):
        self.config = config
        self.strategy = strategy
        self.addons = addons
        self.composer = composer
        self.platform = platform
        self.installer = installer
        self.pipeline = pipeline
        self.dispatcher = dispatcher

    @classmethod
    def from_config(cls, config: Config) -> "UpdateWorkflow":
        """Wire up the workflow and its collaborators for a config."""
        composer = Composer()
        drush = Drush(script_dir=config.script_dir)
        settings = SiteSettings(composer, drush)
        upstream = GitLab(DRUPALCODE_URL, config.drupalcode_token) if config.drupalcode_token else None

        strategy: WorkflowStrategy = SecurityStrategy(composer) if config.security else MaintenanceStrategy()
        addons = build_addons(config, composer, drush, upstream)
        dispatcher = EventDispatcher(addons)

        return cls(
            config=config,
            strategy=strategy,
            addons=addons,
            composer=composer,
            platform=create_platform(config.repository_url, config.token),
            installer=SiteInstaller(composer, drush, settings, config.work_dir, config.max_parallel),
            pipeline=SiteUpdatePipeline(settings, drush, dispatcher, config.max_parallel),
            dispatcher=dispatcher,
        )

    async def run(self) -> MergeRequest | None:
        """Run the update.

        Returns:
            The merge request, or None when there was nothing to do or in a dry run
        """
        logger.info(
            "Starting %s update of %s (%s)", self.strategy.name, self.config.repository_url, self.config.branch
        )
        author = await self.platform.get_user()

        update = asyncio.create_task(self.update_code(author))
        install = asyncio.create_task(
            self.installer.install(
                self.config.repository_url, self.config.branch, self.config.token, self.config.sites, author
            )
        )
        try:
            updated = await self._wait_for_code(update, install)
            if updated is None:
                return None
            return await self.update_sites(updated)
        finally:
            await self._cancel(update, install)
            self.composer.close()
            shutil.rmtree(project_dir(self.config.repository_url, self.config.work_dir), ignore_errors=True)

    async def update_code(self, author: tuple[str, str] | None = None) -> UpdatedCode | None:
        """Clone, update dependencies and create the update branch.

        Returns:
            The updated code, or None when the run should end without changes
        """
        repository = await clone_repository(
            self.config.repository_url, self.config.branch, self.config.token, self.config.work_dir, author
        )
        path = str(repository.path)
        worktree = repository.worktree

        packages, minimal_changes = await self.strategy.pre_update(path)
        if not self.strategy.should_continue(packages):
            return None

        pre = await self.dispatcher.dispatch(
            PreDependencyUpdateEvent(
                path, worktree, packages_to_update=packages, minimal_changes=minimal_changes
            )
        )
        if pre.abort:
            logger.info("Update aborted by an addon")
            return None

        logger.info("Updating dependencies")
        try:
            changes = await self.composer.update(
                path, pre.packages_to_update, pre.packages_to_keep, pre.minimal_changes, dry_run=False
            )
        except CommandError as e:
            raise DependencyUpdateError(f"composer update failed: {e}") from e

        if not changes and not pre.patch_updates.changes():
            logger.info("No packages were updated")
            return None

        await self.dispatcher.dispatch(PostDependencyUpdateEvent(path, worktree, changes=changes))
        await worktree.commit_paths(COMPOSER_FILES, "Update composer.json and composer.lock")

        branch = self.strategy.branch_name(self.composer.get_lock_hash(path))
        if await repository.branch_exists(branch):
            logger.info("Branch %s already exists, nothing to do", branch)
            return None
        await worktree.checkout(branch, create=True)

        return UpdatedCode(repository, branch, WorkflowUpdateResult(changes, pre.patch_updates))

    async def update_sites(self, updated: UpdatedCode) -> MergeRequest | None:
        """Update the sites, describe the changes and open the merge request."""
        path = str(updated.repository.path)
        worktree = updated.repository.worktree

        hooks = await self.pipeline.run(path, worktree, self.config.sites)
        await self.strategy.post_update(path)

        event = await self.dispatcher.dispatch(
            PreReportCreateEvent(path, worktree, title=self.strategy.title())
        )
        description = self.strategy.describe(
            updated.result, hooks, [addon.render_report() for addon in self.addons]
        )

        if self.config.dry_run:
            logger.info("Dry run, not pushing %s", updated.branch)
            logger.info("%s\n\n%s", event.title, description)
            return None

        await updated.repository.push(updated.branch)
        merge_request = await self.platform.create_merge_request(
            event.title, description, updated.branch, self.config.branch
        )
        logger.info("Created merge request %s", merge_request.url)
        if self.config.auto_merge:
            logger.warning("Auto-merge is not supported, merge request %s stays open", merge_request.url)
        return merge_request

    @staticmethod
    async def _wait_for_code(update: asyncio.Task, install: asyncio.Task) -> UpdatedCode | None:
        pending = {update, install}
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                # Re-raises the first failure; the caller cancels the other task
                task.result()
            if update in done and update.result() is None:
                return None
        return update.result()

    @staticmethod
    async def _cancel(*tasks: asyncio.Task) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
