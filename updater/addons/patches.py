"""Reconciles the project's Composer patches with a pending update."""

import json
import logging
import os
import re
from pathlib import Path
from urllib.parse import urlparse

from ..codehosting import GitLab
from ..composer import Composer
from ..errors import CodeHostingError, CommandError, DependencyUpdateError, IssueTrackerError, RepositoryError
from ..events import PRE_DEPENDENCY_UPDATE, Addon, PreDependencyUpdateEvent, Subscription
from ..issues import DrupalOrgClient
from ..models import (
    ChangeAction,
    ConflictPatch,
    Issue,
    PackageChange,
    Patches,
    PatchUpdates,
    RemovedPatch,
    UpdatedPatch,
)
from ..repo import Worktree

logger = logging.getLogger(__name__)

_UNSAFE_URL_CHARS = re.compile(r"[^a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=]")


def clean_url_string(value: str) -> str:
    """Make an issue title safe to use in a file name."""
    return _UNSAFE_URL_CHARS.sub("", value.lower().replace(" ", "_"))


def is_external(locator: str) -> bool:
    """Whether a patch locator is a URL rather than a path in the project."""
    parsed = urlparse(locator)
    return bool(parsed.scheme and parsed.netloc)


class PatchReconciler(Addon):
    """Drops, replaces or flags patches that a pending update affects.

    Patches whose fix landed upstream are removed, patches that no longer
    apply are replaced with the latest diff of the issue's merge request
    when possible, and the rest are reported as conflicts while holding
    the package back at its current version.
    """

    def __init__(
        self,
        composer: Composer,
        issues: DrupalOrgClient,
        upstream: GitLab | None = None,
    ):
        """Initialize the reconciler.

        Args:
            composer: Composer adapter
            issues: drupal.org issue client
            upstream: git.drupalcode.org client, None when no token is configured
        """
        self.composer = composer
        self.issues = issues
        self.upstream = upstream
        self.patch_updates = PatchUpdates()

    def subscriptions(self) -> dict[str, Subscription]:
        return {PRE_DEPENDENCY_UPDATE: Subscription(self.on_pre_dependency_update)}

    async def on_pre_dependency_update(self, event: PreDependencyUpdateEvent) -> None:
        patches = await self._load_patches(event.path)
        if not patches:
            logger.debug("No patches configured")
            return

        changes = await self.composer.list_pending_updates(
            event.path, event.packages_to_update, event.minimal_changes
        )
        updates, new_patches = await self.reconcile(event.path, event.worktree, changes, patches)
        self.patch_updates = updates
        event.patch_updates = updates

        for conflict in updates.conflicts:
            event.packages_to_keep.append(f"{conflict.package}:{conflict.fixed_version}")

        if not updates.changes():
            return

        try:
            await self.composer.set_config(event.path, "extra.patches", new_patches)
            await self.composer.update_lock_hash(event.path)
        except CommandError as e:
            raise DependencyUpdateError(f"Failed to write patches: {e}") from e
        await event.worktree.add_glob("composer.*")
        if await event.worktree.is_something_staged_in_path("."):
            await event.worktree.commit("Update patches")
        else:
            logger.debug("Patch changes left composer files untouched, nothing to commit")

    async def reconcile(
        self,
        path: str,
        worktree: Worktree,
        changes: list[PackageChange],
        patches: Patches,
    ) -> tuple[PatchUpdates, Patches]:
        """Work out what happens to each patch under the pending changes.

        Args:
            path: Project directory
            worktree: Working tree for removing and adding patch files
            changes: Pending package changes
            patches: Current patches, package -> description -> locator

        Returns:
            Tuple of (patch updates, new patch map); the input map is not modified
        """
        patches = {package: dict(entries) for package, entries in patches.items()}
        updates = PatchUpdates()

        for package in list(patches):
            if await self.composer.is_package_installed(path, package):
                continue
            for description, locator in patches.pop(package).items():
                await self._remove_file(worktree, locator)
                updates.removed.append(
                    RemovedPatch(package, description, locator, f"{package} is not installed in the project")
                )

        for change in changes:
            entries = patches.get(change.package)
            if not entries:
                continue

            if change.action in (ChangeAction.UPGRADE, ChangeAction.DOWNGRADE):
                for description, locator in list(entries.items()):
                    await self._reconcile_patch(path, worktree, change, entries, description, locator, updates)
            elif change.action == ChangeAction.REMOVE:
                for description, locator in patches.pop(change.package).items():
                    await self._remove_file(worktree, locator)
                    updates.removed.append(
                        RemovedPatch(
                            change.package, description, locator, f"{change.package} is no longer installed"
                        )
                    )

        patches = {package: entries for package, entries in patches.items() if entries}
        return updates, patches

    async def _reconcile_patch(
        self,
        path: str,
        worktree: Worktree,
        change: PackageChange,
        entries: dict[str, str],
        description: str,
        locator: str,
        updates: PatchUpdates,
    ) -> None:
        issue = await self._find_issue(description, locator)

        if issue is not None:
            if await self._is_fixed_upstream(issue, change.to_version):
                entries.pop(description)
                await self._remove_file(worktree, locator)
                updates.removed.append(
                    RemovedPatch(
                        change.package,
                        description,
                        locator,
                        f"Issue [#{issue.id}]({issue.url}) is fixed in {change.package} {change.to_version}",
                    )
                )
                return

            normalized = f"Issue #{issue.id}: [{issue.title}]({issue.url})"
            if normalized != description and normalized not in entries:
                entries.pop(description)
                entries[normalized] = locator
                description = normalized

        if await self._applies(path, change, locator):
            logger.debug("Patch %s still applies to %s %s", locator, change.package, change.to_version)
            return

        if issue is not None:
            replacement = await self._fetch_replacement(path, issue)
            if replacement and await self._applies(path, change, replacement):
                if not is_external(locator):
                    await self._remove_file(worktree, locator)
                entries[description] = replacement
                await worktree.add(replacement)
                updates.updated.append(UpdatedPatch(change.package, description, locator, replacement))
                return
            if replacement:
                self._discard_download(path, replacement)

        updates.conflicts.append(
            ConflictPatch(change.package, description, locator, change.from_version, change.to_version)
        )

    async def _find_issue(self, description: str, locator: str) -> Issue | None:
        issue_id = self.issues.find_issue_number(description) or self.issues.find_issue_number(locator)
        if not issue_id:
            return None
        try:
            return await self.issues.get_issue(issue_id)
        except IssueTrackerError as e:
            logger.warning("Could not fetch issue %s: %s", issue_id, e)
            return None

    async def _is_fixed_upstream(self, issue: Issue, ref: str) -> bool:
        if self.upstream is None:
            logger.debug("No drupal.org GitLab token, skipping upstream commit search for #%s", issue.id)
            return False
        if not issue.is_fixed or not issue.project_machine_name:
            return False
        try:
            commits = await self.upstream.search_commits(
                f"project/{issue.project_machine_name}", issue.id, ref
            )
        except CodeHostingError as e:
            logger.warning("Commit search for #%s failed: %s", issue.id, e)
            return False
        return len(commits) > 0

    async def _applies(self, path: str, change: PackageChange, locator: str) -> bool:
        target = locator if is_external(locator) or os.path.isabs(locator) else os.path.join(path, locator)
        try:
            return await self.composer.check_patch_applies(change.package, change.to_version, target)
        except (CommandError, OSError) as e:
            logger.debug("Checking %s failed: %s", locator, e)
            return False

    async def _fetch_replacement(self, path: str, issue: Issue) -> str | None:
        """Download the issue fork's merge request diff into the project.

        Returns:
            Path of the downloaded diff relative to the project, or None
        """
        if self.upstream is None:
            logger.debug("No drupal.org GitLab token, skipping merge request lookup for #%s", issue.id)
            return None
        machine_name = issue.project_machine_name
        if not machine_name:
            return None

        try:
            fork = await self.upstream.get_project(f"issue/{machine_name}-{issue.id}")
            merge_requests = await self.upstream.find_merge_requests_by_source_project(
                f"project/{machine_name}", fork["id"]
            )
            if not merge_requests:
                logger.debug("No merge request found for #%s", issue.id)
                return None

            merge_request = merge_requests[0]
            relative = (
                f"patches/{machine_name}/{issue.id}-{merge_request['sha']}-"
                f"{clean_url_string(issue.title)}.diff"
            )
            content = await self.upstream.fetch(f"{merge_request['web_url']}.diff")
            target = Path(path) / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            return relative
        except (CodeHostingError, OSError, KeyError) as e:
            logger.warning("Could not fetch a new patch for #%s: %s", issue.id, e)
            return None

    def _discard_download(self, path: str, relative: str) -> None:
        try:
            (Path(path) / relative).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete unusable patch %s: %s", relative, e)

    async def _remove_file(self, worktree: Worktree, locator: str) -> None:
        if is_external(locator):
            return
        try:
            await worktree.remove(locator)
        except RepositoryError as e:
            logger.error("Failed to remove patch file %s: %s", locator, e)

    async def _load_patches(self, path: str) -> Patches:
        try:
            patches = await self.composer.get_config(path, "extra.patches")
        except CommandError:
            return {}
        if isinstance(patches, str):
            try:
                patches = json.loads(patches) if patches else {}
            except json.JSONDecodeError as e:
                raise DependencyUpdateError(f"Invalid extra.patches configuration: {e}") from e
        if not isinstance(patches, dict):
            return {}
        return {package: dict(entries) for package, entries in patches.items() if isinstance(entries, dict)}
