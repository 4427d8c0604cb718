"""Maintenance and security update policies."""

import logging
from datetime import datetime

from .composer import Composer
from .models import Advisory, SecurityReport, UpdateHooksPerSite, WorkflowUpdateResult
from .report import (
    build_description,
    render_diff_table,
    render_patch_updates,
    render_security_report,
    render_update_hooks,
)

logger = logging.getLogger(__name__)

CORE_PACKAGE = "drupal/core"
CORE_COMPANION_PACKAGES = ["drupal/core-recommended", "drupal/core-composer-scaffold"]


class WorkflowStrategy:
    """Decides what to update, how to name the branch and what to report."""

    name = "base"

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now()

    async def pre_update(self, path: str) -> tuple[list[str], bool]:
        """Packages to update (empty for all) and whether to keep changes minimal."""
        raise NotImplementedError

    def should_continue(self, packages: list[str]) -> bool:
        return True

    async def post_update(self, path: str) -> None:
        return None

    def branch_name(self, lock_hash: str) -> str:
        raise NotImplementedError

    def title(self) -> str:
        raise NotImplementedError

    def security_report(self) -> str:
        return ""

    def describe(
        self,
        result: WorkflowUpdateResult,
        hooks: UpdateHooksPerSite,
        addon_fragments: list[str] | None = None,
    ) -> str:
        """Merge request description.

        Sections: package changes, security report, patches, update hooks,
        then whatever the addons contributed.
        """
        return build_description([
            render_diff_table(result.changes),
            self.security_report(),
            render_patch_updates(result.patch_updates),
            render_update_hooks(hooks),
            *(addon_fragments or []),
        ])


class MaintenanceStrategy(WorkflowStrategy):
    """Regular update of every package."""

    name = "maintenance"

    async def pre_update(self, path: str) -> tuple[list[str], bool]:
        return [], False

    def branch_name(self, lock_hash: str) -> str:
        return f"update-{self.now.strftime('%Y%m%d%H%M%S')}"

    def title(self) -> str:
        return f"{self.now.strftime('%B %Y')}: Drupal Maintenance Updates"


class SecurityStrategy(WorkflowStrategy):
    """Minimal update of packages with security advisories."""

    name = "security"

    def __init__(self, composer: Composer, now: datetime | None = None):
        super().__init__(now)
        self.composer = composer
        self.before_advisories: list[Advisory] = []
        self.after_advisories: list[Advisory] = []
        self.report: SecurityReport | None = None

    async def pre_update(self, path: str) -> tuple[list[str], bool]:
        self.before_advisories = await self.composer.audit(path)

        packages: list[str] = []
        for advisory in self.before_advisories:
            if advisory.package_name and advisory.package_name not in packages:
                packages.append(advisory.package_name)

        # Core can only be updated together with its metapackages
        if CORE_PACKAGE in packages:
            for package in CORE_COMPANION_PACKAGES:
                if package not in packages:
                    packages.append(package)

        logger.info("Packages with security advisories: %s", ", ".join(packages) or "none")
        return packages, True

    def should_continue(self, packages: list[str]) -> bool:
        if not packages:
            logger.info("No security advisories, nothing to update")
            return False
        return True

    async def post_update(self, path: str) -> None:
        self.after_advisories = await self.composer.audit(path)
        remaining = {advisory.key for advisory in self.after_advisories}
        fixed = [advisory for advisory in self.before_advisories if advisory.key not in remaining]
        self.report = SecurityReport(
            fixed_advisories=fixed,
            after_update_advisories=self.after_advisories,
            num_unresolved_issues=len(self.after_advisories),
        )

    def branch_name(self, lock_hash: str) -> str:
        return f"security-update-{lock_hash}"

    def title(self) -> str:
        return f"{self.now.strftime('%Y-%m-%d')}: Drupal Security Updates"

    def security_report(self) -> str:
        return render_security_report(self.report) if self.report else ""
