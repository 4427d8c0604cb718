"""Composer command adapter."""

import json
import logging
import re
import shutil
import tempfile
from pathlib import Path

from .errors import CommandError, DependencyUpdateError
from .models import Advisory, ChangeAction, PackageChange
from .process import check_output, run

logger = logging.getLogger(__name__)

_PACKAGE = r"([\w\-/.]+)"
_VERSION = r"([^\s()]+(?: [0-9a-f]{7,40})?)"

# One pattern per change-log line, in the order changes are reported
CHANGE_PATTERNS: list[tuple[ChangeAction, re.Pattern]] = [
    (ChangeAction.UPGRADE, re.compile(rf"- Upgrading {_PACKAGE} \({_VERSION} => {_VERSION}\)")),
    (ChangeAction.DOWNGRADE, re.compile(rf"- Downgrading {_PACKAGE} \({_VERSION} => {_VERSION}\)")),
    (ChangeAction.REMOVE, re.compile(rf"- Removing {_PACKAGE} \({_VERSION}\)")),
    (ChangeAction.INSTALL, re.compile(rf"- Installing {_PACKAGE} \({_VERSION}\)")),
]

PLUGIN_PATTERN = re.compile(r"^(\S+)\s+v?[\d.]+\s+requires", re.MULTILINE)

PATCH_CHECK_PROJECT = {
    "name": "drupal-updater/patch-check",
    "type": "project",
    "repositories": [{"type": "composer", "url": "https://packages.drupal.org/8"}],
    "require": {"cweagans/composer-patches": "~1.0"},
    "config": {"allow-plugins": True},
    "extra": {
        "composer-exit-on-patch-failure": True,
        "patches-file": "composer.patches.json",
    },
}


def parse_package_changes(log: str) -> list[PackageChange]:
    """Parse the change log printed by `composer update`.

    Composer reports lock file and package operations separately, so each
    change is returned once, in order of first appearance.

    Args:
        log: Combined output of the update command

    Returns:
        List of package changes
    """
    changes: list[PackageChange] = []
    for line in log.splitlines():
        for action, pattern in CHANGE_PATTERNS:
            match = pattern.search(line)
            if not match:
                continue
            if action in (ChangeAction.UPGRADE, ChangeAction.DOWNGRADE):
                change = PackageChange(action, match[1], match[2], match[3])
            elif action == ChangeAction.REMOVE:
                change = PackageChange(action, match[1], from_version=match[2])
            else:
                change = PackageChange(action, match[1], to_version=match[2])
            if change not in changes:
                changes.append(change)
            break
    return changes


def parse_audit(output: str) -> list[Advisory]:
    """Flatten the advisories of `composer audit --format=json`.

    Advisories are keyed by package and hold either a list or, for some
    packages, a map of advisories.
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise DependencyUpdateError(f"Invalid audit output: {e}") from e

    advisories: list[Advisory] = []
    grouped = data.get("advisories") or {}
    if not isinstance(grouped, dict):
        return advisories

    for items in grouped.values():
        if isinstance(items, dict):
            items = list(items.values())
        for item in items or []:
            advisories.append(Advisory.model_validate(item))
    return advisories


class Composer:
    """Wrapper around the composer executable."""

    def __init__(self, executable: str = "composer", timeout: float | None = None):
        self.executable = executable
        self.timeout = timeout
        self._patch_check_dir: Path | None = None

    async def _exec(self, dir: str | Path, *args: str) -> str:
        return await check_output([self.executable, *args], cwd=dir, timeout=self.timeout)

    async def _run(self, dir: str | Path, *args: str) -> tuple[int, str, str]:
        return await run([self.executable, *args], cwd=dir, timeout=self.timeout)

    async def update(
        self,
        dir: str | Path,
        packages: list[str],
        keep: list[str],
        minimal_changes: bool,
        dry_run: bool,
    ) -> list[PackageChange]:
        """Update dependencies and return the changes Composer made.

        Args:
            dir: Project directory
            packages: Packages to update, all packages when empty
            keep: Constraints (package:version) to hold during the update
            minimal_changes: Only change what is needed for the given packages
            dry_run: Report changes without writing anything

        Returns:
            List of package changes
        """
        args = [
            "update",
            "--no-interaction",
            "--no-progress",
            "--optimize-autoloader",
            "--with-all-dependencies",
            "--no-ansi",
            *packages,
        ]
        args.extend(f"--with={constraint}" for constraint in keep)
        if minimal_changes:
            args.append("--minimal-changes")
        args.append("--dry-run" if dry_run else "--bump-after-update")

        code, out, err = await self._run(dir, *args)
        if code != 0:
            raise CommandError([self.executable, *args], code, err or out)
        return parse_package_changes(f"{out}\n{err}")

    async def list_pending_updates(
        self, dir: str | Path, packages: list[str], minimal_changes: bool
    ) -> list[PackageChange]:
        """Changes an update would make, without applying them."""
        return await self.update(dir, packages, [], minimal_changes, dry_run=True)

    async def install(self, dir: str | Path) -> None:
        await self._exec(dir, "install", "--no-interaction", "--no-progress", "--optimize-autoloader")

    async def require(self, dir: str | Path, *args: str) -> None:
        await self._exec(dir, "require", "--no-interaction", *args)

    async def remove(self, dir: str | Path, *packages: str) -> None:
        await self._exec(dir, "remove", "--no-interaction", *packages)

    async def normalize(self, dir: str | Path) -> None:
        await self._exec(dir, "normalize", "--no-interaction")

    async def audit(self, dir: str | Path) -> list[Advisory]:
        """Run a security audit against the lock file."""
        # audit exits non-zero when it finds advisories
        _, out, _ = await self._run(dir, "audit", "--format=json", "--locked", "--no-plugins")
        return parse_audit(out)

    async def get_config(self, dir: str | Path, key: str):
        """Read a composer config value, decoded from JSON."""
        out = await self._exec(dir, "config", "--json", key)
        try:
            return json.loads(out)
        except json.JSONDecodeError:
            return out.strip()

    async def set_config(self, dir: str | Path, key: str, value) -> None:
        """Write a composer config value, encoded as JSON."""
        await self._exec(dir, "config", "--json", key, json.dumps(value))

    async def get_allow_plugins(self, dir: str | Path) -> dict[str, bool] | bool:
        """Read the plugin allowlist, either a map of plugins or a blanket true/false."""
        try:
            value = await self.get_config(dir, "allow-plugins")
        except CommandError:
            logger.debug("No allow-plugins configured in %s", dir)
            return {}
        if isinstance(value, bool):
            return value
        if not isinstance(value, dict):
            raise DependencyUpdateError(f"Invalid allow-plugins configuration in {dir}: {value!r}")
        return {name: bool(allowed) for name, allowed in value.items()}

    async def set_allow_plugins(self, dir: str | Path, plugins: dict[str, bool] | bool) -> None:
        await self.set_config(dir, "allow-plugins", plugins)

    async def get_installed_plugins(self, dir: str | Path) -> set[str]:
        """Names of installed packages that are Composer plugins."""
        out = await self._exec(dir, "depends", "composer-plugin-api", "--locked")
        return {match.strip() for match in PLUGIN_PATTERN.findall(out)}

    async def is_package_installed(self, dir: str | Path, package: str) -> bool:
        code, _, _ = await self._run(dir, "show", "--locked", "--quiet", package)
        return code == 0

    async def get_installed_package_version(self, dir: str | Path, package: str) -> str:
        out = await self._exec(dir, "show", package, "--locked", "--no-ansi", "--format=json")
        try:
            versions = json.loads(out).get("versions") or []
        except json.JSONDecodeError as e:
            raise DependencyUpdateError(f"Invalid package information for {package}: {e}") from e
        if not versions:
            raise DependencyUpdateError(f"No installed version found for {package}")
        return versions[0]

    def get_lock_hash(self, dir: str | Path) -> str:
        """Content hash recorded in composer.lock."""
        lock_file = Path(dir) / "composer.lock"
        try:
            return json.loads(lock_file.read_text()).get("content-hash", "")
        except (OSError, json.JSONDecodeError) as e:
            raise DependencyUpdateError(f"Unable to read {lock_file}: {e}") from e

    async def update_lock_hash(self, dir: str | Path) -> None:
        await self._exec(dir, "update", "--lock", "--no-install", "--no-interaction")

    async def get_custom_code_directories(self, dir: str | Path) -> list[str]:
        """Existing custom module, theme and profile directories, relative to dir."""
        try:
            web_root = await self.get_config(dir, "extra.drupal-scaffold.locations.web-root")
        except CommandError:
            web_root = "web"
        web_root = str(web_root).strip().rstrip("/") or "."

        directories = []
        for kind in ("modules", "themes", "profiles"):
            relative = f"{web_root}/{kind}/custom" if web_root != "." else f"{kind}/custom"
            if (Path(dir) / relative).is_dir():
                directories.append(relative)
        return directories

    async def check_patch_applies(self, package: str, version: str, locator: str) -> bool:
        """Whether a patch applies to a package version.

        Installs the package with the patch into a scratch project; any
        failure there means the patch does not apply.
        """
        project = self._ensure_patch_check_dir()
        patches = {"patches": {package: {version: locator}}}
        (project / "composer.patches.json").write_text(json.dumps(patches, indent=2))

        code, out, err = await self._run(
            project, "require", f"{package}:{version}", "--with-all-dependencies", "--quiet"
        )
        if code != 0:
            logger.debug("Patch %s does not apply to %s %s: %s", locator, package, version, (err or out).strip()[-500:])
            return False
        return True

    def _ensure_patch_check_dir(self) -> Path:
        if self._patch_check_dir is None:
            project = Path(tempfile.mkdtemp(prefix="composer-patch-check"))
            (project / "composer.json").write_text(json.dumps(PATCH_CHECK_PROJECT, indent=2))
            self._patch_check_dir = project
        return self._patch_check_dir

    def close(self) -> None:
        """Remove the scratch project used for patch checks."""
        if self._patch_check_dir is not None:
            shutil.rmtree(self._patch_check_dir, ignore_errors=True)
            self._patch_check_dir = None
