"""Tests for the Composer adapter."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from updater.composer import Composer, parse_audit, parse_package_changes
from updater.errors import CommandError, DependencyUpdateError
from updater.models import ChangeAction, PackageChange


class TestParsePackageChanges:
    """Test parsing of the composer update change log."""

    def test_parse_all_actions(self, sample_update_log):
        """Should recognise every kind of change."""
        changes = parse_package_changes(sample_update_log)

        assert changes == [
            PackageChange(ChangeAction.REMOVE, "drupal/old_module", from_version="1.0.0"),
            PackageChange(ChangeAction.UPGRADE, "drupal/core", "10.2.1", "10.2.3"),
            PackageChange(ChangeAction.DOWNGRADE, "symfony/yaml", "6.4.1", "6.4.0"),
            PackageChange(ChangeAction.INSTALL, "drupal/new_module", to_version="2.1.0"),
        ]

    def test_lock_and_package_operations_reported_once(self, sample_update_log):
        """Should not duplicate changes printed for both lock file and packages."""
        changes = parse_package_changes(sample_update_log)
        assert len(changes) == 4
        assert len({change.package for change in changes}) == 4

    def test_dev_versions_with_commit_reference(self):
        """Should keep the commit reference of branch versions."""
        log = "  - Upgrading drupal/foo (dev-1.x 1a2b3c4 => dev-1.x 5d6e7f8a9b)"
        changes = parse_package_changes(log)

        assert changes == [
            PackageChange(ChangeAction.UPGRADE, "drupal/foo", "dev-1.x 1a2b3c4", "dev-1.x 5d6e7f8a9b")
        ]

    def test_ignores_unrelated_lines(self):
        """Should return nothing for output without change lines."""
        log = "Loading composer repositories with package information\nNothing to modify in lock file\n"
        assert parse_package_changes(log) == []

    def test_package_names_with_dots(self):
        """Should accept dots and dashes in package names."""
        log = "  - Installing symfony/polyfill-php8.3 (v1.29.0)"
        changes = parse_package_changes(log)
        assert changes[0].package == "symfony/polyfill-php8.3"
        assert changes[0].to_version == "v1.29.0"


class TestParseAudit:
    """Test flattening of audit output."""

    def test_list_of_advisories(self):
        """Should flatten advisories listed per package."""
        output = json.dumps({
            "advisories": {
                "drupal/core": [
                    {
                        "advisoryId": "SA-CORE-2024-001",
                        "packageName": "drupal/core",
                        "title": "Access bypass",
                        "cve": "CVE-2024-0001",
                        "affectedVersions": ">=10.0 <10.2.3",
                    }
                ]
            }
        })

        advisories = parse_audit(output)

        assert len(advisories) == 1
        assert advisories[0].package_name == "drupal/core"
        assert advisories[0].key == "CVE-2024-0001"

    def test_nested_advisory_map(self):
        """Should flatten advisories keyed by index."""
        output = json.dumps({
            "advisories": {
                "drupal/token": {
                    "0": {"advisoryId": "SA-CONTRIB-1", "packageName": "drupal/token", "title": "XSS"},
                    "1": {"advisoryId": "SA-CONTRIB-2", "packageName": "drupal/token", "title": "CSRF"},
                }
            }
        })

        advisories = parse_audit(output)
        assert [advisory.advisory_id for advisory in advisories] == ["SA-CONTRIB-1", "SA-CONTRIB-2"]

    def test_no_advisories(self):
        """Should handle the empty list composer prints without advisories."""
        assert parse_audit(json.dumps({"advisories": []})) == []

    def test_invalid_json(self):
        """Should raise a dependency update error for garbage output."""
        with pytest.raises(DependencyUpdateError):
            parse_audit("not json")


class TestComposer:
    """Test composer command construction."""

    def setup_method(self):
        """Setup test fixtures."""
        self.composer = Composer()

    @pytest.mark.asyncio
    async def test_update_arguments(self, sample_update_log):
        """Should pass packages, kept constraints and minimal changes to composer."""
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (0, "", sample_update_log)

            changes = await self.composer.update(
                "/project", ["drupal/core"], ["drupal/token:1.13.0"], minimal_changes=True, dry_run=False
            )

        args = mock_run.call_args.args
        assert args[0] == "/project"
        assert args[1] == "update"
        assert "drupal/core" in args
        assert "--with=drupal/token:1.13.0" in args
        assert "--minimal-changes" in args
        assert args[-1] == "--bump-after-update"
        assert len(changes) == 4

    @pytest.mark.asyncio
    async def test_pending_updates_use_dry_run(self):
        """Should never write anything when listing pending updates."""
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (0, "  - Upgrading drupal/core (10.2.1 => 10.2.3)", "")

            changes = await self.composer.list_pending_updates("/project", [], False)

        args = mock_run.call_args.args
        assert args[-1] == "--dry-run"
        assert "--minimal-changes" not in args
        assert changes[0].to_version == "10.2.3"

    @pytest.mark.asyncio
    async def test_update_failure(self):
        """Should raise a command error when composer fails."""
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (2, "", "Your requirements could not be resolved")

            with pytest.raises(CommandError) as exc_info:
                await self.composer.update("/project", [], [], False, False)

        assert exc_info.value.returncode == 2
        assert "could not be resolved" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_audit_ignores_exit_code(self):
        """Should parse advisories even though audit exits non-zero."""
        output = json.dumps({"advisories": {"drupal/core": [{"advisoryId": "SA-1", "packageName": "drupal/core"}]}})
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (1, output, "")

            advisories = await self.composer.audit("/project")

        assert advisories[0].advisory_id == "SA-1"

    @pytest.mark.asyncio
    async def test_get_config_decodes_json(self):
        """Should decode JSON config values and fall back to plain text."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = '{"drupal/core": {"Fix": "patches/fix.patch"}}\n'
            assert await self.composer.get_config("/project", "extra.patches") == {
                "drupal/core": {"Fix": "patches/fix.patch"}
            }

            mock_exec.return_value = "docroot\n"
            assert await self.composer.get_config("/project", "extra.drupal-scaffold.locations.web-root") == "docroot"

    @pytest.mark.asyncio
    async def test_set_config_encodes_json(self):
        """Should pass values to composer config as JSON."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            await self.composer.set_config("/project", "allow-plugins", True)

        mock_exec.assert_awaited_once_with("/project", "config", "--json", "allow-plugins", "true")

    @pytest.mark.asyncio
    async def test_get_allow_plugins_missing(self):
        """Should return an empty allowlist when none is configured."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.side_effect = CommandError(["composer"], 1, "not set")
            assert await self.composer.get_allow_plugins("/project") == {}

    @pytest.mark.asyncio
    async def test_get_allow_plugins_blanket(self):
        """Should keep a blanket true instead of turning it into an empty allowlist."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = "true\n"
            assert await self.composer.get_allow_plugins("/project") is True

    @pytest.mark.asyncio
    async def test_get_allow_plugins_invalid(self):
        """Should reject an allowlist that is neither a map nor a boolean."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = '["composer/installers"]'
            with pytest.raises(DependencyUpdateError, match="allow-plugins"):
                await self.composer.get_allow_plugins("/project")

    @pytest.mark.asyncio
    async def test_get_installed_plugins(self):
        """Should read plugin names from composer depends output."""
        output = (
            "composer/installers v2.2.0 requires composer-plugin-api (^1.0 || ^2.0)\n"
            "cweagans/composer-patches 1.7.3 requires composer-plugin-api (^1.0 || ^2.0)\n"
        )
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = output
            plugins = await self.composer.get_installed_plugins("/project")

        assert plugins == {"composer/installers", "cweagans/composer-patches"}

    @pytest.mark.asyncio
    async def test_is_package_installed(self):
        """Should use the exit code of composer show."""
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (0, "", "")
            assert await self.composer.is_package_installed("/project", "drupal/core")

            mock_run.return_value = (1, "", "Package not found")
            assert not await self.composer.is_package_installed("/project", "drupal/missing")

    @pytest.mark.asyncio
    async def test_installed_package_version(self):
        """Should return the first locked version."""
        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = json.dumps({"name": "drupal/core", "versions": ["10.2.3"]})
            assert await self.composer.get_installed_package_version("/project", "drupal/core") == "10.2.3"

    def test_lock_hash(self, project_dir):
        """Should read the content hash from composer.lock."""
        assert self.composer.get_lock_hash(project_dir) == "d41d8cd98f00b204e9800998ecf8427e"

    def test_lock_hash_missing_lock(self, tmp_path):
        """Should raise when the lock file cannot be read."""
        with pytest.raises(DependencyUpdateError):
            self.composer.get_lock_hash(tmp_path)

    @pytest.mark.asyncio
    async def test_custom_code_directories(self, tmp_path):
        """Should only return custom directories that exist."""
        (tmp_path / "web" / "modules" / "custom").mkdir(parents=True)
        (tmp_path / "web" / "themes" / "custom").mkdir(parents=True)

        with patch.object(self.composer, '_exec', new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = '"web"'
            directories = await self.composer.get_custom_code_directories(tmp_path)

        assert directories == ["web/modules/custom", "web/themes/custom"]

    @pytest.mark.asyncio
    async def test_check_patch_applies(self):
        """Should install the package with the patch in a scratch project."""
        with patch.object(self.composer, '_run', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = (0, "", "")
            applies = await self.composer.check_patch_applies(
                "drupal/core", "10.2.3", "/project/patches/fix.patch"
            )

            scratch = mock_run.call_args.args[0]
            patches = json.loads((scratch / "composer.patches.json").read_text())
            assert patches == {"patches": {"drupal/core": {"10.2.3": "/project/patches/fix.patch"}}}
            assert "drupal/core:10.2.3" in mock_run.call_args.args

            mock_run.return_value = (1, "", "Cannot apply patch")
            assert not await self.composer.check_patch_applies("drupal/core", "10.2.3", "x.patch")

        assert applies
        self.composer.close()
        assert not scratch.exists()
