"""Tests for the post-update addons."""

from unittest.mock import MagicMock

import pytest

from updater.addons.allow_plugins import AllowPlugins
from updater.addons.code_beautifier import CodeBeautifier, render_phpcs_config
from updater.addons.deprecations import DeprecationsRemover
from updater.addons.normalizer import ComposerNormalizer
from updater.addons.translations import TranslationsUpdater
from updater.errors import CommandError
from updater.events import PostDependencyUpdateEvent, PostSiteUpdateEvent, PreDependencyUpdateEvent
from updater.phpcs import Phpcs, PhpcsReport
from updater.rector import Rector, RectorReport


class TestAllowPlugins:
    """Test the plugin allowlist handling."""

    @pytest.mark.asyncio
    async def test_new_plugins_added_disabled(self, composer, worktree):
        """Should allow all plugins during the update and record new ones as disabled."""
        composer.get_allow_plugins.return_value = {"composer/installers": True}
        composer.get_installed_plugins.return_value = {"composer/installers", "acme/new-plugin"}
        addon = AllowPlugins(composer)

        await addon.on_pre_dependency_update(PreDependencyUpdateEvent("/project", worktree))
        composer.set_config.assert_awaited_once_with("/project", "allow-plugins", True)

        await addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        composer.set_allow_plugins.assert_awaited_once_with(
            "/project", {"composer/installers": True, "acme/new-plugin": False}
        )
        assert "acme/new-plugin" in addon.render_report()

    @pytest.mark.asyncio
    async def test_no_new_plugins(self, composer, worktree):
        """Should restore the allowlist and report nothing."""
        composer.get_allow_plugins.return_value = {"composer/installers": True}
        composer.get_installed_plugins.return_value = {"composer/installers"}
        addon = AllowPlugins(composer)

        await addon.on_pre_dependency_update(PreDependencyUpdateEvent("/project", worktree))
        await addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        composer.set_allow_plugins.assert_awaited_once_with("/project", {"composer/installers": True})
        assert addon.render_report() == ""

    @pytest.mark.asyncio
    async def test_blanket_allow_kept(self, composer, worktree):
        """Should restore allow-plugins true without disabling installed plugins."""
        composer.get_allow_plugins.return_value = True
        composer.get_installed_plugins.return_value = {"composer/installers", "cweagans/composer-patches"}
        addon = AllowPlugins(composer)

        await addon.on_pre_dependency_update(PreDependencyUpdateEvent("/project", worktree))
        await addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        composer.set_allow_plugins.assert_awaited_once_with("/project", True)
        assert addon.new_plugins == []
        assert addon.render_report() == ""


class TestComposerNormalizer:
    """Test composer normalize."""

    @pytest.mark.asyncio
    async def test_skipped_when_not_installed(self, composer, worktree):
        """Should only normalize projects using composer-normalize."""
        composer.is_package_installed.return_value = False

        await ComposerNormalizer(composer).on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        composer.normalize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_not_fatal(self, composer, worktree):
        """Should log normalize failures and carry on."""
        composer.normalize.side_effect = CommandError(["composer", "normalize"], 1, "invalid")

        await ComposerNormalizer(composer).on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        composer.normalize.assert_awaited_once_with("/project")


class TestCodeBeautifier:
    """Test coding standard fixes."""

    @pytest.fixture(autouse=True)
    def setup_beautifier(self, composer):
        """Setup test fixtures."""
        self.composer = composer
        self.composer.get_installed_package_version.return_value = "10.2.3"
        self.phpcs = MagicMock(spec=Phpcs)
        self.phpcs.run.return_value = PhpcsReport()
        self.addon = CodeBeautifier(composer, self.phpcs)

    def test_config_template(self):
        """Should list custom directories and the core major version."""
        config = render_phpcs_config(["web/modules/custom"], "10")
        assert "<file>web/modules/custom</file>" in config
        assert 'value="10"' in config

    @pytest.mark.asyncio
    async def test_writes_default_config(self, tmp_path, worktree):
        """Should add a PHPCS config when the project has none."""
        self.composer.is_package_installed.return_value = False

        await self.addon.on_post_dependency_update(PostDependencyUpdateEvent(str(tmp_path), worktree))

        self.composer.require.assert_awaited_once_with(str(tmp_path), "--dev", "drupal/coder")
        assert "web/modules/custom" in (tmp_path / "phpcs.xml").read_text()
        worktree.commit_paths.assert_awaited_once_with(["phpcs.xml"], "Add PHPCS config")
        self.phpcs.run_cbf.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commits_fixed_files(self, tmp_path, worktree):
        """Should run PHPCBF and commit the fixable files."""
        (tmp_path / "phpcs.xml.dist").write_text("<ruleset/>")
        module = tmp_path / "web" / "modules" / "custom" / "acme" / "acme.module"
        self.phpcs.run.return_value = PhpcsReport.model_validate({
            "totals": {"errors": 2, "warnings": 0, "fixable": 1},
            "files": {
                str(module): {"errors": 1, "messages": [{"message": "Indent", "fixable": True}]},
                str(tmp_path / "web" / "other.php"): {"errors": 1, "messages": [{"message": "Doc", "fixable": False}]},
            },
        })

        await self.addon.on_post_dependency_update(PostDependencyUpdateEvent(str(tmp_path), worktree))

        self.phpcs.run_cbf.assert_awaited_once_with(str(tmp_path))
        worktree.commit_paths.assert_awaited_once_with(
            ["web/modules/custom/acme/acme.module"], "Update coding styles"
        )


class TestDeprecationsRemover:
    """Test deprecation removal."""

    @pytest.fixture(autouse=True)
    def setup_remover(self, composer):
        """Setup test fixtures."""
        self.composer = composer
        self.rector = MagicMock(spec=Rector)
        self.rector.run.return_value = RectorReport.model_validate({
            "totals": {"changed_files": 1, "errors": 0},
            "changed_files": ["web/modules/custom/acme/acme.module"],
        })
        self.addon = DeprecationsRemover(composer, self.rector)

    @pytest.mark.asyncio
    async def test_temporary_rector_install(self, worktree):
        """Should install drupal-rector for the run and remove it afterwards."""
        self.composer.is_package_installed.return_value = False

        await self.addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        self.composer.require.assert_awaited_once_with("/project", "--dev", "palantirnet/drupal-rector")
        self.composer.remove.assert_awaited_once_with("/project", "palantirnet/drupal-rector")
        self.rector.run.assert_awaited_once_with("/project", ["web/modules/custom"])
        worktree.commit_paths.assert_awaited_once_with(
            ["web/modules/custom/acme/acme.module"], "Remove deprecations"
        )

    @pytest.mark.asyncio
    async def test_removed_after_failure(self, worktree):
        """Should remove the temporary package even when rector fails."""
        self.composer.is_package_installed.return_value = False
        self.rector.run.side_effect = CommandError(["rector"], 1, "crash")

        with pytest.raises(CommandError):
            await self.addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        self.composer.remove.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_custom_code(self, worktree):
        """Should skip projects without custom code."""
        self.composer.get_custom_code_directories.return_value = []

        await self.addon.on_post_dependency_update(PostDependencyUpdateEvent("/project", worktree))

        self.rector.run.assert_not_awaited()
        self.composer.require.assert_not_awaited()


class TestTranslationsUpdater:
    """Test translation updates."""

    @pytest.mark.asyncio
    async def test_commits_translations(self, drush, worktree):
        """Should localize and commit translations on sites using locale_deploy."""
        drush.is_module_enabled.return_value = True
        drush.get_translation_path.return_value = "translations"

        await TranslationsUpdater(drush).on_post_site_update(PostSiteUpdateEvent("/project", worktree, "default"))

        drush.localize_translations.assert_awaited_once_with("/project", "default")
        worktree.commit_paths.assert_awaited_once_with(["translations"], "Update translations")

    @pytest.mark.asyncio
    async def test_skipped_without_module(self, drush, worktree):
        """Should do nothing when locale_deploy is not enabled."""
        await TranslationsUpdater(drush).on_post_site_update(PostSiteUpdateEvent("/project", worktree, "default"))

        drush.localize_translations.assert_not_awaited()
        worktree.commit_paths.assert_not_awaited()
