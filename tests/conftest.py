"""Pytest configuration and fixtures."""

import json
from unittest.mock import MagicMock

import pytest

from updater.composer import Composer
from updater.drush import Drush
from updater.repo import Worktree


@pytest.fixture
def worktree():
    """Worktree double whose git operations all succeed."""
    mock = MagicMock(spec=Worktree)
    mock.commit.return_value = "abc123"
    mock.commit_paths.return_value = True
    mock.is_something_staged_in_path.return_value = False
    return mock


@pytest.fixture
def composer():
    """Composer double; every package counts as installed."""
    mock = MagicMock(spec=Composer)
    mock.is_package_installed.return_value = True
    mock.check_patch_applies.return_value = True
    mock.list_pending_updates.return_value = []
    mock.update.return_value = []
    mock.audit.return_value = []
    mock.get_lock_hash.return_value = "0123456789abcdef"
    mock.get_custom_code_directories.return_value = ["web/modules/custom"]
    return mock


@pytest.fixture
def drush():
    """Drush double for a site without pending upgrade hooks."""
    mock = MagicMock(spec=Drush)
    mock.get_update_hooks.return_value = {}
    mock.get_config_sync_dir.return_value = "config/sync"
    mock.is_module_enabled.return_value = False
    return mock


@pytest.fixture
def sample_update_log():
    """Output of a composer update run."""
    return """Loading composer repositories with package information
Updating dependencies
Lock file operations: 1 install, 2 updates, 1 removal
  - Removing drupal/old_module (1.0.0)
  - Upgrading drupal/core (10.2.1 => 10.2.3)
  - Downgrading symfony/yaml (6.4.1 => 6.4.0)
  - Installing drupal/new_module (2.1.0)
Writing lock file
Package operations: 1 install, 2 updates, 1 removal
  - Removing drupal/old_module (1.0.0)
  - Upgrading drupal/core (10.2.1 => 10.2.3): Extracting archive
  - Downgrading symfony/yaml (6.4.1 => 6.4.0): Extracting archive
  - Installing drupal/new_module (2.1.0): Extracting archive
Generating optimized autoload files
"""


@pytest.fixture
def project_dir(tmp_path):
    """Minimal Drupal project checkout."""
    project = tmp_path / "repo"
    project.mkdir()
    (project / "composer.json").write_text(json.dumps({"name": "acme/site"}))
    (project / "composer.lock").write_text(json.dumps({"content-hash": "d41d8cd98f00b204e9800998ecf8427e"}))
    return project
