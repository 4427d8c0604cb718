"""Core data models for the Drupal updater."""

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Issue statuses on drupal.org that mean the fix has landed upstream:
# fixed, closed (fixed) and patch (to be ported).
FIXED_ISSUE_STATUSES = frozenset({"2", "7", "15"})


class ChangeAction(str, Enum):
    """Kind of change the package manager applied to a package."""

    INSTALL = "Install"
    UPGRADE = "Upgrade"
    DOWNGRADE = "Downgrade"
    REMOVE = "Remove"


@dataclass(frozen=True)
class PackageChange:
    """A single package change parsed from the package manager's log."""

    action: ChangeAction
    package: str
    from_version: str = ""
    to_version: str = ""


# package -> description -> locator (relative path or absolute URL)
Patches = dict[str, dict[str, str]]


@dataclass
class RemovedPatch:
    """A patch dropped from the project."""

    package: str
    description: str
    path: str
    reason: str


@dataclass
class UpdatedPatch:
    """A patch replaced by a newer upstream diff."""

    package: str
    description: str
    previous_path: str
    new_path: str


@dataclass
class ConflictPatch:
    """A patch that no longer applies and could not be replaced."""

    package: str
    description: str
    path: str
    fixed_version: str
    new_version: str


@dataclass
class PatchUpdates:
    """Outcome of a patch reconciliation run."""

    removed: list[RemovedPatch] = field(default_factory=list)
    updated: list[UpdatedPatch] = field(default_factory=list)
    conflicts: list[ConflictPatch] = field(default_factory=list)

    def changes(self) -> bool:
        """Whether the reconciliation touched any patch."""
        return bool(self.removed or self.updated or self.conflicts)


class Issue(BaseModel):
    """An issue on the drupal.org issue tracker."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="nid")
    title: str = ""
    status: str = Field(default="", alias="field_issue_status")
    url: str = ""
    project_machine_name: str = ""

    @model_validator(mode="before")
    @classmethod
    def _flatten_project(cls, data):
        if isinstance(data, dict) and "project_machine_name" not in data:
            project = data.get("field_project")
            if isinstance(project, dict) and project.get("machine_name"):
                data = {**data, "project_machine_name": project["machine_name"]}
        return data

    @field_validator("id", "status", mode="before")
    @classmethod
    def _stringify(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def is_fixed(self) -> bool:
        return self.status in FIXED_ISSUE_STATUSES


class Advisory(BaseModel):
    """A security advisory reported by the package manager's audit."""

    model_config = ConfigDict(populate_by_name=True)

    advisory_id: str = Field(default="", alias="advisoryId")
    cve: str | None = None
    severity: str | None = None
    package_name: str = Field(default="", alias="packageName")
    title: str = ""
    link: str | None = None
    reported_at: str | None = Field(default=None, alias="reportedAt")
    affected_versions: str = Field(default="", alias="affectedVersions")

    @property
    def key(self) -> str:
        """Identity used when comparing audits; the CVE when there is one."""
        return self.cve or self.advisory_id


class IntId(BaseModel):
    """Numeric upgrade hook identifier (hook_update_N)."""

    model_config = ConfigDict(frozen=True)

    value: int

    def __str__(self) -> str:
        return str(self.value)


class StringId(BaseModel):
    """Named upgrade hook identifier (post-update and deploy hooks)."""

    model_config = ConfigDict(frozen=True)

    value: str

    def __str__(self) -> str:
        return self.value


class UpdateHook(BaseModel):
    """A pending database upgrade hook reported by Drush."""

    module: str = ""
    update_id: IntId | StringId
    description: str = ""
    type: str = ""

    @field_validator("update_id", mode="before")
    @classmethod
    def _tag_update_id(cls, value):
        if isinstance(value, (IntId, StringId)):
            return value
        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool):
            raise ValueError("update_id must be an integer or a string")
        if isinstance(value, int):
            return IntId(value=value)
        if isinstance(value, str):
            return StringId(value=value)
        raise ValueError("update_id must be an integer or a string")


# site -> hook id -> hook
UpdateHooksPerSite = dict[str, dict[str, UpdateHook]]


@dataclass
class SiteUpdateResult:
    """Outcome of updating a single site."""

    site: str
    discovered_hooks: dict[str, UpdateHook] = field(default_factory=dict)
    error: Exception | None = None


@dataclass
class SecurityReport:
    """Advisories before and after a security update."""

    fixed_advisories: list[Advisory] = field(default_factory=list)
    after_update_advisories: list[Advisory] = field(default_factory=list)
    num_unresolved_issues: int = 0


@dataclass
class WorkflowUpdateResult:
    """Aggregate of the dependency update and patch reconciliation."""

    changes: list[PackageChange] = field(default_factory=list)
    patch_updates: PatchUpdates = field(default_factory=PatchUpdates)


class MergeRequest(BaseModel):
    """A merge or pull request opened on the code-hosting platform."""

    id: int
    url: str
