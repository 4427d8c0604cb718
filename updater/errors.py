"""Exception hierarchy for the Drupal updater."""


class UpdaterError(Exception):
    """Base class for every error raised by the updater."""


class CommandError(UpdaterError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        message = f"Command '{' '.join(command)}' failed with exit code {returncode}"
        if output.strip():
            message += f": {output.strip()[-500:]}"
        super().__init__(message)


class RepositoryError(UpdaterError):
    """A git operation on the project repository failed."""


class DependencyUpdateError(UpdaterError):
    """Updating or configuring the project's dependencies failed."""


class AddonError(UpdaterError):
    """An addon failed while handling an event."""

    def __init__(self, addon: str, event: str, cause: BaseException):
        self.addon = addon
        self.event = event
        self.cause = cause
        super().__init__(f"Addon {addon} failed on {event}: {cause}")


class SiteUpdateError(UpdaterError):
    """Updating one of the project's sites failed."""

    def __init__(self, site: str, cause: BaseException):
        self.site = site
        self.cause = cause
        super().__init__(f"Failed to update site {site}: {cause}")


class CodeHostingError(UpdaterError):
    """A call to the code-hosting API failed."""


class IssueTrackerError(UpdaterError):
    """Fetching an issue from the issue tracker failed."""
