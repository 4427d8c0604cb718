"""Markdown rendering for the merge request description."""

from packaging.version import InvalidVersion, Version

from .models import ChangeAction, PackageChange, PatchUpdates, SecurityReport, UpdateHooksPerSite

# Merge request descriptions are capped at 65536 characters on GitHub
MAX_TABLE_LENGTH = 63000


def semver_delta(from_version: str, to_version: str) -> str:
    """Classify a version change.

    Args:
        from_version: Installed version
        to_version: New version

    Returns:
        Semver delta: "major", "minor", "patch", or "unknown"
    """
    if not from_version or not to_version:
        return "unknown"

    try:
        old_ver = Version(from_version.lstrip("v"))
        new_ver = Version(to_version.lstrip("v"))
    except InvalidVersion:
        return "unknown"

    if new_ver.major != old_ver.major:
        return "major"
    elif new_ver.minor != old_ver.minor:
        return "minor"
    elif new_ver.micro != old_ver.micro:
        return "patch"
    return "unknown"


def package_link(package: str) -> str:
    if package.startswith("drupal/"):
        return f"https://www.drupal.org/project/{package.split('/', 1)[1]}"
    return f"https://packagist.org/packages/{package}"


def render_diff_table(changes: list[PackageChange], with_links: bool = True) -> str:
    """Table of package changes, falling back to plain names when too long."""
    if not changes:
        return ""

    lines = [
        "### Package changes",
        "",
        "| Package | Operation | From | To | Delta |",
        "|---|---|---|---|---|",
    ]
    for change in sorted(changes, key=lambda c: c.package):
        name = f"[{change.package}]({package_link(change.package)})" if with_links else change.package
        delta = semver_delta(change.from_version, change.to_version)
        if change.action not in (ChangeAction.UPGRADE, ChangeAction.DOWNGRADE):
            delta = ""
        lines.append(
            f"| {name} | {change.action.value} | {change.from_version} | {change.to_version} | {delta} |"
        )

    table = "\n".join(lines)
    if with_links and len(table) > MAX_TABLE_LENGTH:
        return render_diff_table(changes, with_links=False)
    return table


def render_security_report(report: SecurityReport) -> str:
    lines = ["### Security updates", ""]
    if report.fixed_advisories:
        lines.append("Fixed advisories:")
        lines.append("")
        lines.append("| Package | Advisory | Severity | CVE |")
        lines.append("|---|---|---|---|")
        for advisory in report.fixed_advisories:
            title = f"[{advisory.title}]({advisory.link})" if advisory.link else advisory.title
            lines.append(
                f"| {advisory.package_name} | {title} | {advisory.severity or ''} | {advisory.cve or ''} |"
            )
    else:
        lines.append("No advisories were fixed.")

    if report.after_update_advisories:
        lines.append("")
        lines.append(f"**{report.num_unresolved_issues} advisories remain unresolved:**")
        lines.append("")
        for advisory in report.after_update_advisories:
            lines.append(f"- {advisory.package_name}: {advisory.title} ({advisory.affected_versions})")
    return "\n".join(lines)


def render_patch_updates(updates: PatchUpdates) -> str:
    if not updates.changes():
        return ""

    lines = ["### Patches", ""]
    if updates.removed:
        lines.append("Removed patches:")
        lines.append("")
        for removed in updates.removed:
            lines.append(f"- {removed.package}: {removed.description} ({removed.reason})")
        lines.append("")
    if updates.updated:
        lines.append("Updated patches:")
        lines.append("")
        for updated in updates.updated:
            lines.append(
                f"- {updated.package}: {updated.description} "
                f"(`{updated.previous_path}` => `{updated.new_path}`)"
            )
        lines.append("")
    if updates.conflicts:
        lines.append("Conflicting patches, package held back:")
        lines.append("")
        for conflict in updates.conflicts:
            lines.append(
                f"- {conflict.package}: {conflict.description} does not apply to "
                f"{conflict.new_version}, kept at {conflict.fixed_version}"
            )
        lines.append("")
    return "\n".join(lines).rstrip()


def render_update_hooks(hooks: UpdateHooksPerSite) -> str:
    if not hooks:
        return ""

    lines = ["### Update hooks", ""]
    for site, site_hooks in sorted(hooks.items()):
        lines.append(f"#### {site}")
        lines.append("")
        lines.append("| Module | Hook | Description |")
        lines.append("|---|---|---|")
        for hook in site_hooks.values():
            description = " ".join(hook.description.split())
            lines.append(f"| {hook.module} | {hook.update_id} | {description} |")
        lines.append("")
    return "\n".join(lines).rstrip()


def render_allow_plugins(plugins: list[str]) -> str:
    if not plugins:
        return ""
    lines = [
        "### New Composer plugins",
        "",
        "These plugins were added to `allow-plugins` disabled; enable the ones you trust:",
        "",
    ]
    lines.extend(f"- {plugin}" for plugin in plugins)
    return "\n".join(lines)


def build_description(fragments: list[str]) -> str:
    """Join report fragments, skipping empty ones."""
    return "\n\n".join(fragment.strip() for fragment in fragments if fragment and fragment.strip())
