"""
Script: release_tools/chart_version.py
What: Removes the `-prerelease` suffix from chart and dependency versions on release.
Doing: Rewrites the matching `version`/`appVersion` lines in `Chart.yaml` files, then re-parses them to verify.
Why: Development charts carry `-prerelease` versions; the release commit must point at the final versions.
Goal: Produce release-ready Chart.yaml files without touching comments or layout.
"""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from release_tools.common import ReleaseToolError, load_yaml_text, root_dir
from release_tools.versions import strip_suffix


PRERELEASE_SUFFIX = "-prerelease"
CRD_CHART_NAME = "openebs-crds"
UMBRELLA_TOP_LEVEL_KEYS = ("version", "appVersion")
UMBRELLA_DEPENDENCIES = (
    CRD_CHART_NAME,
    "localpv-provisioner",
    "zfs-localpv",
    "lvm-localpv",
    "mayastor",
)

# `key: value  # comment`, optionally as the first key of a list item.
KEY_LINE_RE = re.compile(
    r"^(?P<indent> *)(?P<dash>- +)?(?P<key>[A-Za-z0-9_.-]+):(?P<sep> *)"
    r"(?P<value>[^#\s](?:[^#]*[^#\s])?)?(?P<trail> *(?:#.*)?)$"
)


@dataclass(frozen=True)
class VersionChange:
    field: str
    old: str
    new: str


def _strip_value(raw: str, suffix: str) -> str:
    """Strip the suffix from a scalar, keeping its quoting style."""
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[0] + strip_suffix(raw[1:-1], suffix) + raw[-1]
    return strip_suffix(raw, suffix)


def _rewrite_line(line: str, suffix: str) -> str:
    match = KEY_LINE_RE.match(line)
    if not match or match.group("value") is None:
        return line
    value = match.group("value")
    new_value = _strip_value(value, suffix)
    if new_value == value:
        return line
    start, end = match.span("value")
    return line[:start] + new_value + line[end:]


def _is_content(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def _dependency_entries(lines: list[str]) -> Iterable[tuple[int, list[int]]]:
    """
    Yield `(key_column, line_indexes)` for each item under top-level `dependencies:`.

    Only block-style lists are handled; a flow-style list fails the
    post-rewrite verification instead.
    """
    start = None
    for index, line in enumerate(lines):
        match = KEY_LINE_RE.match(line)
        if match and match.group("indent") == "" and not match.group("dash") and match.group("key") == "dependencies":
            start = index + 1
            break
    if start is None:
        return

    current: list[int] = []
    key_column = 0
    item_indent = None
    for index in range(start, len(lines)):
        line = lines[index]
        if not _is_content(line):
            continue
        stripped = line.lstrip(" ")
        indent = len(line) - len(stripped)
        # Next top-level key ends the block; `- ` at column 0 is still a list item.
        if indent == 0 and not stripped.startswith("-"):
            break
        # Deeper `- ` lines belong to nested lists such as `tags:`.
        if stripped.startswith("- ") and item_indent in (None, indent):
            item_indent = indent
            if current:
                yield key_column, current
            dash_match = KEY_LINE_RE.match(line)
            key_column = indent + len(dash_match.group("dash")) if dash_match else indent + 2
            current = [index]
        elif current:
            current.append(index)
    if current:
        yield key_column, current


def _entry_fields(lines: list[str], key_column: int, indexes: list[int]) -> dict[str, int]:
    fields: dict[str, int] = {}
    for index in indexes:
        match = KEY_LINE_RE.match(lines[index])
        if not match:
            continue
        column = len(match.group("indent")) + len(match.group("dash") or "")
        if column == key_column:
            fields.setdefault(match.group("key"), index)
    return fields


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    return raw


def strip_prerelease(
    text: str,
    *,
    top_level_keys: Iterable[str] = ("version",),
    dependency_names: Iterable[str] = (),
    suffix: str = PRERELEASE_SUFFIX,
) -> tuple[str, list[VersionChange]]:
    """
    Remove `suffix` from selected top-level keys and dependency versions.

    Returns the new document text and the list of changed fields.
    """
    lines = text.split("\n")
    wanted_keys = set(top_level_keys)
    wanted_deps = set(dependency_names)
    changes: list[VersionChange] = []

    def apply(index: int, field: str) -> None:
        before = lines[index]
        after = _rewrite_line(before, suffix)
        if after != before:
            old = _unquote(KEY_LINE_RE.match(before).group("value"))
            new = _unquote(KEY_LINE_RE.match(after).group("value"))
            lines[index] = after
            changes.append(VersionChange(field=field, old=old, new=new))

    for index, line in enumerate(lines):
        match = KEY_LINE_RE.match(line)
        if match and match.group("indent") == "" and not match.group("dash"):
            if match.group("key") in wanted_keys:
                apply(index, match.group("key"))

    if wanted_deps:
        for key_column, indexes in list(_dependency_entries(lines)):
            fields = _entry_fields(lines, key_column, indexes)
            if "name" not in fields or "version" not in fields:
                continue
            name_match = KEY_LINE_RE.match(lines[fields["name"]])
            name = _unquote(name_match.group("value") or "")
            if name in wanted_deps:
                apply(fields["version"], f"dependencies[{name}].version")

    return "\n".join(lines), changes


def verify_stripped(
    text: str,
    *,
    top_level_keys: Iterable[str],
    dependency_names: Iterable[str],
    source: str,
    suffix: str = PRERELEASE_SUFFIX,
) -> None:
    """Re-parse the rewritten chart and fail if any targeted field kept the suffix."""
    chart = load_yaml_text(text, source=source)
    leftovers = [key for key in top_level_keys if str(chart.get(key, "")).endswith(suffix)]
    wanted = set(dependency_names)
    for dependency in chart.get("dependencies") or []:
        if not isinstance(dependency, dict) or dependency.get("name") not in wanted:
            continue
        if str(dependency.get("version", "")).endswith(suffix):
            leftovers.append(f"dependencies[{dependency['name']}].version")
    if leftovers:
        raise ReleaseToolError(f"Could not update {', '.join(leftovers)} in {source}")


def plan_chart_update(
    chart_file: Path,
    *,
    top_level_keys: Iterable[str],
    dependency_names: Iterable[str] = (),
) -> tuple[str, list[VersionChange]]:
    """Compute and verify the rewritten text for one Chart.yaml without writing it."""
    if not chart_file.is_file():
        raise ReleaseToolError(f"Chart file not found: {chart_file}")
    keys = tuple(top_level_keys)
    deps = tuple(dependency_names)

    new_text, changes = strip_prerelease(
        chart_file.read_text(encoding="utf-8"),
        top_level_keys=keys,
        dependency_names=deps,
    )
    verify_stripped(new_text, top_level_keys=keys, dependency_names=deps, source=str(chart_file))
    return new_text, changes


def update_chart_file(
    chart_file: Path,
    *,
    top_level_keys: Iterable[str],
    dependency_names: Iterable[str] = (),
    write: bool = True,
) -> list[VersionChange]:
    """Strip the prerelease suffix in one Chart.yaml and return the changes."""
    new_text, changes = plan_chart_update(
        chart_file,
        top_level_keys=top_level_keys,
        dependency_names=dependency_names,
    )
    if changes and write:
        chart_file.write_text(new_text, encoding="utf-8")
    return changes


def update_release_charts(chart_dir: Path, *, write: bool = True) -> dict[Path, list[VersionChange]]:
    """
    Update the umbrella chart and the bundled CRD chart.

    Both rewrites are planned and verified before either file is written.
    """
    umbrella = chart_dir / "Chart.yaml"
    crd_chart = chart_dir / "charts" / CRD_CHART_NAME / "Chart.yaml"
    plans = {
        umbrella: plan_chart_update(
            umbrella,
            top_level_keys=UMBRELLA_TOP_LEVEL_KEYS,
            dependency_names=UMBRELLA_DEPENDENCIES,
        ),
        crd_chart: plan_chart_update(crd_chart, top_level_keys=("version",)),
    }
    if write:
        for chart_file, (new_text, changes) in plans.items():
            if changes:
                chart_file.write_text(new_text, encoding="utf-8")
    return {chart_file: changes for chart_file, (_text, changes) in plans.items()}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="update-chart-version",
        description='Remove the "-prerelease" suffix from chart & dependencies versions in Chart.yaml.',
    )
    parser.add_argument("--root-dir", default=None, help="Repository root [default=$ROOT_DIR or .]")
    parser.add_argument("--chart-dir", default=None, help="Chart directory [default=<root>/charts]")
    parser.add_argument("--check", action="store_true", help="Report changes without writing files")
    args = parser.parse_args(argv)

    chart_dir = Path(args.chart_dir) if args.chart_dir else root_dir(args.root_dir) / "charts"
    results = update_release_charts(chart_dir, write=not args.check)

    verb = "Would update" if args.check else "Updated"
    for chart_file, changes in results.items():
        if not changes:
            print(f"No prerelease versions in {chart_file}")
        for change in changes:
            print(f"{verb} {chart_file}: {change.field} {change.old} -> {change.new}")


if __name__ == "__main__":
    main()
