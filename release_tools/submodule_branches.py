"""
Script: release_tools/submodule_branches.py
What: Points every git submodule at the right tracking branch.
Doing: Sets, clears or updates submodule branches, or derives the branch from the mayastor chart dependency.
Why: Release branches of this repo must track the matching release branch of each submodule.
Goal: Keep `.gitmodules` branch settings aligned with the chart being released.
"""

from __future__ import annotations

import argparse
from pathlib import Path

from release_tools.common import ReleaseToolError, load_yaml_file, root_dir, run_cmd
from release_tools.versions import parse_version


MAYASTOR_NAME = "mayastor"
DEVELOP_BRANCH = "develop"
RELEASE_BRANCH_PREFIX = "release/"


def submodule_paths(repo_root: Path) -> list[str]:
    """Read submodule paths from `.gitmodules` (`submodule.<name>.path <path>` lines)."""
    output = run_cmd(
        ["git", "config", "--file", ".gitmodules", "--get-regexp", "path"],
        cwd=str(repo_root),
    )
    paths = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            paths.append(parts[1])
    return paths


def is_settable_branch(branch: str) -> bool:
    """Only `develop` and `release/*` are tracked by submodules."""
    return branch == DEVELOP_BRANCH or branch.startswith(RELEASE_BRANCH_PREFIX)


def branch_for_version(version_text: str) -> str:
    """
    Map a chart version to the submodule branch it is built from.

    `0.0.0` and `*-develop` come from `develop`; everything else from
    `release/<major>.<minor>`.
    """
    version = parse_version(version_text)
    if (version.major, version.minor, version.patch) == (0, 0, 0) and not version.prerelease:
        return DEVELOP_BRANCH
    if version.prerelease == DEVELOP_BRANCH:
        return DEVELOP_BRANCH
    return f"{RELEASE_BRANCH_PREFIX}{version.major}.{version.minor}"


def chart_dependency_version(chart_file: Path, dependency: str) -> str:
    chart = load_yaml_file(chart_file)
    for entry in chart.get("dependencies") or []:
        if isinstance(entry, dict) and entry.get("name") == dependency:
            version = str(entry.get("version") or "")
            if version:
                return version
    raise ReleaseToolError(f"No {dependency} dependency version in {chart_file}")


def remote_branch_exists(submodule_dir: Path, branch: str) -> bool:
    output = run_cmd(["git", "branch", "--list", "-r", f"origin/{branch}"], cwd=str(submodule_dir))
    return bool(output.strip())


def mayastor_branch(repo_root: Path) -> str:
    version = chart_dependency_version(repo_root / "charts" / "Chart.yaml", MAYASTOR_NAME)
    branch = branch_for_version(version)
    if not remote_branch_exists(repo_root / MAYASTOR_NAME, branch):
        raise ReleaseToolError(f"Cannot determine the correct {MAYASTOR_NAME} branch!")
    return branch


def set_branch_all(repo_root: Path, branch: str | None) -> None:
    """Set (or with `None`, reset to default) the tracking branch of every submodule."""
    branch_args = ["--branch", branch] if branch else ["--default"]
    for path in submodule_paths(repo_root):
        run_cmd(["git", "submodule", "set-branch", *branch_args, path], cwd=str(repo_root))
        print(f"{path}: {'branch ' + branch if branch else 'default branch'}")


def update_all(repo_root: Path) -> None:
    for path in submodule_paths(repo_root):
        run_cmd(["git", "submodule", "update", "--remote", path], cwd=str(repo_root), capture_output=False)
        run_cmd(
            ["git", "submodule", "update", "--init", "--recursive", "."],
            cwd=str(repo_root / path),
            capture_output=False,
        )


def current_branch(repo_root: Path) -> str:
    return run_cmd(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=str(repo_root)).strip()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="set-submodule-branches", description="Manage submodule branches.")
    parser.add_argument("-b", "--branch", default=None, help="Branch to track [default=current branch]")
    parser.add_argument("-c", "--clear", action="store_true", help="Reset submodules to their default branch")
    parser.add_argument("-u", "--update", action="store_true", help="Update submodules from their remotes")
    parser.add_argument("--root-dir", default=None, help="Repository root [default=$ROOT_DIR or .]")
    args = parser.parse_args(argv)

    repo_root = root_dir(args.root_dir)
    branch = args.branch or current_branch(repo_root)

    if args.update:
        update_all(repo_root)
    elif args.clear:
        set_branch_all(repo_root, None)
    elif is_settable_branch(branch):
        set_branch_all(repo_root, branch)
    else:
        # Nothing usable given, so derive the branch from the charts.
        set_branch_all(repo_root, mayastor_branch(repo_root))


if __name__ == "__main__":
    main()
