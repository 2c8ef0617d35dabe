"""
Script: release_tools/validate_release.py
What: Validates release inputs before any artifact is built or published.
Doing: Checks the trigger and tag format, then makes sure the tag, images and chart version are not already published.
Why: Registries and the Helm index are append-only in practice; overwriting a release must fail before the build starts.
Goal: Stop a staging/release run early with one clear message.
"""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import requests

from release_tools.common import (
    ReleaseToolError,
    command_succeeds,
    load_yaml_file,
    load_yaml_text,
    optional_env,
    root_dir,
    run_cmd,
    write_github_outputs_if_available,
)
from release_tools.release import default_image_names


TRIGGERS = ("release", "staging", "develop", "prerelease")

TAG_FORMATS = {
    "release": (re.compile(r"^v[0-9]+\.[0-9]+\.[0-9]+(-rc\.[0-9]+)?$"), "vX.Y.Z or vX.Y.Z-rc.N"),
    "staging": (re.compile(r"^v[0-9]+\.[0-9]+\.[0-9]+(-rc\.[0-9]+)?$"), "vX.Y.Z or vX.Y.Z-rc.N"),
    "develop": (re.compile(r"^v[0-9]+\.[0-9]+\.[0-9]+-develop$"), "vX.Y.Z-develop"),
    "prerelease": (re.compile(r"^v[0-9]+\.[0-9]+\.[0-9]+-prerelease$"), "vX.Y.Z-prerelease"),
}

DOCKERHUB_REGISTRY = "docker.io"
DOCKERHUB_TAG_URL = "https://hub.docker.com/v2/repositories/{repository}/tags/{tag}"
HTTP_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class ValidationSettings:
    """Environment-driven settings; defaults match the openebs release layout."""

    dockerhub_org: str
    image_registry: str
    chart_registry: str
    chart_name: str
    namespace: str
    index_remote: str
    index_branch: str
    index_branch_file: str
    chart_file: Path
    repo_root: Path

    @classmethod
    def from_env(cls, repo_root: Path) -> "ValidationSettings":
        github_org = optional_env("GITHUB_ORG", "openebs")
        return cls(
            dockerhub_org=optional_env("DOCKERHUB_ORG", "openebs"),
            image_registry=optional_env("IMAGE_REGISTRY", DOCKERHUB_REGISTRY),
            chart_registry=optional_env("CHART_REGISTRY", "gh-pages"),
            chart_name=optional_env("CHART_NAME", "openebs"),
            namespace=optional_env("NAMESPACE", f"{github_org}/helm"),
            index_remote=optional_env("INDEX_REMOTE", "origin"),
            index_branch=optional_env("INDEX_BRANCH", "gh-pages"),
            index_branch_file=optional_env("INDEX_BRANCH_FILE", "index.yaml"),
            chart_file=Path(optional_env("CHART_FILE") or repo_root / "charts" / "Chart.yaml"),
            repo_root=repo_root,
        )


def validate_trigger(trigger: str) -> None:
    if trigger not in TRIGGERS:
        raise ReleaseToolError(f"Error: Invalid trigger '{trigger}'.")


def tag_from_chart(chart_file: Path) -> str:
    """Derive `v<version>` from the chart's top-level `version` key."""
    if not chart_file.is_file():
        raise ReleaseToolError(f"Error: Chart.yaml not found at {chart_file} and no tag provided")
    version = str(load_yaml_file(chart_file).get("version") or "").strip()
    if not version:
        raise ReleaseToolError(f"Error: No version found in {chart_file}")
    return f"v{version}"


def validate_tag(trigger: str, tag: str) -> None:
    pattern, expected = TAG_FORMATS[trigger]
    if not pattern.fullmatch(tag):
        raise ReleaseToolError(f"Tag must be in format {expected}")


def version_from_tag(tag: str) -> str:
    return tag[1:] if tag.startswith("v") else tag


def remote_tag_exists(ls_remote_output: str, tag: str) -> bool:
    """Exact match on `refs/tags/<tag>` in `git ls-remote -t` output."""
    wanted = f"refs/tags/{tag}"
    for line in ls_remote_output.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] == wanted:
            return True
    return False


def dockerhub_tag_exists(repository: str, tag: str) -> bool:
    """True when Docker Hub answers 2xx for the repository tag."""
    # Accept `docker.io/org/name` as well as `org/name`.
    if repository.startswith("docker.io/"):
        repository = repository[len("docker.io/") :]
    url = DOCKERHUB_TAG_URL.format(repository=repository, tag=tag)
    try:
        response = requests.get(url, timeout=HTTP_TIMEOUT_SECONDS)
    except requests.RequestException:
        return False
    return response.ok


def index_chart_versions(index_text: str, chart_name: str) -> list[str]:
    """Return `.entries.<chart>[].version` values from a Helm repo `index.yaml`."""
    index = load_yaml_text(index_text, source="index.yaml")
    entries = (index.get("entries") or {}).get(chart_name) or []
    return [str(entry.get("version")) for entry in entries if isinstance(entry, dict) and entry.get("version")]


def fetch_index_yaml(settings: ValidationSettings) -> str:
    cwd = str(settings.repo_root)
    run_cmd(["git", "fetch", settings.index_remote, settings.index_branch, "--depth", "1"], cwd=cwd)
    return run_cmd(
        [
            "git",
            "show",
            f"{settings.index_remote}/{settings.index_branch}:{settings.index_branch_file}",
        ],
        cwd=cwd,
    )


def check_remote_tag(settings: ValidationSettings, tag: str) -> None:
    output = run_cmd(["git", "ls-remote", "-t", settings.index_remote], cwd=str(settings.repo_root))
    if remote_tag_exists(output, tag):
        raise ReleaseToolError(f"Tag {tag} exists on remote {settings.index_remote}")
    print(f"Tag {tag} does not exist on remote {settings.index_remote}")


def check_images(
    settings: ValidationSettings,
    tag: str,
    *,
    images: Sequence[str] | None = None,
    tag_exists: Callable[[str, str], bool] = dockerhub_tag_exists,
) -> None:
    # Tag lookups go through the Docker Hub API only.
    if settings.image_registry != DOCKERHUB_REGISTRY:
        raise ReleaseToolError(
            f"Image checks only support {DOCKERHUB_REGISTRY}, not IMAGE_REGISTRY={settings.image_registry}"
        )
    for image_name in images if images is not None else default_image_names():
        repository = f"{settings.dockerhub_org}/{image_name}"
        if tag_exists(repository, tag):
            raise ReleaseToolError(f"Image {repository}:{tag} already exists")
        print(f"Image {repository}:{tag} does not exist")


def check_chart(
    settings: ValidationSettings,
    version: str,
    *,
    index_loader: Callable[[ValidationSettings], str] = fetch_index_yaml,
    oci_chart_exists: Callable[[str, str], bool] | None = None,
) -> None:
    registry = settings.chart_registry
    chart = settings.chart_name

    if registry == "gh-pages":
        if version in index_chart_versions(index_loader(settings), chart):
            raise ReleaseToolError(f"Chart {chart}:{version} already exists on GitHub Pages")
        print(f"Chart {chart}:{version} does not exist on GitHub Pages")
    elif registry.startswith("oci://"):
        chart_ref = f"{registry}/{settings.namespace}/{chart}"
        exists = oci_chart_exists or _helm_chart_exists
        if exists(chart_ref, version):
            raise ReleaseToolError(f"Helm chart already exists in {registry}")
        print(f"Helm chart {chart}:{version} does not exist in {registry}")
    else:
        raise ReleaseToolError(f"Invalid chart location: {registry}")


def _helm_chart_exists(chart_ref: str, version: str) -> bool:
    return command_succeeds(["helm", "show", "chart", chart_ref, "--version", version])


def run_artifact_checks(trigger: str, settings: ValidationSettings, tag: str, version: str) -> None:
    if trigger == "staging":
        check_images(settings, tag)
        check_chart(settings, version)
    elif trigger == "release":
        check_chart(settings, version)
    else:
        print(f"Skipping artifact checks for {trigger}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="validate-release", description="Validate release trigger and tag.")
    parser.add_argument(
        "--trigger",
        "--type",
        dest="trigger",
        default="",
        help="release, staging, develop, prerelease",
    )
    parser.add_argument("--tag", default="", help="Release tag (e.g., v2.9.0)")
    parser.add_argument("--root-dir", default=None, help="Repository root [default=$ROOT_DIR or .]")
    args = parser.parse_args(argv)

    settings = ValidationSettings.from_env(root_dir(args.root_dir))

    print(f"Validating trigger: {args.trigger}")
    validate_trigger(args.trigger)
    print(f"Valid trigger: {args.trigger}")

    tag = args.tag
    if not tag:
        tag = tag_from_chart(settings.chart_file)
        print(f"Using chart version from {settings.chart_file}: {tag}")

    print(f"Validating tag: {tag}")
    validate_tag(args.trigger, tag)

    if args.trigger == "staging":
        check_remote_tag(settings, tag)

    print("Input validations passed")

    version = version_from_tag(tag)
    run_artifact_checks(args.trigger, settings, tag, version)

    write_github_outputs_if_available({"tag": tag, "version": version})
    print("All validations completed successfully")


if __name__ == "__main__":
    main()
