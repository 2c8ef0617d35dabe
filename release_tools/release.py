"""
Script: release_tools/release.py
What: Builds and uploads the extension images and plugin binaries.
Doing: Makes sure the shared release script is checked out, cleans the chart symlink, and runs the shared script.
Why: The image build logic lives in the control-plane dependency; this repo only supplies its image list.
Goal: Keep one source for the release image list used by release, mirroring and validation.
"""

from __future__ import annotations

import argparse
from pathlib import Path

from release_tools.common import ReleaseToolError, optional_env, root_dir, run_cmd


SHARED_RELEASE_SCRIPT = Path(
    "mayastor/dependencies/control-plane/utils/dependencies/scripts/release.sh"
)
CHART_PLUGIN_LINK = Path("charts/kubectl-openebs")

PROJECT = "openebs"
DEFAULT_IMAGES = ("upgrade-job",)
BUILD_BINARIES = ("kubectl-openebs",)


def default_image_names(product_prefix: str = PROJECT) -> list[str]:
    """Return the published image names, e.g. `openebs-upgrade-job`."""
    return [f"{product_prefix}-{name}" for name in DEFAULT_IMAGES]


def release_env() -> dict[str, str]:
    """Environment the shared release script reads its image list from."""
    return {
        "IMAGES": " ".join(DEFAULT_IMAGES),
        "BUILD_BINARIES": " ".join(BUILD_BINARIES),
        "PROJECT": PROJECT,
    }


def ensure_shared_script(repo_root: Path) -> Path:
    """Return the shared release script path, initializing submodules locally if needed."""
    script = repo_root / SHARED_RELEASE_SCRIPT
    # CI checks out submodules on its own, so only fix this up for local runs.
    if not script.is_file() and not optional_env("CI"):
        run_cmd(["git", "submodule", "update", "--init", "--recursive"], cwd=str(repo_root))
    if not script.is_file():
        raise ReleaseToolError(f"Shared release script not found: {script}")
    return script


def remove_chart_plugin_link(repo_root: Path) -> bool:
    """
    Remove the `charts/kubectl-openebs` symlink if present.

    `.helmignore` does not apply to symlinks, so the link would end up inside
    the packaged chart used by the upgrade image.
    """
    link = repo_root / CHART_PLUGIN_LINK
    if link.is_symlink():
        link.unlink()
        return True
    return False


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="release",
        description=(
            "Build and upload extension images and binaries. "
            "Remaining arguments (for example --dry-run) go to the shared release script."
        ),
    )
    parser.add_argument("--root-dir", default=None, help="Repository root [default=$ROOT_DIR or .]")
    args, passthrough = parser.parse_known_args(argv)

    repo_root = root_dir(args.root_dir)
    script = ensure_shared_script(repo_root)

    if remove_chart_plugin_link(repo_root):
        print(f"Removed chart symlink {repo_root / CHART_PLUGIN_LINK}")

    run_cmd(
        ["bash", str(script), *passthrough],
        cwd=str(repo_root),
        env=release_env(),
        capture_output=False,
    )


if __name__ == "__main__":
    main()
