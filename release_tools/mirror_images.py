"""
Script: release_tools/mirror_images.py
What: Mirrors the release images from one registry namespace to another.
Doing: Runs `crane copy --platform all` for each image at one tag.
Why: Staged images get promoted by copying, not rebuilding, so multi-platform indexes and digests stay identical.
Goal: Publish the exact staged image content under the target namespace.
"""

from __future__ import annotations

import argparse
from typing import Callable, Sequence

from release_tools.common import ReleaseToolError, optional_env, run_cmd
from release_tools.release import default_image_names


USAGE = "Usage: mirror-images --source-namespace <source> --target-namespace <target> --tag <tag>"


def image_list(cli_images: Sequence[str] | None = None) -> list[str]:
    """
    Pick the images to mirror.

    Order: `--image` flags, then `MIRROR_IMAGES` (space separated), then the
    release defaults. Only the final path component is kept, so
    `docker.io/openebs/openebs-upgrade-job` becomes `openebs-upgrade-job`.
    """
    if cli_images:
        names = list(cli_images)
    elif optional_env("MIRROR_IMAGES").strip():
        names = optional_env("MIRROR_IMAGES").split()
    else:
        names = default_image_names()
    return [name.rsplit("/", 1)[-1] for name in names]


def crane_copy(source: str, destination: str) -> None:
    run_cmd(["crane", "copy", "--platform", "all", source, destination], capture_output=False)


def mirror_images(
    *,
    images: Sequence[str],
    source_namespace: str,
    target_namespace: str,
    tag: str,
    copy: Callable[[str, str], None] = crane_copy,
) -> list[tuple[str, str]]:
    """Copy each image in order; the first failure stops the run."""
    print(f"Mirroring images from {source_namespace} to {target_namespace} with tag {tag}")

    copied: list[tuple[str, str]] = []
    for image in images:
        print(f"Mirroring {image}:{tag}...")
        source = f"{source_namespace}/{image}:{tag}"
        destination = f"{target_namespace}/{image}:{tag}"
        copy(source, destination)
        copied.append((source, destination))
        print(f"Successfully mirrored {image}:{tag}")
    return copied


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="mirror-images", description="Mirror release images with crane.")
    parser.add_argument("--source-namespace", default="")
    parser.add_argument("--target-namespace", default="")
    parser.add_argument("--tag", default="")
    parser.add_argument("--image", action="append", dest="images", help="Image to mirror (repeatable)")
    args = parser.parse_args(argv)

    if not (args.source_namespace and args.target_namespace and args.tag):
        raise ReleaseToolError(USAGE)

    mirror_images(
        images=image_list(args.images),
        source_namespace=args.source_namespace,
        target_namespace=args.target_namespace,
        tag=args.tag,
    )


if __name__ == "__main__":
    main()
