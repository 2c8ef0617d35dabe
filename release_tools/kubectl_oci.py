"""
Script: release_tools/kubectl_oci.py
What: Pushes and pulls the kubectl plugin binaries as one OCI artifact bundle.
Doing: Logs in with `oras`, tars the `artifacts` directory for push, and untars the pulled bundle for pull.
Why: Plugin binaries are not container images, but they still need to travel between release stages.
Goal: Move all platform binaries for one release tag as a single registry artifact.
"""

from __future__ import annotations

import argparse
import tarfile
from dataclasses import dataclass
from pathlib import Path

from release_tools.common import ReleaseToolError, optional_env, run_cmd


DEFAULT_REGISTRY = "ghcr.io"
DEFAULT_PLUGIN = "openebs"
ACTIONS = ("push", "pull")


@dataclass(frozen=True)
class BundleTarget:
    """Where one plugin bundle lives in the registry."""

    registry: str
    namespace: str
    plugin: str
    tag: str

    @property
    def repository(self) -> str:
        return f"{self.registry}/{self.namespace}/kubectl-{self.plugin}"

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def bundle_name(self) -> str:
        return f"kubectl-{self.plugin}-all-platforms-{self.tag}.tar.gz"

    @property
    def artifact_type(self) -> str:
        return f"application/vnd.{self.plugin}.kubectl.bundle.v1+tar+gzip"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubectl-oci",
        description="Push or pull kubectl plugin binaries as an OCI artifact bundle.",
        epilog=(
            "Examples:\n"
            "  kubectl-oci push --tag v1.0.0 --namespace openebs/dev --username user --password token\n"
            "  kubectl-oci pull --tag v1.0.0 --namespace openebs/dev --username user --password token"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("action", nargs="?", help="push or pull")
    parser.add_argument("--tag", default="", help="Release tag (required)")
    parser.add_argument("--namespace", default="", help="Namespace path (required)")
    parser.add_argument("--username", default="", help="Registry username (required)")
    parser.add_argument("--password", default="", help="Registry token/password (required)")
    parser.add_argument(
        "--registry",
        default=DEFAULT_REGISTRY,
        help=f"The registry to push/pull from [default={DEFAULT_REGISTRY}]",
    )
    parser.add_argument(
        "--artifacts-dir",
        default="artifacts",
        help="Directory holding the plugin binaries [default=artifacts]",
    )
    return parser


def validate_args(args: argparse.Namespace) -> None:
    """Reject a missing/unknown action and missing required options."""
    if not args.action:
        raise ReleaseToolError("Error: Action required (push or pull)")
    if args.action not in ACTIONS:
        raise ReleaseToolError(f"Error: Invalid action '{args.action}'. Must be 'push' or 'pull'")
    if not (args.tag and args.namespace and args.username and args.password):
        raise ReleaseToolError(
            "Error: All options (--tag, --namespace, --username, --password) are required"
        )


def oras_login(registry: str, username: str, password: str) -> None:
    print(f"Logging in to {registry}...")
    # The token goes through stdin so it never shows up in the process list.
    run_cmd(
        ["oras", "login", registry, "--username", username, "--password-stdin"],
        input_text=password,
    )


def create_bundle(artifacts_dir: Path, bundle_path: Path) -> None:
    """Tar+gzip the contents of `artifacts_dir`, like `tar -czf bundle -C dir .`."""
    with tarfile.open(bundle_path, "w:gz") as tar:
        tar.add(str(artifacts_dir), arcname=".")


def extract_bundle(bundle_path: Path, destination: Path) -> list[str]:
    """
    Extract a pulled bundle and return the member names.

    `filter="data"` rejects absolute paths, parent-directory escapes and unsafe
    links coming from the registry.
    """
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(bundle_path, "r:gz") as tar:
        names = tar.getnames()
        tar.extractall(destination, filter="data")
    return names


def push_artifacts(target: BundleTarget, artifacts_dir: Path, work_dir: Path) -> None:
    print(f"Pushing kubectl binaries to {target.repository} with tag {target.tag}")

    if not artifacts_dir.is_dir():
        raise ReleaseToolError(f"Error: artifacts directory not found: {artifacts_dir}")

    print("Creating combined tarball of all kubectl binaries...")
    bundle_path = work_dir / target.bundle_name
    try:
        create_bundle(artifacts_dir, bundle_path)
        print(f"Pushing combined tarball to {target.reference}")
        # oras records the file name as the layer title, so push from the
        # bundle's directory with a bare file name.
        run_cmd(
            [
                "oras",
                "push",
                target.reference,
                "--artifact-type",
                target.artifact_type,
                target.bundle_name,
            ],
            cwd=str(work_dir),
            capture_output=False,
        )
    finally:
        bundle_path.unlink(missing_ok=True)

    print("All kubectl binaries pushed successfully as a single bundle!")
    print(f"Bundle available at: {target.reference}")


def pull_artifacts(target: BundleTarget, artifacts_dir: Path, work_dir: Path) -> None:
    print(f"Pulling kubectl binaries bundle from {target.repository} for release {target.tag}")

    print("Pulling kubectl bundle...")
    run_cmd(["oras", "pull", target.reference], cwd=str(work_dir), capture_output=False)

    bundle_path = work_dir / target.bundle_name
    if not bundle_path.is_file():
        raise ReleaseToolError("Error: Could not find kubectl bundle tarball")

    print("Extracting bundle to artifacts directory")
    try:
        extract_bundle(bundle_path, artifacts_dir)
    finally:
        bundle_path.unlink(missing_ok=True)

    print("Contents of artifacts directory after extraction:")
    for path in sorted(artifacts_dir.rglob("*")):
        print(f"  {path.relative_to(artifacts_dir)}")

    print("All kubectl binaries pulled successfully!")


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    validate_args(args)

    target = BundleTarget(
        registry=args.registry,
        namespace=args.namespace,
        plugin=optional_env("PLUGIN", DEFAULT_PLUGIN),
        tag=args.tag,
    )
    work_dir = Path.cwd()
    artifacts_dir = Path(args.artifacts_dir)
    if not artifacts_dir.is_absolute():
        artifacts_dir = work_dir / artifacts_dir

    oras_login(target.registry, args.username, args.password)

    if args.action == "push":
        push_artifacts(target, artifacts_dir, work_dir)
    else:
        pull_artifacts(target, artifacts_dir, work_dir)


if __name__ == "__main__":
    main()
