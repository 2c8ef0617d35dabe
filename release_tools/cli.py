from __future__ import annotations

import argparse
import sys
from collections.abc import Callable, Mapping

from release_tools.common import ReleaseToolError


CommandMain = Callable[[list[str]], None]


def command_map() -> dict[str, CommandMain]:
    """
    Map CLI command names to Python entry functions.

    Each value is a `main(argv)` function from one release helper module.
    """
    from release_tools.chart_version import main as update_chart_version
    from release_tools.kubectl_oci import main as kubectl_oci
    from release_tools.mirror_images import main as mirror_images
    from release_tools.release import main as release
    from release_tools.submodule_branches import main as set_submodule_branches
    from release_tools.upgrade_preflight import main as upgrade_preflight
    from release_tools.validate_release import main as validate_release

    return {
        "kubectl-oci": kubectl_oci,
        "mirror-images": mirror_images,
        "validate-release": validate_release,
        "update-chart-version": update_chart_version,
        "set-submodule-branches": set_submodule_branches,
        "release": release,
        "upgrade-preflight": upgrade_preflight,
    }


def build_parser(commands: Mapping[str, CommandMain]) -> argparse.ArgumentParser:
    """Build argument parser with one positional command choice; the rest goes to the command."""
    parser = argparse.ArgumentParser(
        prog="python3 -m release_tools.cli",
        description="Run one release helper command.",
    )
    parser.add_argument("command", choices=sorted(commands.keys()))
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the command")
    return parser


def run_command(command: str, commands: Mapping[str, CommandMain], argv: list[str] | None = None) -> None:
    """
    Run one registered command.

    `commands` is passed in to keep this function easy to test.
    """
    commands[command](list(argv or []))


def main(argv: list[str] | None = None) -> None:
    # Build command registry once so parser and dispatcher use the same keys.
    commands = command_map()
    parser = build_parser(commands)
    args = parser.parse_args(argv)

    try:
        run_command(args.command, commands, args.args)
    except ReleaseToolError as exc:
        # Keep failures short and readable in CI logs.
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
