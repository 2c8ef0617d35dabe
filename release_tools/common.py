"""
Script: release_tools/common.py
What: Shared helper functions used by all `release_tools` modules.
Doing: Wraps env reads, command execution, YAML loading, and GitHub output writes.
Why: Avoids duplicated helper code.
Goal: Keep behavior consistent across all helper modules.
"""

from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

import yaml


class ReleaseToolError(RuntimeError):
    """Raised when a release helper hits a known error condition."""


def require_env(name: str) -> str:
    """Return a required environment variable or raise a clear error."""
    value = os.environ.get(name)
    if value is None or value == "":
        raise ReleaseToolError(f"Missing required environment variable: {name}")
    return value


def optional_env(name: str, default: str = "") -> str:
    """Return an environment variable with a fallback default."""
    return os.environ.get(name, default)


def root_dir(value: str | None = None) -> Path:
    """
    Resolve the repository root used for relative chart/submodule paths.

    Order: explicit value, then `ROOT_DIR`, then the current directory.
    """
    return Path(value or optional_env("ROOT_DIR") or ".").resolve()


def run_cmd(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    cwd: str | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Run a command and return stdout, raising a readable error on failure."""
    # Extra env values are layered on top of the current process env.
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    try:
        result = subprocess.run(
            list(args),
            check=True,
            text=True,
            capture_output=capture_output,
            cwd=cwd,
            input=input_text,
            env=full_env,
        )
    except FileNotFoundError as exc:
        raise ReleaseToolError(f"Command not found: {args[0]}") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        stdout = (exc.stdout or "").strip()
        details = stderr or stdout or str(exc)
        raise ReleaseToolError(f"Command failed: {' '.join(args)}\n{details}") from exc

    if not capture_output:
        return ""
    return result.stdout


def run_json_cmd(args: Sequence[str]) -> dict:
    """Run a command that returns JSON and parse it."""
    output = run_cmd(args)
    try:
        return json.loads(output)
    except json.JSONDecodeError as exc:
        raise ReleaseToolError(f"Expected JSON from command: {' '.join(args)}") from exc


def command_succeeds(args: Sequence[str], *, cwd: str | None = None) -> bool:
    """True when the command exits with status 0."""
    try:
        run_cmd(args, cwd=cwd)
        return True
    except ReleaseToolError:
        return False


def write_github_outputs(values: Mapping[str, str]) -> None:
    """
    Write step outputs for GitHub Actions.

    GitHub provides a file path in `GITHUB_OUTPUT`; writing `name=value` lines
    there makes that value available to later steps in the same job.
    """
    output_file = require_env("GITHUB_OUTPUT")
    with open(output_file, "a", encoding="utf-8") as handle:
        for key, value in values.items():
            handle.write(f"{key}={value}\n")


def write_github_outputs_if_available(values: Mapping[str, str]) -> None:
    """Same as `write_github_outputs`, but skipped when run outside Actions."""
    if optional_env("GITHUB_OUTPUT"):
        write_github_outputs(values)


def load_yaml_text(text: str, *, source: str = "<string>") -> dict:
    """Parse one YAML document that must be a mapping."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ReleaseToolError(f"Invalid YAML in {source}: {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ReleaseToolError(f"Expected a YAML mapping in {source}")
    return document


def load_yaml_file(file_path: Path) -> dict:
    """Read and parse a YAML mapping from disk."""
    if not file_path.is_file():
        raise ReleaseToolError(f"File not found: {file_path}")
    return load_yaml_text(file_path.read_text(encoding="utf-8"), source=str(file_path))
