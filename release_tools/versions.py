"""
Script: release_tools/versions.py
What: Small semantic-version type shared by the release helpers.
Doing: Parses `X.Y.Z[-pre][+build]` strings and orders them by semver precedence.
Why: Tag checks, branch selection and upgrade-path checks all compare versions.
Goal: One parser with one set of rules instead of per-script regexes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from release_tools.common import ReleaseToolError


SEMVER_RE = re.compile(
    r"^v?(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


def _prerelease_key(prerelease: str) -> tuple:
    # A release (no prerelease) sorts after every prerelease of the same core.
    if not prerelease:
        return (1,)
    parts = []
    for identifier in prerelease.split("."):
        if identifier.isdigit():
            parts.append((0, int(identifier), ""))
        else:
            parts.append((1, 0, identifier))
    return (0, tuple(parts))


@dataclass(frozen=True, order=True)
class SemVer:
    sort_key: tuple = field(init=False, repr=False, compare=True)
    major: int = field(compare=False)
    minor: int = field(compare=False)
    patch: int = field(compare=False)
    prerelease: str = field(default="", compare=False)
    build: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        # Build metadata does not take part in precedence.
        key = (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))
        object.__setattr__(self, "sort_key", key)

    @property
    def is_stable(self) -> bool:
        return not self.prerelease

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text


def parse_version(text: str) -> SemVer:
    """Parse a version string, accepting an optional leading `v`."""
    match = SEMVER_RE.match(str(text).strip())
    if not match:
        raise ReleaseToolError(f"Invalid semantic version: {text!r}")
    major, minor, patch, prerelease, build = match.groups()
    return SemVer(
        major=int(major),
        minor=int(minor),
        patch=int(patch),
        prerelease=prerelease or "",
        build=build or "",
    )


def strip_suffix(value: str, suffix: str) -> str:
    """Remove `suffix` only when it ends the value."""
    if suffix and value.endswith(suffix):
        return value[: -len(suffix)]
    return value
