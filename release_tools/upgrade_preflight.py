"""
Script: release_tools/upgrade_preflight.py
What: Inspects a deployed openebs Helm release before an upgrade.
Doing: Reads the release record through `kubectl`, decodes it, checks the upgrade path, and writes values overrides.
Why: Upgrades from old charts need CRD toggles and path checks that `helm upgrade` alone does not do.
Goal: Fail before touching the cluster when the upgrade cannot work, and hand helm the right overrides.
"""

from __future__ import annotations

import argparse
import base64
import binascii
import gzip
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

import yaml

from release_tools.common import (
    ReleaseToolError,
    optional_env,
    run_json_cmd,
    write_github_outputs_if_available,
)
from release_tools.versions import SemVer, parse_version


UMBRELLA_CHART_VERSION_LOWERBOUND = parse_version("3.0.0")
PARTIAL_REBUILD_DISABLE_EXTENTS = (parse_version("3.7.0"), parse_version("3.10.0"))
FOUR_DOT_O = parse_version("4.0.0")
HELM_STORAGE_DRIVER_ENV = "HELM_DRIVER"
UMBRELLA_CHART_NAME = "openebs"

SECRET_DRIVERS = ("", "secret", "secrets")
CONFIGMAP_DRIVERS = ("configmap", "configmaps")

# If any CRD of a set already exists in the cluster, the chart must not install that set.
CRD_HELM_TOGGLES: dict[tuple[str, ...], str] = {
    (
        "volumesnapshotclasses.snapshot.storage.k8s.io",
        "volumesnapshotcontents.snapshot.storage.k8s.io",
        "volumesnapshots.snapshot.storage.k8s.io",
    ): "openebs-crds.csi.volumeSnapshots.enabled",
    ("jaegers.jaegertracing.io",): "mayastor.crds.jaeger.enabled",
    (
        "zfsvolumes.zfs.openebs.io",
        "zfsnodes.zfs.openebs.io",
        "zfsbackups.zfs.openebs.io",
        "zfsrestores.zfs.openebs.io",
        "zfssnapshots.zfs.openebs.io",
    ): "zfs-localpv.crds.zfsLocalPv.enabled",
    (
        "lvmvolumes.zfs.openebs.io",
        "lvmnodes.zfs.openebs.io",
        "lvmsnapshots.zfs.openebs.io",
    ): "lvm-localpv.crds.lvmLocalPv.enabled",
}


def _dig(document: Mapping | None, *keys: str):
    """Walk nested mappings, returning None when any level is missing."""
    value = document
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


@dataclass(frozen=True)
class HelmRelease:
    """
    The parts of a Helm release record the upgrade cares about.

    `values` are chart defaults; `config` holds what the user set with `--set`
    or `-f` at install time.
    """

    chart_version: SemVer
    values: dict
    config: dict

    @classmethod
    def from_release_json(cls, payload: bytes | str) -> "HelmRelease":
        try:
            document = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ReleaseToolError(f"Helm release data is not valid JSON: {exc}") from exc
        version = _dig(document, "chart", "metadata", "version")
        if not version:
            raise ReleaseToolError("Helm release data has no chart.metadata.version")
        return cls(
            chart_version=parse_version(str(version)),
            values=_dig(document, "chart", "values") or {},
            config=document.get("config") or {},
        )

    def mayastor_enabled(self) -> bool:
        # Explicit user config wins over chart defaults; the newer
        # `engines.replicated.mayastor` key wins over the v3 `mayastor` key.
        for source in (self.config, self.values):
            for path in (("engines", "replicated", "mayastor", "enabled"), ("mayastor", "enabled")):
                enabled = _dig(source, *path)
                if isinstance(enabled, bool):
                    return enabled
        return False


def decode_release_data(data: str | bytes) -> bytes:
    """Base64-decode and gunzip the `release` value written by Helm."""
    try:
        compressed = base64.b64decode(data, validate=False)
        return gzip.decompress(compressed)
    except (binascii.Error, OSError, EOFError) as exc:
        raise ReleaseToolError(f"Failed to decode helm release data: {exc}") from exc


def _single_item(items: list, kind: str, release_name: str) -> dict:
    if not items:
        raise ReleaseToolError(f"No helm {kind} found attached to release name {release_name}")
    if len(items) > 1:
        raise ReleaseToolError(f"Too many helm {kind}s found attached to release name {release_name}")
    return items[0]


def _release_value(item: dict, kind: str) -> str:
    data = item.get("data")
    if not data:
        raise ReleaseToolError(f"No data in helm {kind}")
    value = data.get("release")
    if not value:
        raise ReleaseToolError(f"No value mapped to the 'release' key in helm {kind}")
    return value


def _storage_kind(driver: str) -> str:
    if driver in SECRET_DRIVERS:
        return "secret"
    if driver in CONFIGMAP_DRIVERS:
        return "configmap"
    raise ReleaseToolError(f"'{driver}' storage driver for helm is not supported")


def _decode_item(item: dict, kind: str) -> bytes:
    # Secret data carries one more base64 layer (the Kubernetes one) than ConfigMap data.
    value = _release_value(item, kind)
    if kind == "secret":
        try:
            value = base64.b64decode(value)
        except binascii.Error as exc:
            raise ReleaseToolError(f"Failed to decode helm secret data: {exc}") from exc
    return decode_release_data(value)


def release_data_from_list(driver: str, list_json: dict, release_name: str) -> bytes:
    """Pull the decoded release record out of a `kubectl get -o json` list."""
    kind = _storage_kind(driver)
    item = _single_item(list_json.get("items") or [], kind, release_name)
    return _decode_item(item, kind)


def release_name_from_list(driver: str, list_json: dict, namespace: str, chart_name: str = UMBRELLA_CHART_NAME) -> str:
    """
    Find the one deployed release of `chart_name` in a `kubectl get -o json` list.

    Every item is decoded because the chart name lives inside the release
    record, not in the storage object's labels.
    """
    kind = _storage_kind(driver)
    names: list[str] = []
    for item in list_json.get("items") or []:
        try:
            document = json.loads(_decode_item(item, kind))
        except json.JSONDecodeError as exc:
            raise ReleaseToolError(f"Helm release record is not valid JSON: {exc}") from exc
        name = _dig(document, "name")
        if _dig(document, "chart", "metadata", "name") == chart_name and name:
            names.append(str(name))
    if not names:
        raise ReleaseToolError(f"No helm release found for chart {chart_name} in namespace {namespace}")
    if len(names) > 1:
        raise ReleaseToolError(
            f"Too many helm releases found for chart {chart_name} in namespace {namespace}: {', '.join(sorted(names))}"
        )
    return names[0]


def kubectl_release_query(driver: str, release_name: str | None, namespace: str) -> list[str]:
    """Build the `kubectl get` call for deployed release records; no name lists all of them."""
    name_label = f",name={release_name}" if release_name else ""
    if _storage_kind(driver) == "secret":
        return [
            "kubectl",
            "get",
            "secrets",
            "-n",
            namespace,
            "-l",
            f"status=deployed{name_label}",
            "--field-selector",
            "type=helm.sh/release.v1",
            "-o",
            "json",
        ]
    return [
        "kubectl",
        "get",
        "configmaps",
        "-n",
        namespace,
        "-l",
        f"owner=helm,status=deployed{name_label}",
        "-o",
        "json",
    ]


def discover_release_name(driver: str, namespace: str) -> str:
    list_json = run_json_cmd(kubectl_release_query(driver, None, namespace))
    return release_name_from_list(driver, list_json, namespace)


def fetch_helm_release(driver: str, release_name: str, namespace: str) -> HelmRelease:
    list_json = run_json_cmd(kubectl_release_query(driver, release_name, namespace))
    return HelmRelease.from_release_json(release_data_from_list(driver, list_json, release_name))


def fetch_crd_names() -> list[str]:
    crds = run_json_cmd(["kubectl", "get", "crd", "-o", "json"])
    return [str(_dig(item, "metadata", "name")) for item in crds.get("items") or [] if _dig(item, "metadata", "name")]


@dataclass(frozen=True)
class UpgradePathReport:
    source: SemVer
    target: SemVer
    disable_partial_rebuild: bool
    skipped_validation: bool


def check_upgrade_path(
    source: SemVer,
    target: SemVer,
    *,
    allow_unstable: bool = False,
    skip_validation: bool = False,
) -> UpgradePathReport:
    """Reject upgrades from unsupported or newer sources, and unstable targets unless allowed."""
    if not skip_validation:
        if source < UMBRELLA_CHART_VERSION_LOWERBOUND:
            raise ReleaseToolError(
                f"Upgrade from version {source} is not supported; "
                f"the oldest supported version is {UMBRELLA_CHART_VERSION_LOWERBOUND}"
            )
        if target < source:
            raise ReleaseToolError(f"Cannot upgrade from version {source} to older version {target}")
        if source.is_stable and not target.is_stable and not allow_unstable:
            raise ReleaseToolError(
                f"Upgrade from stable version {source} to unstable version {target} is not allowed"
            )

    low, high = PARTIAL_REBUILD_DISABLE_EXTENTS
    return UpgradePathReport(
        source=source,
        target=target,
        disable_partial_rebuild=low <= source < high,
        skipped_validation=skip_validation,
    )


def crd_toggle_overrides(source: SemVer, target: SemVer, existing_crds: Iterable[str]) -> dict[str, bool]:
    """
    Return dotted helm keys to set `false` when crossing into 4.x.

    Only needed when the source predates 4.0.0 and the target does not.
    """
    if not (source < FOUR_DOT_O and not target < FOUR_DOT_O):
        return {}
    existing = set(existing_crds)
    return {
        toggle: False
        for crd_set, toggle in CRD_HELM_TOGGLES.items()
        if existing.intersection(crd_set)
    }


def nest_values(flat: Mapping[str, object]) -> dict:
    """Turn `{"a.b.c": x}` into `{"a": {"b": {"c": x}}}`."""
    nested: dict = {}
    for dotted, value in flat.items():
        node = nested
        *parents, leaf = dotted.split(".")
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
    return nested


def write_values_file(path: Path, overrides: Mapping[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(nest_values(overrides), handle, default_flow_style=False, sort_keys=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="upgrade-preflight", description="Check a deployed openebs release before upgrade.")
    parser.add_argument(
        "--release-name",
        default=None,
        help="Helm release name for the openebs chart [default=the one deployed openebs release in the namespace]",
    )
    parser.add_argument("--namespace", default="openebs", help="Namespace of the helm release [default=openebs]")
    parser.add_argument("--target-version", required=True, help="Chart version to upgrade to")
    parser.add_argument(
        "--helm-driver",
        default=None,
        help=f"Helm storage driver [default=${HELM_STORAGE_DRIVER_ENV} or secret]",
    )
    parser.add_argument("--values-file", default=None, help="Where to write helm values overrides")
    parser.add_argument("--allow-unstable", action="store_true")
    parser.add_argument("--skip-upgrade-path-validation", action="store_true")
    args = parser.parse_args(argv)

    driver = args.helm_driver if args.helm_driver is not None else optional_env(HELM_STORAGE_DRIVER_ENV)
    release_name = args.release_name or discover_release_name(driver, args.namespace)
    print(f"Helm release: {release_name}")
    release = fetch_helm_release(driver, release_name, args.namespace)
    target = parse_version(args.target_version)

    report = check_upgrade_path(
        release.chart_version,
        target,
        allow_unstable=args.allow_unstable,
        skip_validation=args.skip_upgrade_path_validation,
    )
    print(f"Deployed chart version: {report.source}")
    print(f"Target chart version: {report.target}")
    print(f"Mayastor enabled: {'yes' if release.mayastor_enabled() else 'no'}")
    if report.skipped_validation:
        print("Upgrade path validation skipped")
    if report.disable_partial_rebuild:
        print("Partial rebuild must be disabled for this upgrade")

    if args.values_file:
        overrides = crd_toggle_overrides(report.source, report.target, fetch_crd_names())
        write_values_file(Path(args.values_file), overrides)
        for key in sorted(overrides):
            print(f"Values override: {key}=false")
        print(f"Wrote values overrides to {args.values_file}")

    write_github_outputs_if_available(
        {
            "source_version": str(report.source),
            "mayastor_enabled": "true" if release.mayastor_enabled() else "false",
            "disable_partial_rebuild": "true" if report.disable_partial_rebuild else "false",
        }
    )


if __name__ == "__main__":
    main()
