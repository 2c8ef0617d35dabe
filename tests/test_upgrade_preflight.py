"""
Script: tests/test_upgrade_preflight.py
What: Tests for the pre-upgrade Helm release inspection.
Doing: Builds fake Helm release records, then checks decoding, engine detection, path rules and CRD overrides.
Why: These rules decide whether an upgrade starts at all and which chart parts it installs.
Goal: Keep upgrade preflight decisions stable across chart versions.
"""

from __future__ import annotations

import base64
import gzip
import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

import yaml

from release_tools import upgrade_preflight
from release_tools.common import ReleaseToolError
from release_tools.upgrade_preflight import (
    HelmRelease,
    check_upgrade_path,
    crd_toggle_overrides,
    kubectl_release_query,
    nest_values,
    release_data_from_list,
    release_name_from_list,
    write_values_file,
)
from release_tools.versions import parse_version


def _release_record(
    version: str = "3.10.0",
    values: dict | None = None,
    config: dict | None = None,
    *,
    name: str = "openebs",
    chart_name: str = "openebs",
) -> dict:
    return {
        "name": name,
        "chart": {"metadata": {"name": chart_name, "version": version}, "values": values or {}},
        "config": config,
    }


def _helm_encoded(record: dict) -> str:
    """Encode a record the way Helm stores it: gzip, then base64."""
    return base64.b64encode(gzip.compress(json.dumps(record).encode("utf-8"))).decode("ascii")


class HelmReleaseTests(unittest.TestCase):
    def test_reads_chart_version(self) -> None:
        release = HelmRelease.from_release_json(json.dumps(_release_record("4.1.0")))
        self.assertEqual(release.chart_version, parse_version("4.1.0"))

    def test_missing_version_is_fatal(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "chart.metadata.version"):
            HelmRelease.from_release_json(json.dumps({"chart": {"metadata": {}}}))

    def test_mayastor_enabled_precedence(self) -> None:
        cases = [
            # (values, config, expected)
            ({}, None, False),
            ({"mayastor": {"enabled": True}}, None, True),
            ({"engines": {"replicated": {"mayastor": {"enabled": True}}}, "mayastor": {"enabled": False}}, None, True),
            ({"engines": {"replicated": {"mayastor": {"enabled": True}}}}, {"mayastor": {"enabled": False}}, False),
            (
                {"mayastor": {"enabled": False}},
                {"engines": {"replicated": {"mayastor": {"enabled": True}}}, "mayastor": {"enabled": False}},
                True,
            ),
        ]
        for values, config, expected in cases:
            with self.subTest(values=values, config=config):
                record = _release_record(values=values, config=config)
                release = HelmRelease.from_release_json(json.dumps(record))
                self.assertEqual(release.mayastor_enabled(), expected)

    def test_non_boolean_enabled_is_ignored(self) -> None:
        # A quoted "false" from `--set-string` is not a boolean and must not count as enabled.
        record = _release_record(values={"mayastor": {"enabled": False}}, config={"mayastor": {"enabled": "false"}})
        self.assertFalse(HelmRelease.from_release_json(json.dumps(record)).mayastor_enabled())
        record = _release_record(values={"mayastor": {"enabled": True}}, config={"mayastor": {"enabled": "no"}})
        self.assertTrue(HelmRelease.from_release_json(json.dumps(record)).mayastor_enabled())
        record = _release_record(config={"engines": {"replicated": {"mayastor": {"enabled": "true"}}}})
        self.assertFalse(HelmRelease.from_release_json(json.dumps(record)).mayastor_enabled())


class ReleaseDataTests(unittest.TestCase):
    def test_decodes_configmap_data(self) -> None:
        listing = {"items": [{"data": {"release": _helm_encoded(_release_record("3.9.0"))}}]}
        payload = release_data_from_list("configmap", listing, "openebs")
        self.assertEqual(json.loads(payload)["chart"]["metadata"]["version"], "3.9.0")

    def test_decodes_secret_data_with_extra_base64_layer(self) -> None:
        inner = _helm_encoded(_release_record("4.0.0"))
        listing = {"items": [{"data": {"release": base64.b64encode(inner.encode("ascii")).decode("ascii")}}]}
        payload = release_data_from_list("", listing, "openebs")
        self.assertEqual(json.loads(payload)["chart"]["metadata"]["version"], "4.0.0")

    def test_zero_and_many_items_are_distinct_errors(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "No helm secret found"):
            release_data_from_list("secret", {"items": []}, "openebs")
        with self.assertRaisesRegex(ReleaseToolError, "Too many helm configmaps"):
            release_data_from_list("configmaps", {"items": [{}, {}]}, "openebs")

    def test_missing_release_key(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "'release' key in helm configmap"):
            release_data_from_list("configmap", {"items": [{"data": {"other": "x"}}]}, "openebs")

    def test_unsupported_driver(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "'memory' storage driver"):
            kubectl_release_query("memory", "openebs", "openebs")

    def test_secret_query_uses_label_and_field_selectors(self) -> None:
        query = kubectl_release_query("secrets", "openebs", "storage")
        self.assertIn("status=deployed,name=openebs", query)
        self.assertIn("type=helm.sh/release.v1", query)
        self.assertEqual(query[query.index("-n") + 1], "storage")

    def test_unnamed_queries_list_all_deployed_releases(self) -> None:
        secret_query = kubectl_release_query("secret", None, "openebs")
        self.assertIn("status=deployed", secret_query)
        self.assertIn("type=helm.sh/release.v1", secret_query)
        configmap_query = kubectl_release_query("configmap", None, "openebs")
        self.assertIn("owner=helm,status=deployed", configmap_query)


def _secret_item(record: dict) -> dict:
    inner = _helm_encoded(record)
    return {"data": {"release": base64.b64encode(inner.encode("ascii")).decode("ascii")}}


class ReleaseNameDiscoveryTests(unittest.TestCase):
    def test_finds_the_openebs_release(self) -> None:
        listing = {
            "items": [
                _secret_item(_release_record(name="monitoring", chart_name="kube-prometheus-stack")),
                _secret_item(_release_record(name="storage")),
            ]
        }
        self.assertEqual(release_name_from_list("secret", listing, "openebs"), "storage")

    def test_configmap_storage(self) -> None:
        listing = {"items": [{"data": {"release": _helm_encoded(_release_record(name="oe"))}}]}
        self.assertEqual(release_name_from_list("configmap", listing, "openebs"), "oe")

    def test_no_matching_release(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "No helm release found for chart openebs in namespace storage"):
            release_name_from_list("secret", {"items": []}, "storage")
        listing = {"items": [_secret_item(_release_record(name="other", chart_name="mayastor"))]}
        with self.assertRaisesRegex(ReleaseToolError, "No helm release found"):
            release_name_from_list("secret", listing, "storage")

    def test_many_matching_releases(self) -> None:
        listing = {
            "items": [
                _secret_item(_release_record(name="openebs-a")),
                _secret_item(_release_record(name="openebs-b")),
            ]
        }
        with self.assertRaisesRegex(ReleaseToolError, "Too many helm releases found for chart openebs.*openebs-a, openebs-b"):
            release_name_from_list("secret", listing, "openebs")

    def test_discovery_queries_without_name_label(self) -> None:
        listing = {"items": [_secret_item(_release_record(name="storage"))]}
        with mock.patch.object(upgrade_preflight, "run_json_cmd", return_value=listing) as run_json:
            self.assertEqual(upgrade_preflight.discover_release_name("", "openebs"), "storage")
        query = run_json.call_args.args[0]
        self.assertIn("status=deployed", query)
        self.assertFalse(any("name=" in arg for arg in query))


class UpgradePathTests(unittest.TestCase):
    def test_rejects_sources_below_lower_bound(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "not supported"):
            check_upgrade_path(parse_version("2.6.0"), parse_version("4.1.0"))

    def test_rejects_downgrade(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "older version"):
            check_upgrade_path(parse_version("4.1.0"), parse_version("4.0.0"))

    def test_unstable_target_needs_opt_in(self) -> None:
        source, target = parse_version("4.0.0"), parse_version("4.1.0-develop")
        with self.assertRaisesRegex(ReleaseToolError, "unstable"):
            check_upgrade_path(source, target)
        report = check_upgrade_path(source, target, allow_unstable=True)
        self.assertFalse(report.disable_partial_rebuild)

    def test_skip_validation_bypasses_checks(self) -> None:
        report = check_upgrade_path(parse_version("2.0.0"), parse_version("1.0.0"), skip_validation=True)
        self.assertTrue(report.skipped_validation)

    def test_partial_rebuild_extents(self) -> None:
        for source, expected in (("3.6.0", False), ("3.7.0", True), ("3.9.1", True), ("3.10.0", False)):
            with self.subTest(source=source):
                report = check_upgrade_path(parse_version(source), parse_version("4.1.0"))
                self.assertEqual(report.disable_partial_rebuild, expected)


class CrdOverrideTests(unittest.TestCase):
    def test_only_when_crossing_four_dot_o(self) -> None:
        crds = ["zfsvolumes.zfs.openebs.io"]
        self.assertEqual(crd_toggle_overrides(parse_version("4.0.0"), parse_version("4.1.0"), crds), {})
        self.assertEqual(crd_toggle_overrides(parse_version("3.9.0"), parse_version("3.10.0"), crds), {})
        self.assertEqual(
            crd_toggle_overrides(parse_version("3.9.0"), parse_version("4.0.0"), crds),
            {"zfs-localpv.crds.zfsLocalPv.enabled": False},
        )

    def test_any_existing_crd_disables_its_set(self) -> None:
        overrides = crd_toggle_overrides(
            parse_version("3.10.0"),
            parse_version("4.1.0"),
            ["volumesnapshots.snapshot.storage.k8s.io", "jaegers.jaegertracing.io", "unrelated.example.com"],
        )
        self.assertEqual(
            overrides,
            {
                "openebs-crds.csi.volumeSnapshots.enabled": False,
                "mayastor.crds.jaeger.enabled": False,
            },
        )

    def test_values_file_is_nested_yaml(self) -> None:
        self.assertEqual(nest_values({"a.b.c": False, "a.d": 1}), {"a": {"b": {"c": False}, "d": 1}})
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "values.yaml"
            write_values_file(path, {"mayastor.crds.jaeger.enabled": False})
            self.assertEqual(
                yaml.safe_load(path.read_text(encoding="utf-8")),
                {"mayastor": {"crds": {"jaeger": {"enabled": False}}}},
            )


class MainTests(unittest.TestCase):
    def test_main_writes_overrides(self) -> None:
        listing = {"items": [{"data": {"release": _helm_encoded(_release_record("3.10.0"))}}]}
        crds = {"items": [{"metadata": {"name": "lvmnodes.zfs.openebs.io"}}]}

        def _fake_json(args):
            return crds if args[:3] == ["kubectl", "get", "crd"] else listing

        with tempfile.TemporaryDirectory() as temp_dir:
            values_file = Path(temp_dir) / "overrides.yaml"
            with mock.patch.object(upgrade_preflight, "run_json_cmd", side_effect=_fake_json), mock.patch.dict(
                "os.environ", {}, clear=True
            ), redirect_stdout(io.StringIO()) as out:
                upgrade_preflight.main(
                    [
                        "--release-name",
                        "openebs",
                        "--helm-driver",
                        "configmap",
                        "--target-version",
                        "4.1.0",
                        "--values-file",
                        str(values_file),
                    ]
                )
            self.assertEqual(
                yaml.safe_load(values_file.read_text(encoding="utf-8")),
                {"lvm-localpv": {"crds": {"lvmLocalPv": {"enabled": False}}}},
            )
        self.assertIn("Deployed chart version: 3.10.0", out.getvalue())

    def test_main_discovers_release_name(self) -> None:
        listing = {"items": [{"data": {"release": _helm_encoded(_release_record("4.0.0", name="storage"))}}]}
        with mock.patch.object(upgrade_preflight, "run_json_cmd", return_value=listing) as run_json, mock.patch.dict(
            "os.environ", {}, clear=True
        ), redirect_stdout(io.StringIO()) as out:
            upgrade_preflight.main(["--helm-driver", "configmap", "--target-version", "4.1.0"])
        self.assertIn("Helm release: storage", out.getvalue())
        fetch_query = run_json.call_args_list[-1].args[0]
        self.assertIn("owner=helm,status=deployed,name=storage", fetch_query)


if __name__ == "__main__":
    unittest.main()
