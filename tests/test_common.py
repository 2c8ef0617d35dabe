from __future__ import annotations

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from release_tools.common import (
    ReleaseToolError,
    command_succeeds,
    load_yaml_text,
    require_env,
    root_dir,
    run_cmd,
    write_github_outputs,
    write_github_outputs_if_available,
)


class EnvTests(unittest.TestCase):
    def test_require_env_rejects_empty(self) -> None:
        with mock.patch.dict(os.environ, {"TAG": ""}, clear=True):
            with self.assertRaisesRegex(ReleaseToolError, "Missing required environment variable: TAG"):
                require_env("TAG")

    def test_root_dir_prefers_explicit_value(self) -> None:
        with mock.patch.dict(os.environ, {"ROOT_DIR": "/from/env"}, clear=True):
            self.assertEqual(root_dir("/explicit"), Path("/explicit").resolve())
            self.assertEqual(root_dir(), Path("/from/env").resolve())


class RunCmdTests(unittest.TestCase):
    def test_returns_stdout_and_passes_stdin(self) -> None:
        output = run_cmd([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"], input_text="abc")
        self.assertEqual(output.strip(), "ABC")

    def test_failure_carries_stderr(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "bad thing"):
            run_cmd([sys.executable, "-c", "import sys; sys.stderr.write('bad thing'); sys.exit(3)"])

    def test_missing_executable(self) -> None:
        with self.assertRaisesRegex(ReleaseToolError, "Command not found"):
            run_cmd(["definitely-not-a-real-release-tool"])
        self.assertFalse(command_succeeds(["definitely-not-a-real-release-tool"]))

    def test_extra_env_is_layered(self) -> None:
        output = run_cmd(
            [sys.executable, "-c", "import os; print(os.environ['PROJECT'])"],
            env={"PROJECT": "openebs"},
        )
        self.assertEqual(output.strip(), "openebs")


class GithubOutputTests(unittest.TestCase):
    def test_appends_key_value_lines(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            output_file = Path(temp_dir) / "out"
            with mock.patch.dict(os.environ, {"GITHUB_OUTPUT": str(output_file)}, clear=True):
                write_github_outputs({"tag": "v1"})
                write_github_outputs_if_available({"version": "1"})
            self.assertEqual(output_file.read_text(encoding="utf-8"), "tag=v1\nversion=1\n")

    def test_skipped_outside_actions(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            write_github_outputs_if_available({"tag": "v1"})


class YamlTests(unittest.TestCase):
    def test_requires_mapping(self) -> None:
        self.assertEqual(load_yaml_text(""), {})
        with self.assertRaisesRegex(ReleaseToolError, "Expected a YAML mapping"):
            load_yaml_text("- a\n- b\n")
        with self.assertRaisesRegex(ReleaseToolError, "Invalid YAML"):
            load_yaml_text("a: [b\n")


if __name__ == "__main__":
    unittest.main()
