from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import io
import os
import tempfile
import textwrap
import unittest

from script_provider import cli


@unittest.skipUnless(os.name == "posix", "requires /bin/sh")
class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.config_path = self.workspace / "provider.toml"
        self.config_path.write_text(
            textwrap.dedent(
                f"""
                working_directory = "{self.workspace}"
                log_level = "ERROR"
                create_command = "touch created.txt"
                read_command = "echo hi"
                delete_command = "rm -f created.txt"
                """
            )
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _run(self, *args: str) -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            exit_code = cli.main(["-c", str(self.config_path), "--log-format", "text", *args])
        return exit_code, stdout.getvalue(), stderr.getvalue()

    def test_read_prints_payload(self) -> None:
        exit_code, stdout, _ = self._run("read")
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout, "hi\n")

    def test_create_and_delete_run_commands(self) -> None:
        self.assertEqual(self._run("create")[0], 0)
        self.assertTrue((self.workspace / "created.txt").exists())
        self.assertEqual(self._run("delete")[0], 0)
        self.assertFalse((self.workspace / "created.txt").exists())

    def test_overrides_and_yaml_layers(self) -> None:
        overlay = self.workspace / "overlay.yaml"
        overlay.write_text("read_command: echo from-yaml\n")
        stdout = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(io.StringIO()):
            exit_code = cli.main(
                [
                    "-c",
                    str(self.config_path),
                    "-c",
                    str(overlay),
                    "--set",
                    "read_line_prefix=from-",
                    "read",
                ]
            )
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout.getvalue(), "yaml\n")

    def test_command_overrides_are_kept_verbatim(self) -> None:
        exit_code, stdout, _ = self._run("--set", "read_command=echo 'a #b'", "read")
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout, "a #b\n")

        exit_code, stdout, _ = self._run(
            "--set",
            "read_command=echo 'state: x'",
            "--set",
            "read_line_prefix=state: ",
            "read",
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout, "x\n")

        exit_code, _, stderr = self._run("--set", "create_command=true", "create")
        self.assertEqual(exit_code, 0, stderr)

    def test_command_failure_exits_with_error(self) -> None:
        exit_code, _, stderr = self._run("--set", "create_command=echo denied >&2; exit 4", "create")
        self.assertEqual(exit_code, 1)
        self.assertIn("Error: create command failed with exit code 4", stderr)
        self.assertIn("denied", stderr)

    def test_exists_prints_boolean(self) -> None:
        _, stdout, _ = self._run("--set", "exists_command=exit 0", "exists")
        self.assertEqual(stdout, "true\n")
        _, stdout, _ = self._run("--set", "exists_command=exit 1", "exists")
        self.assertEqual(stdout, "false\n")

    def test_render_prints_composed_update(self) -> None:
        exit_code, stdout, _ = self._run("render", "update")
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout, "(\nrm -f created.txt\ntouch created.txt\n)\n")

    def test_dry_run_prints_commands_without_running_them(self) -> None:
        exit_code, stdout, _ = self._run("--dry-run", "update")
        self.assertEqual(exit_code, 0)
        lines = stdout.splitlines()
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[0].startswith("[dry-run] update/delete"))
        self.assertTrue(lines[1].startswith("[dry-run] update/create"))
        self.assertIn("'touch created.txt'", lines[1])
        self.assertFalse((self.workspace / "created.txt").exists())

    def test_invalid_configuration_exits_with_error(self) -> None:
        exit_code, _, stderr = self._run("--set", "read_format=yaml", "read")
        self.assertEqual(exit_code, 1)
        self.assertIn("Error: read_format", stderr)

    def test_kind_requiring_exists_command(self) -> None:
        exit_code, _, stderr = self._run("--kind", "crde", "exists")
        self.assertEqual(exit_code, 1)
        self.assertIn("requires exists_command", stderr)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
