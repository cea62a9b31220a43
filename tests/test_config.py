from __future__ import annotations

from dataclasses import FrozenInstanceError
from pathlib import Path
import logging
import os
import tempfile
import unittest

from core.errors import ConfigError
from script_provider.config import (
    _KNOWN_KEYS,
    TEXT_OPTIONS,
    Config,
    CreatePlacement,
    ReadFormat,
    ResourceKind,
    count_placeholders,
    parse_level,
)
from script_provider.logging_config import TRACE


class ConfigResolutionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workdir = Path(self.temp_dir.name)
        self.base = {
            "working_directory": str(self.workdir),
            "create_command": "echo create",
            "read_command": "echo read",
            "delete_command": "echo delete",
        }

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _resolve(self, **overrides: object) -> Config:
        return Config.from_mapping({**self.base, **overrides})

    @unittest.skipUnless(os.name == "posix", "default interpreter differs on Windows")
    def test_defaults_match_the_provider_schema(self) -> None:
        config = self._resolve()
        self.assertEqual(config.interpreter, ("/bin/sh", "-c"))
        self.assertEqual(config.working_directory, self.workdir)
        self.assertTrue(config.include_parent_environment)
        self.assertEqual(dict(config.environment), {})
        self.assertEqual(config.buffer_size, 1024 * 1024)
        self.assertEqual(config.command_prefix, "")
        self.assertEqual(config.command_joiner, "%s\n%s")
        self.assertEqual(config.command_isolator, "(\n%s\n)")
        self.assertEqual(config.update_command, "")
        self.assertEqual(config.exists_command, "")
        self.assertEqual(config.exists_expected_status, 0)
        self.assertIs(config.read_format, ReadFormat.RAW)
        self.assertEqual(config.read_line_prefix, "")
        self.assertTrue(config.delete_on_read_failure)
        self.assertEqual(config.log_level, logging.WARNING)
        self.assertEqual(config.command_log_level, logging.INFO)
        self.assertEqual(config.command_log_width, 1)
        self.assertEqual(config.log_provider_name, "")

    def test_missing_update_command_degrades_to_delete_then_create(self) -> None:
        config = self._resolve(create_before_update=True)
        self.assertTrue(config.delete_before_update)
        self.assertTrue(config.create_after_update)
        self.assertFalse(config.create_before_update)
        self.assertIs(config.create_placement, CreatePlacement.AFTER)

    def test_update_flags_are_kept_with_an_update_command(self) -> None:
        config = self._resolve(update_command="echo update", create_before_update=True)
        self.assertFalse(config.delete_before_update)
        self.assertTrue(config.create_before_update)
        self.assertFalse(config.create_after_update)

        plain = self._resolve(update_command="echo update")
        self.assertIs(plain.create_placement, CreatePlacement.NONE)

    def test_conflicting_create_flags_raise(self) -> None:
        with self.assertRaises(ConfigError):
            self._resolve(
                update_command="echo update",
                create_before_update=True,
                create_after_update=True,
            )

    def test_required_commands(self) -> None:
        for key in ("create_command", "read_command", "delete_command"):
            data = dict(self.base)
            del data[key]
            with self.subTest(key=key), self.assertRaises(ConfigError):
                Config.from_mapping(data)

    def test_read_format_is_case_sensitive(self) -> None:
        self.assertIs(self._resolve(read_format="base64").read_format, ReadFormat.BASE64)
        with self.assertRaises(ConfigError):
            self._resolve(read_format="BASE64")

    def test_log_levels_are_case_insensitive(self) -> None:
        config = self._resolve(log_level="trace", command_log_level="Warn")
        self.assertEqual(config.log_level, TRACE)
        self.assertEqual(config.command_log_level, logging.WARNING)
        with self.assertRaises(ConfigError):
            self._resolve(log_level="verbose")

    def test_templates_are_validated(self) -> None:
        with self.assertRaises(ConfigError):
            self._resolve(command_joiner="%s")
        with self.assertRaises(ConfigError):
            self._resolve(command_isolator="no placeholder")
        config = self._resolve(command_joiner="%s %% %s")
        self.assertEqual(config.command_joiner, "%s %% %s")

    def test_unknown_options_raise(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            self._resolve(create_comand="typo")
        self.assertIn("create_comand", str(ctx.exception))

    def test_working_directory_defaults_to_pwd(self) -> None:
        data = dict(self.base)
        del data["working_directory"]
        config = Config.from_mapping(data, environ={"PWD": str(self.workdir)})
        self.assertEqual(config.working_directory, self.workdir)

    def test_relative_working_directory_resolves_against_pwd(self) -> None:
        (self.workdir / "sub").mkdir()
        config = Config.from_mapping(
            {**self.base, "working_directory": "sub"},
            environ={"PWD": str(self.workdir)},
        )
        self.assertEqual(config.working_directory, (self.workdir / "sub").resolve())

    def test_interpreter_and_environment_are_normalised(self) -> None:
        config = self._resolve(interpreter=["bash", "-ec"], environment={"COUNT": 3})
        self.assertEqual(config.interpreter, ("bash", "-ec"))
        self.assertEqual(dict(config.environment), {"COUNT": "3"})

    def test_invalid_types_raise(self) -> None:
        with self.assertRaises(ConfigError):
            self._resolve(buffer_size="lots")
        with self.assertRaises(ConfigError):
            self._resolve(buffer_size=0)
        with self.assertRaises(ConfigError):
            self._resolve(include_parent_environment="maybe")
        with self.assertRaises(ConfigError):
            self._resolve(environment=["A=1"])
        with self.assertRaises(ConfigError):
            self._resolve(create_command=42)

    def test_fractional_integers_raise(self) -> None:
        with self.assertRaises(ConfigError):
            self._resolve(buffer_size=1.5)
        with self.assertRaises(ConfigError):
            self._resolve(exists_expected_status=0.5)
        self.assertEqual(self._resolve(buffer_size=2048.0).buffer_size, 2048)

    def test_text_options_are_known_string_options(self) -> None:
        self.assertEqual(TEXT_OPTIONS - _KNOWN_KEYS, frozenset())
        self.assertNotIn("buffer_size", TEXT_OPTIONS)

    def test_config_is_immutable(self) -> None:
        config = self._resolve(environment={"A": "1"})
        with self.assertRaises(FrozenInstanceError):
            config.read_command = "other"  # type: ignore[misc]
        with self.assertRaises(TypeError):
            config.environment["B"] = "2"  # type: ignore[index]

    def test_direct_construction_validates(self) -> None:
        with self.assertRaises(ConfigError):
            Config(working_directory=Path("relative"), create_command="c", read_command="r", delete_command="d")
        with self.assertRaises(ConfigError):
            Config(working_directory=self.workdir, create_command="c", read_command="r", delete_command="d", interpreter=())


class HelperTests(unittest.TestCase):
    def test_count_placeholders_ignores_literal_percent(self) -> None:
        self.assertEqual(count_placeholders("%s\n%s"), 2)
        self.assertEqual(count_placeholders("100%% %s"), 1)
        self.assertEqual(count_placeholders("%d %%s"), 0)

    def test_parse_level_accepts_numbers(self) -> None:
        self.assertEqual(parse_level(logging.ERROR, field_name="level"), logging.ERROR)
        self.assertEqual(parse_level(" debug ", field_name="level"), logging.DEBUG)

    def test_resource_kind_capabilities(self) -> None:
        self.assertEqual(ResourceKind.parse("crude"), ResourceKind.CRUDE)
        self.assertEqual(ResourceKind.parse("script_crd"), ResourceKind.CRD)
        self.assertFalse(ResourceKind.CRD.has_update)
        self.assertFalse(ResourceKind.CRD.has_exists)
        self.assertTrue(ResourceKind.CRDE.has_exists)
        self.assertTrue(ResourceKind.CRUD.has_update)
        self.assertTrue(ResourceKind.CRUDE.has_update and ResourceKind.CRUDE.has_exists)
        with self.assertRaises(ConfigError):
            ResourceKind.parse("bogus")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
