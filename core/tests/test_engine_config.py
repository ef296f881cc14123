"""Tests for engine configuration loading and validation."""

import tempfile
import unittest
from pathlib import Path

from core.engine_config import (
    ClassConstantStyle,
    ConfigValidationError,
    EngineConfig,
    FunctionNaming,
    load_config_payload,
    load_engine_config,
    parse_engine_config,
    resolve_env_overrides,
)
from core.proposal_contract import SafetyTier


class TestEngineConfig(unittest.TestCase):
    def _write(self, content: str, suffix: str = ".yml") -> str:
        handle = tempfile.NamedTemporaryFile(mode="w", suffix=suffix, delete=False)
        handle.write(content)
        handle.flush()
        handle.close()
        self.addCleanup(lambda: Path(handle.name).unlink(missing_ok=True))
        return handle.name

    def test_defaults(self) -> None:
        config = EngineConfig()
        self.assertFalse(config.prefer_string_type)
        self.assertIs(config.class_constant_style, ClassConstantStyle.AUTO)
        self.assertIs(config.min_confidence_to_emit, SafetyTier.MEDIUM)
        self.assertIs(config.function_naming, FunctionNaming.PRESERVE)
        self.assertEqual(config.companion_source_suffix, ".cpp")

    def test_camel_case_keys_from_yaml(self) -> None:
        path = self._write(
            "preferStringType: true\n"
            "classConstantStyle: enumHack\n"
            "minConfidenceToEmit: HIGH\n"
            "includeDirs: [include, third_party]\n"
        )
        config = load_engine_config(path, strict=True, use_env=False)
        self.assertTrue(config.prefer_string_type)
        self.assertIs(config.class_constant_style, ClassConstantStyle.ENUM_HACK)
        self.assertIs(config.min_confidence_to_emit, SafetyTier.HIGH)
        self.assertEqual(config.include_dirs, ("include", "third_party"))

    def test_snake_case_keys_from_json(self) -> None:
        path = self._write(
            '{"function_naming": "camel_case", "max_workers": 2, '
            '"class_constant_style": "static_const_in_class"}',
            suffix=".json",
        )
        config = load_engine_config(path, strict=True, use_env=False)
        self.assertIs(config.function_naming, FunctionNaming.CAMEL_CASE)
        self.assertIs(config.class_constant_style, ClassConstantStyle.STATIC_CONST_IN_CLASS)
        self.assertEqual(config.max_workers, 2)

    def test_load_non_strict_missing_returns_empty(self) -> None:
        self.assertEqual(load_config_payload("/definitely/missing.yml", strict=False), {})

    def test_load_strict_missing_raises(self) -> None:
        with self.assertRaises(ConfigValidationError):
            load_config_payload("/definitely/missing.yml", strict=True)

    def test_strict_unknown_key_raises(self) -> None:
        with self.assertRaises(ConfigValidationError):
            parse_engine_config({"colour": "blue"}, strict=True)

    def test_non_strict_invalid_value_keeps_default(self) -> None:
        with self.assertLogs("core.engine_config", level="WARNING"):
            config = parse_engine_config({"maxWorkers": 0, "preferStringType": "maybe"})
        self.assertEqual(config.max_workers, 4)
        self.assertFalse(config.prefer_string_type)

    def test_strict_bad_suffix_raises(self) -> None:
        with self.assertRaises(ConfigValidationError):
            parse_engine_config({"companionSourceSuffix": "cc"}, strict=True)

    def test_env_overrides_apply_on_top_of_file(self) -> None:
        path = self._write("minConfidenceToEmit: high\n")
        environ = {
            "CXXMACRO_MIN_CONFIDENCE_TO_EMIT": "low",
            "CXXMACRO_FOLLOW_INCLUDES": "false",
            "UNRELATED": "1",
        }
        config = load_engine_config(path, strict=True, environ=environ)
        self.assertIs(config.min_confidence_to_emit, SafetyTier.LOW)
        self.assertFalse(config.follow_includes)

    def test_resolve_env_overrides_strips_prefix(self) -> None:
        overrides = resolve_env_overrides({"CXXMACRO_MAX_WORKERS": "8", "CXXMACRO_": "x"})
        self.assertEqual(overrides, {"max_workers": "8"})


if __name__ == "__main__":
    unittest.main()
