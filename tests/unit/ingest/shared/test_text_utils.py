"""Tests for value conversion and header normalization utilities."""

from __future__ import annotations

import pytest

from ingest.shared.text_utils import (
    create_cache_key,
    format_error,
    is_not_available,
    normalize_header,
    safe_trim,
    to_boolean,
    to_number,
    value_or_none,
)


class TestNormalizeHeader:
    """Header normalization makes field matching independent of case and accents"""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Año Escolar", "ano_escolar"),
            (" Periodo de Implementación ", "periodo_de_implementacion"),
            ("CCT", "cct"),
            ("Modalidad: Asist 1", "modalidad_asist_1"),
            ("--email--", "email"),
            ("trabajo_final", "trabajo_final"),
        ],
    )
    def test_normalizes(self, header, expected):
        assert normalize_header(header) == expected

    @pytest.mark.parametrize("header", ["Año Escolar", "  ¿Participa Director(a)? ", "ses 1 / modalidad", "ÚLTIMO__campo"])
    def test_is_idempotent(self, header):
        once = normalize_header(header)
        assert normalize_header(once) == once

    def test_output_only_contains_allowed_characters(self):
        result = normalize_header("Niño #1 (Teléfono)")
        assert result == "nino_1_telefono"
        assert not result.startswith("_")
        assert not result.endswith("_")


class TestCreateCacheKey:
    def test_joins_parts_with_separator(self):
        assert create_cache_key(["Impl 1", "2024-2025", "Otoño"]) == "Impl 1|2024-2025|Otoño"

    def test_drops_none_parts(self):
        assert create_cache_key(["mod1", None, "42"]) == "mod1|42"

    def test_stringifies_parts(self):
        assert create_cache_key(["mod1", 42]) == "mod1|42"

    def test_same_parts_give_same_key(self):
        assert create_cache_key(["a", "b"]) == create_cache_key(("a", "b"))


class TestConversions:
    @pytest.mark.parametrize(
        "value,expected",
        [("34", 34), ("7.5", 7.5), (" 10 ", 10), ("", None), ("NA", None), (None, None), ("abc", None), (3, 3)],
    )
    def test_to_number(self, value, expected):
        assert to_number(value) == expected

    def test_to_number_rejects_booleans_and_non_finite(self):
        assert to_number(True) is None
        assert to_number("nan") is None
        assert to_number("inf") is None

    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("TRUE", True), ("1", True), ("false", False), ("0", False), ("", False), (None, False)],
    )
    def test_to_boolean(self, value, expected):
        assert to_boolean(value) is expected

    def test_safe_trim(self):
        assert safe_trim("  x  ") == "x"
        assert safe_trim("   ") is None
        assert safe_trim(None) is None
        assert safe_trim(12) == "12"

    @pytest.mark.parametrize("value", [None, "", "  ", "NA", "na", "N/A"])
    def test_not_available_tokens(self, value):
        assert is_not_available(value)
        assert value_or_none(value) is None

    def test_available_values_pass_through(self):
        assert not is_not_available("Soltero")
        assert value_or_none("Soltero") == "Soltero"


class TestFormatError:
    def test_exception_message(self):
        assert format_error(ValueError("bad value")) == "bad value"

    def test_empty_exception_uses_type_name(self):
        assert format_error(RuntimeError()) == "RuntimeError"

    def test_collapses_line_breaks(self):
        assert format_error("line one\nline two") == "line one line two"

    def test_appends_context(self):
        message = format_error("failed", {"row": 3, "endpoint": "participantes"})
        assert message == "failed (Context: row=3, endpoint=participantes)"
