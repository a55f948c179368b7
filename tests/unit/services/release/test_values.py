"""Unit tests for values composition."""

from __future__ import annotations

from pathlib import Path

import pytest

from release_operations_manager.services.release.exceptions import ReleaseValidationError
from release_operations_manager.services.release.values import (
    RESERVED_METADATA_KEY,
    ValuesComposer,
    deep_merge,
    parse_set_values,
    parse_values_text,
)


@pytest.fixture
def composer() -> ValuesComposer:
    return ValuesComposer()


@pytest.mark.unit
class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_mappings_merge(self) -> None:
        base = {"image": {"repository": "nginx", "tag": "1.0"}, "replicas": 1}
        override = {"image": {"tag": "2.0"}}

        merged = deep_merge(base, override)

        assert merged == {"image": {"repository": "nginx", "tag": "2.0"}, "replicas": 1}

    def test_lists_are_replaced(self) -> None:
        merged = deep_merge({"hosts": ["a", "b"]}, {"hosts": ["c"]})

        assert merged == {"hosts": ["c"]}

    def test_scalar_replaces_mapping(self) -> None:
        merged = deep_merge({"resources": {"cpu": "1"}}, {"resources": None})

        assert merged == {"resources": None}

    def test_inputs_are_not_mutated(self) -> None:
        base = {"a": {"b": 1}}
        override = {"a": {"c": 2}}

        merged = deep_merge(base, override)
        merged["a"]["b"] = 99

        assert base == {"a": {"b": 1}}
        assert override == {"a": {"c": 2}}


@pytest.mark.unit
class TestParseValuesText:
    """Tests for parse_values_text."""

    def test_empty_text(self) -> None:
        assert parse_values_text("") == {}
        assert parse_values_text("   \n") == {}

    def test_malformed_yaml_raises(self) -> None:
        with pytest.raises(ReleaseValidationError, match="failed to parse"):
            parse_values_text("a: [1, 2")

    def test_non_mapping_raises(self) -> None:
        with pytest.raises(ReleaseValidationError, match="must be a mapping"):
            parse_values_text("- a\n- b\n")


@pytest.mark.unit
class TestParseSetValues:
    """Tests for --set expression parsing."""

    def test_nested_keys_and_types(self) -> None:
        values = parse_set_values(["image.tag=2.0,replicas=3,debug=true,ratio=0.5,empty=null"])

        assert values == {
            "image": {"tag": 2.0},
            "replicas": 3,
            "debug": True,
            "ratio": 0.5,
            "empty": None,
        }

    def test_set_string_keeps_text(self) -> None:
        values = parse_set_values(["image.tag=2.0,replicas=3"], as_string=True)

        assert values == {"image": {"tag": "2.0"}, "replicas": "3"}

    def test_list_index(self) -> None:
        values = parse_set_values(["servers[1].port=80"])

        assert values == {"servers": [None, {"port": 80}]}

    def test_brace_list(self) -> None:
        values = parse_set_values(["hosts={a.example.com,b.example.com}"])

        assert values == {"hosts": ["a.example.com", "b.example.com"]}

    def test_escaped_separators(self) -> None:
        values = parse_set_values([r"annotations.kubernetes\.io/role=web,name=a\,b"])

        assert values == {"annotations": {"kubernetes.io/role": "web"}, "name": "a,b"}

    def test_value_may_contain_equals(self) -> None:
        values = parse_set_values(["args=--level=debug"])

        assert values == {"args": "--level=debug"}

    def test_missing_value_raises(self) -> None:
        with pytest.raises(ReleaseValidationError, match="has no value"):
            parse_set_values(["replicas"])

    def test_empty_key_raises(self) -> None:
        with pytest.raises(ReleaseValidationError, match="invalid key"):
            parse_set_values(["a..b=1"])

    def test_huge_index_raises(self) -> None:
        with pytest.raises(ReleaseValidationError, match="exceeds the maximum"):
            parse_set_values(["a[100000]=1"])


@pytest.mark.unit
class TestValuesComposer:
    """Tests for ValuesComposer.compose."""

    def test_precedence_order(self, composer: ValuesComposer, tmp_path: Path) -> None:
        """Later sources win: file, override, set, set-string."""
        values_file = tmp_path / "values.yaml"
        values_file.write_text("a: file\nb: file\nc: file\nd: file\ne: file\n")

        composed = composer.compose(
            values_yaml="a: base\nkeep: base\n",
            values_files=[values_file],
            overrides=[{"b": "override", "c": "override", "d": "override"}],
            set_values=["c=set,d=set"],
            set_string_values=["d=1"],
        )

        assert composed == {
            "a": "file",
            "keep": "base",
            "b": "override",
            "c": "set",
            "d": "1",
            "e": "file",
        }

    def test_metadata_replaces_reserved_key(self, composer: ValuesComposer) -> None:
        composed = composer.compose(
            overrides=[{RESERVED_METADATA_KEY: {"user": "value"}, "other": 1}],
            metadata={"team": "payments"},
        )

        assert composed[RESERVED_METADATA_KEY] == {"team": "payments"}
        assert composed["other"] == 1

    def test_no_metadata_leaves_reserved_key(self, composer: ValuesComposer) -> None:
        composed = composer.compose(overrides=[{RESERVED_METADATA_KEY: {"user": "value"}}])

        assert composed[RESERVED_METADATA_KEY] == {"user": "value"}

    def test_missing_values_file_raises(self, composer: ValuesComposer, tmp_path: Path) -> None:
        with pytest.raises(ReleaseValidationError, match="cannot read values file"):
            composer.compose(values_files=[tmp_path / "missing.yaml"])

    def test_non_mapping_override_raises(self, composer: ValuesComposer) -> None:
        with pytest.raises(ReleaseValidationError, match="must be a mapping"):
            composer.compose(overrides=[["not", "a", "mapping"]])  # type: ignore[list-item]
