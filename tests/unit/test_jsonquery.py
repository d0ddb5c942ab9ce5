"""Tests for gjson-style path queries and plain-path mutation."""

import pytest

from restful.core import jsonquery
from restful.utils.exceptions import ShapingError

DOC = {
    "name": "web",
    "count": 3,
    "enabled": True,
    "props": {"a.b": 1, "nested": {"x": "y"}},
    "items": [
        {"id": 1, "foo": "x", "tags": ["red"]},
        {"id": 2, "foo": "y", "tags": ["blue", "red"]},
        {"id": 3, "foo": "yz", "tags": []},
    ],
}


class TestGet:
    """Test lookups."""

    def test_nested_keys(self):
        assert jsonquery.get(DOC, "props.nested.x").value == "y"

    def test_escaped_dot(self):
        assert jsonquery.get(DOC, r"props.a\.b").value == 1

    def test_array_index(self):
        assert jsonquery.get(DOC, "items.1.foo").value == "y"

    def test_array_length(self):
        assert jsonquery.get(DOC, "items.#").value == 3

    def test_map_over_array(self):
        assert jsonquery.get(DOC, "items.#.id").value == [1, 2, 3]

    def test_first_match_predicate(self):
        assert jsonquery.get(DOC, "items.#(id==2)").value == {
            "id": 2,
            "foo": "y",
            "tags": ["blue", "red"],
        }

    def test_all_matches_predicate(self):
        assert jsonquery.get(DOC, "items.#(id>1)#.id").value == [2, 3]

    def test_string_predicate_with_quotes(self):
        assert jsonquery.get(DOC, 'items.#(foo=="yz").id').value == 3

    def test_like_predicate(self):
        assert jsonquery.get(DOC, "items.#(foo%y*)#.id").value == [2, 3]

    def test_not_like_predicate(self):
        assert jsonquery.get(DOC, "items.#(foo!%y*)#.id").value == [1]

    def test_nested_existence_predicate(self):
        assert jsonquery.get(DOC, 'items.#(tags.#(=="blue")).id').value == 2

    def test_top_level_array_selector(self):
        doc = [{"id": 1, "foo": "x"}, {"id": 2, "foo": "y"}]
        assert jsonquery.get(doc, "#(id==2)").value == {"id": 2, "foo": "y"}

    def test_wildcard_key(self):
        assert jsonquery.get(DOC, "na*").value == "web"
        assert jsonquery.get(DOC, "n?me").value == "web"

    def test_modifiers(self):
        assert jsonquery.get(DOC, "@this.name").value == "web"
        assert jsonquery.get([1, 2, 3], "@reverse").value == [3, 2, 1]
        assert jsonquery.get({"a": 1, "b": 2}, "@keys").value == ["a", "b"]
        assert jsonquery.get({"a": 1, "b": 2}, "@values").value == [1, 2]

    def test_missing_paths(self):
        assert not jsonquery.get(DOC, "nope").exists
        assert not jsonquery.get(DOC, "items.9").exists
        assert not jsonquery.get(DOC, "items.#(id==9)").exists
        assert not jsonquery.get(DOC, "").exists

    def test_no_match_all_predicate_exists_as_empty_list(self):
        found = jsonquery.get(DOC, "items.#(id>10)#")
        assert found.exists
        assert found.value == []

    def test_null_value_exists(self):
        found = jsonquery.get({"a": None}, "a")
        assert found.exists
        assert found.text() == ""

    def test_get_bytes(self):
        assert jsonquery.get_bytes(b'{"status":"Running"}', "status").text() == "Running"
        assert not jsonquery.get_bytes(b"not json", "status").exists


class TestText:
    """Test value rendering."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("s", "s"),
            (1, "1"),
            (1.5, "1.5"),
            (True, "true"),
            (None, ""),
            ({"a": [1]}, '{"a":[1]}'),
        ],
    )
    def test_to_text(self, value, expected):
        assert jsonquery.to_text(value) == expected


class TestMutation:
    """Test set_value and delete."""

    def test_set_creates_missing_containers(self):
        assert jsonquery.set_value({}, "a.b.0", "x") == {"a": {"b": ["x"]}}

    def test_set_appends_with_minus_one(self):
        assert jsonquery.set_value({"l": [1]}, "l.-1", 2) == {"l": [1, 2]}

    def test_set_does_not_mutate_input(self):
        doc = {"a": {"b": 1}}
        jsonquery.set_value(doc, "a.b", 2)
        assert doc == {"a": {"b": 1}}

    def test_set_on_none_document(self):
        assert jsonquery.set_value(None, "a", 1) == {"a": 1}

    def test_set_rejects_query_syntax(self):
        with pytest.raises(ShapingError):
            jsonquery.set_value(DOC, "items.#.id", 1)

    def test_delete_key_and_index(self):
        assert jsonquery.delete({"a": {"b": 1, "c": 2}}, "a.b") == {"a": {"c": 2}}
        assert jsonquery.delete({"l": [1, 2, 3]}, "l.1") == {"l": [1, 3]}

    def test_delete_missing_path_is_noop(self):
        assert jsonquery.delete({"a": 1}, "b.c") == {"a": 1}
