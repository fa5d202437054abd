"""
Unit tests for partial JSON recovery.
"""

import json

import pytest

from pipeline.recovery import RecoveryParser, recovery_parser


class TestRecoverArray:
    """Array-shaped responses."""

    def test_truncated_mid_object_keeps_complete_objects(self):
        text = '[{"title":"Backend Dev","company":"Acme"},{"title":"Fron'
        result = recovery_parser.recover(text)

        assert json.loads(result) == [{"title": "Backend Dev", "company": "Acme"}]
        assert result == '[{"title":"Backend Dev","company":"Acme"}]'

    def test_valid_json_is_returned_unchanged(self):
        text = '[ {"title": "A", "company": "B"} ]\n'
        assert recovery_parser.recover(text) == text

    def test_code_fence_is_stripped(self):
        text = '```json\n[{"title": "A", "company": "B"}]\n```'
        assert json.loads(recovery_parser.recover(text)) == [{"title": "A", "company": "B"}]

    def test_unterminated_fence_with_truncated_array(self):
        text = '```json\n[{"title": "A", "company": "B"}, {"title": "C", "comp'
        assert recovery_parser.parse_array(text) == [{"title": "A", "company": "B"}]

    def test_leading_and_trailing_prose(self):
        text = 'Here are the postings:\n[{"title": "A", "company": "B"}]\nLet me know if you need more.'
        assert recovery_parser.parse_array(text) == [{"title": "A", "company": "B"}]

    def test_braces_and_quotes_inside_strings(self):
        text = '[{"title": "C++ {core} \\"lead\\"", "company": "X"}, {"title": "} broken'
        items = recovery_parser.parse_array(text)
        assert items == [{"title": 'C++ {core} "lead"', "company": "X"}]

    def test_nested_objects_stay_inside_item(self):
        text = '[{"title": "A", "company": "B", "meta": {"k": 1}}, {"title": "C", "meta": {"k":'
        items = recovery_parser.parse_array(text)
        assert items == [{"title": "A", "company": "B", "meta": {"k": 1}}]

    def test_wrapper_object_with_jobs_key(self):
        text = '{"jobs": [{"title": "A", "company": "B"}, {"title": "C"'
        assert recovery_parser.parse_array(text) == [{"title": "A", "company": "B"}]

    def test_valid_wrapper_object_is_unwrapped(self):
        text = '{"jobs": [{"title": "A", "company": "B"}]}'
        assert recovery_parser.parse_array(text) == [{"title": "A", "company": "B"}]

    def test_non_dict_items_are_dropped(self):
        assert recovery_parser.parse_array('[1, "x", {"title": "A"}]') == [{"title": "A"}]

    def test_nothing_recoverable_gives_empty_array(self):
        assert recovery_parser.recover('[{"title": "Fron', 'array') == '[]'
        assert recovery_parser.parse_array('Sorry, I cannot help with that.') == []


class TestRecoverObject:
    """Object-shaped responses (detail stage)."""

    def test_truncated_object_keeps_complete_fields(self):
        text = '{"description": "Build APIs", "requirements": ["Python", "SQL"], "benefits": "Remote fri'
        result = recovery_parser.parse_object(text)

        assert result == {"description": "Build APIs", "requirements": ["Python", "SQL"]}

    def test_trailing_number_is_treated_as_incomplete(self):
        text = '{"description": "Build APIs", "headcount": 12'
        assert recovery_parser.parse_object(text) == {"description": "Build APIs"}

    def test_line_by_line_fallback(self):
        text = '{\n  "description": "Build APIs",\n  garbage here\n  "salary": "50k",\n  "benefits": "Remo'
        result = recovery_parser.parse_object(text)
        assert result == {"description": "Build APIs", "salary": "50k"}

    def test_list_response_yields_first_object(self):
        assert recovery_parser.parse_object('[{"a": 1}, {"b": 2}]') == {"a": 1}

    def test_empty_object_when_nothing_recoverable(self):
        assert recovery_parser.recover('{"desc', 'object') == '{}'
        assert recovery_parser.parse_object('no json here') == {}


class TestNeverThrows:
    """The parser always returns valid JSON."""

    @pytest.mark.parametrize("text", [
        None,
        "",
        "   ",
        "[",
        "{",
        "]]]}}}",
        '["unterminated',
        '{"a": [1, 2, {"b": "c"',
        "```",
        "```json\n```",
        '[{"a": "\\',
        "null",
        "42",
        "\ufeff[]",
    ])
    def test_output_is_valid_json(self, text):
        parser = RecoveryParser()
        for expect in ('auto', 'array', 'object'):
            json.loads(parser.recover(text, expect))
        assert isinstance(parser.parse_array(text), list)
        assert isinstance(parser.parse_object(text), dict)
