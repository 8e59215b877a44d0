"""Tests for lenient JSON decoding of model output."""

import pytest

from agent.llm.parsing import MAX_JSON_CHARS, parse_llm_json, strip_code_fences
from libs.common.errors import LLMParseError


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences("```\n[1]\n```") == "[1]"

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestParseLlmJson:
    def test_plain_object(self):
        assert parse_llm_json('{"passed": true}') == {"passed": True}

    def test_array(self):
        assert parse_llm_json('["a", "b"]') == ["a", "b"]

    def test_embedded_in_prose(self):
        assert parse_llm_json('Here is the grade: {"score": 0.5} hope that helps') == {"score": 0.5}

    def test_skips_unbalanced_brace(self):
        assert parse_llm_json('Note {oops then ["x"]') == ["x"]

    @pytest.mark.parametrize("text", [None, "", "   ", "no json here"])
    def test_unparsable(self, text):
        with pytest.raises(LLMParseError):
            parse_llm_json(text)

    def test_oversized_input_rejected(self):
        with pytest.raises(LLMParseError):
            parse_llm_json('{"a": "' + "x" * MAX_JSON_CHARS + '"}')
