"""Tests for tolerant parsing of model responses."""

import pytest

from chronicle_lib.core.exceptions import StructuredOutputError
from chronicle_lib.models import CharacterAnalysis, GeneratedOutlineList, PlotDetection
from chronicle_lib.utils.parser import (
    extract_json_block,
    parse_json_payload,
    parse_structured_output,
)


def test_fenced_block_wins():
    text = '前言 {"ignored": true}\n```json\n{"deaths": ["老李"]}\n```\n结语'
    assert extract_json_block(text) == '{"deaths": ["老李"]}'


def test_plain_fence_without_language():
    assert extract_json_block('```\n{"a": 1}\n```') == '{"a": 1}'


def test_outermost_braces_without_fence():
    text = '好的，结果如下：{"a": {"b": 1}} 希望有帮助'
    assert extract_json_block(text) == '{"a": {"b": 1}}'


def test_no_json_object():
    assert extract_json_block("") is None
    assert extract_json_block("没有任何结构化内容") is None
    assert extract_json_block("} 反了 {") is None


def test_parse_payload_with_camel_case_keys():
    text = '```json\n{"newThreads": [{"description": "古老预言"}], "resolved": ["plot_1"]}\n```'
    detection = parse_json_payload(text, PlotDetection)
    assert detection.new_threads[0].description == "古老预言"
    assert detection.resolved == ["plot_1"]


def test_parse_payload_errors():
    with pytest.raises(StructuredOutputError) as exc_info:
        parse_json_payload("抱歉，我无法完成", CharacterAnalysis)
    assert exc_info.value.raw_text == "抱歉，我无法完成"

    with pytest.raises(StructuredOutputError):
        parse_json_payload('{"chapters": "不是列表"}', GeneratedOutlineList)


def test_structured_output_falls_back_to_default():
    default = CharacterAnalysis()
    assert parse_structured_output("抱歉，我无法完成", CharacterAnalysis, default) is default
    assert parse_structured_output('{"appearances": 3}', CharacterAnalysis, default) is default


def test_structured_output_parses_valid_payload():
    text = '{"appearances": ["林风"], "deaths": [], "relationships": [{"char1": "林风", "char2": "苏瑶", "relation": "同门"}]}'
    analysis = parse_structured_output(text, CharacterAnalysis, CharacterAnalysis())
    assert analysis.appearances == ["林风"]
    assert analysis.relationships[0].relation == "同门"
