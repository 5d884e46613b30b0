from __future__ import annotations

import allure

from assist_router.output_parser import parse_output

pytestmark = [
    allure.epic("Provider Runtime"),
    allure.feature("Output Normalizer"),
]


def test_parse_output_reads_whole_string_json() -> None:
    assert parse_output('{"key": "value"}') == {"key": "value"}


def test_parse_output_extracts_object_from_surrounding_text() -> None:
    assert parse_output('prefix {"a":1} suffix') == {"a": 1}
    assert parse_output('Some text\n{"result": "ok"}\nMore text') == {"result": "ok"}


def test_parse_output_returns_none_without_structured_payload() -> None:
    assert parse_output("not json") is None
    assert parse_output("") is None
    assert parse_output("   \n") is None
    assert parse_output(None) is None


def test_parse_output_handles_multiline_json() -> None:
    parsed = parse_output(
        """{
        "key": "value",
        "nested": {
          "array": [1, 2, 3]
        }
      }""",
    )
    assert parsed["nested"]["array"] == [1, 2, 3]


def test_parse_output_prefers_fenced_block_over_wider_span() -> None:
    text = 'Use {braces} carefully.\n```json\n{"score": 85}\n```\nDone {here}.'
    assert parse_output(text) == {"score": 85}


def test_parse_output_accepts_non_object_json_documents() -> None:
    assert parse_output("[1, 2]") == [1, 2]
    assert parse_output("42") == 42


def test_parse_output_gives_up_on_broken_braces() -> None:
    assert parse_output("start {not: valid} end") is None
