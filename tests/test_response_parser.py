"""Tests for locating, parsing and repairing JSON in model responses."""

import json

from docengine.agents.response_parser import (
    find_json_candidate,
    parse_extraction_response,
    repair_truncated_json,
)


# ── Candidate Location ───────────────────────────────────────────────


def test_fenced_block_with_preamble():
    result = parse_extraction_response('Here is the data:\n```json\n{"a":1}\n```')
    assert result.parse_error is False
    assert result.fields == {"a": 1}


def test_fenced_block_without_language_tag():
    text = 'Sure.\n```\n{"pan_number": "ABCDE1234F"}\n```\nLet me know.'
    assert find_json_candidate(text) == '{"pan_number": "ABCDE1234F"}'


def test_braces_in_surrounding_prose():
    text = 'The extracted fields are {"name": "Asha", "dob": "1990-04-01"} as requested.'
    result = parse_extraction_response(text)
    assert result.fields == {"name": "Asha", "dob": "1990-04-01"}


def test_plain_json():
    result = parse_extraction_response('{"closing_balance": 1520.75, "transactions": []}')
    assert result.fields == {"closing_balance": 1520.75, "transactions": []}


def test_nested_objects_keep_outer_braces():
    text = 'x {"summary": {"secured": 2}, "accounts": [{"lender": "HDFC"}]} y'
    result = parse_extraction_response(text)
    assert result.fields["summary"] == {"secured": 2}
    assert result.fields["accounts"] == [{"lender": "HDFC"}]


# ── Repair ───────────────────────────────────────────────────────────


def test_repair_drops_incomplete_trailing_property():
    truncated = '{"bank_name": "SBI", "transactions": [{"date": "2024-01-02", "amount": 500}, {"date": "2024-01-'
    repaired = repair_truncated_json(truncated)
    assert json.loads(repaired) == {
        "bank_name": "SBI",
        "transactions": [{"date": "2024-01-02", "amount": 500}],
    }


def test_repair_ignores_commas_inside_strings():
    truncated = '{"address": "12, MG Road, Pune", "name": "Rav'
    assert json.loads(repair_truncated_json(truncated)) == {"address": "12, MG Road, Pune"}


def test_repair_handles_trailing_comma():
    assert json.loads(repair_truncated_json('{"a": 1, "b": 2,}')) == {"a": 1, "b": 2}


def test_truncated_response_is_recovered():
    text = '```json\n{"account_number": "0012", "transactions": [{"amount": 10}, {"amount": 2'
    result = parse_extraction_response(text)
    assert result.parse_error is False
    assert result.fields == {"account_number": "0012", "transactions": [{"amount": 10}]}


# ── Raw-Text Fallback ────────────────────────────────────────────────


def test_unparseable_response_degrades_to_raw_text():
    text = "I could not read this document, the image is too blurry."
    result = parse_extraction_response(text)
    assert result.parse_error is True
    assert result.fields == {"raw_text": text}


def test_hopeless_json_degrades_to_raw_text():
    text = "{this is: not [json"
    result = parse_extraction_response(text)
    assert result.parse_error is True
    assert result.fields["raw_text"] == text


def test_json_array_is_not_a_field_map():
    result = parse_extraction_response("```json\n[1, 2, 3]\n```")
    assert result.parse_error is True


def test_as_field_map_carries_flag():
    result = parse_extraction_response("nothing useful")
    assert result.as_field_map() == {"raw_text": "nothing useful", "parse_error": True}
