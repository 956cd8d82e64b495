"""Tests for chunk prompt construction and previous-data summaries."""

from docengine.agents.prompts import build_chunk_prompt, summarize_previous_data
from docengine.core.config import SummaryRules, load_document_registry

BASE = "Extract the account details as JSON."


def test_first_chunk_prompt_notes_page_range():
    prompt = build_chunk_prompt(BASE, "bank_statement", 1, 5, 12, None)
    assert prompt.startswith(BASE)
    assert "pages 1-5 of a 12-page document" in prompt
    assert "Previous pages" not in prompt


def test_continuation_prompt_summarizes_and_asks_for_new_data():
    rules = load_document_registry().get("bank_statement").summary
    previous = {
        "account_number": "001122",
        "bank_name": "SBI",
        "transactions": [{"n": 1}, {"n": 2}, {"n": 3}],
    }
    prompt = build_chunk_prompt(BASE, "bank_statement", 6, 10, 12, previous, rules)

    assert "pages 6-10 of a 12-page bank statement" in prompt
    assert "Previous pages contained: Account: 001122, Bank: SBI, 3 transactions found" in prompt
    assert BASE in prompt
    assert "Only return NEW data" in prompt


def test_later_chunk_without_previous_data_uses_first_chunk_form():
    prompt = build_chunk_prompt(BASE, "bank_statement", 6, 10, 12, {})
    assert "pages 6-10 of a 12-page document" in prompt


def test_summary_for_credit_report():
    rules = load_document_registry().get("credit_report").summary
    summary = summarize_previous_data(
        {"credit_score": 755, "active_accounts": 4, "accounts": [{}, {}]}, rules
    )
    assert summary == "Score: 755, Active accounts: 4, 2 account details captured"


def test_summary_skips_blank_values():
    rules = SummaryRules(labels={"bank_name": "Bank"}, counts={"transactions": "transactions found"})
    assert summarize_previous_data({"bank_name": "", "transactions": []}, rules) == (
        "basic document info"
    )


def test_generic_summary_truncates_and_limits_keys():
    data = {
        "parsed_at": "2024-01-01T00:00:00Z",
        "a": "x" * 200,
        "b": 1,
        "c": None,
        "d": [1, 2],
        "e": 3.5,
        "f": "six",
        "g": "seven",
    }
    summary = summarize_previous_data(data)
    parts = summary.split(", ")
    assert parts[0].startswith('a: "xxx')
    assert len(parts[0]) == len("a: ") + 50
    assert "parsed_at" not in summary
    assert "c:" not in summary
    assert summary.count(": ") == 5
    assert "g:" not in summary


def test_empty_summary_falls_back():
    assert summarize_previous_data({}) == "basic document info"
