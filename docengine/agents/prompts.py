"""Chunk-aware prompt construction for the extraction model."""

import json

from docengine.agents.models import INTERNAL_KEYS
from docengine.core.config import SummaryRules

_GENERIC_SUMMARY_KEYS = 5
_GENERIC_VALUE_CHARS = 50

SYSTEM_PROMPT = (
    "You are a document data extractor for loan processing. Read the attached "
    "pages carefully and extract exactly the requested fields. "
    "Respond ONLY with a JSON object."
)


# ── Prompt Builder ───────────────────────────────────────────────────


def build_chunk_prompt(
    base_prompt: str,
    document_type: str,
    start_page: int,
    end_page: int,
    total_pages: int,
    previous_data: dict | None,
    summary_rules: SummaryRules | None = None,
) -> str:
    """Build the instruction text for one chunk.

    Later chunks get a summary of what earlier chunks produced and are told
    to report only new information, which keeps list fields from repeating.
    """
    if start_page == 1 or not previous_data:
        return (
            f"{base_prompt}\n\n"
            f"Note: This is pages {start_page}-{end_page} of a {total_pages}-page "
            f"document. Extract all visible information from these pages."
        )

    previous_summary = summarize_previous_data(previous_data, summary_rules)
    label = document_type.replace("_", " ")

    return f"""You are continuing to analyze pages {start_page}-{end_page} of a {total_pages}-page {label}.

Previous pages contained: {previous_summary}

For THIS chunk only, extract any NEW information visible on these pages that wasn't in the previous analysis.
{base_prompt}

Important: Only return NEW data found in these pages. Do not repeat information from previous pages."""


def summarize_previous_data(data: dict, rules: SummaryRules | None = None) -> str:
    """One-line description of accumulated fields."""
    parts: list[str] = []

    if rules is not None:
        for field, label in rules.labels.items():
            value = data.get(field)
            if value not in (None, "", 0):
                parts.append(f"{label}: {value}")
        for field, phrase in rules.counts.items():
            value = data.get(field)
            if isinstance(value, list) and value:
                parts.append(f"{len(value)} {phrase}")
    else:
        keys = [
            k for k, v in data.items()
            if k not in INTERNAL_KEYS and v not in (None, "", 0, [], {})
        ][:_GENERIC_SUMMARY_KEYS]
        for key in keys:
            rendered = json.dumps(data[key], ensure_ascii=False, default=str)
            parts.append(f"{key}: {rendered[:_GENERIC_VALUE_CHARS]}")

    return ", ".join(parts) if parts else "basic document info"
