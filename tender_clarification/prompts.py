"""
prompts.py — Prompt construction for analysis and question answering.

All LLM prompts live here so they can be reviewed and tuned in one place.
Builders are pure: the same documents produce byte-identical prompts, no
timestamps, no randomness.

Truncation is applied to the final combined text, not per document. With
several documents selected, whatever comes first in selection order gets
the budget and the tail of the last document is what falls off.

The "Respond ONLY with a JSON array in this exact format" block is load
bearing. parsing.extract_json_array assumes the model followed it; change
one and you need to change the other.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from tender_clarification.config import PromptConfig, config
from tender_clarification.schemas import Document


class UseCase(str, Enum):
    SINGLE_ANALYSIS = "single-analysis"
    MULTI_ANALYSIS = "multi-analysis"
    QUESTION_RESPONSE = "question-response"


@dataclass(frozen=True)
class BuiltPrompt:
    use_case: UseCase
    content: str
    max_tokens: int
    expected_output: str  # "issue_array" or "plain_text"
    embedded_text: str = ""
    truncated: bool = False
    source_label: str = ""

    @property
    def messages(self) -> List[Dict[str, str]]:
        return [{"role": "user", "content": self.content}]


# ── Prompt components ─────────────────────────────────────────────────────

_EXAMPLE_ISSUE = [{
    "type": "Inconsistency",
    "severity": "high",
    "description": "Brief description of the issue",
    "location": "Section or page reference",
    "suggestedQuestion": "Professional clarification question",
}]

RESPONSE_FORMAT = (
    "Respond ONLY with a JSON array in this exact format, no other text:\n"
    + json.dumps(_EXAMPLE_ISSUE, indent=2)
)

ISSUE_FIELDS = """For each issue found, provide:
- Type ({types})
- Severity (high/medium/low)
- Description (brief explanation)
- Location (where in the {where})
- A professionally worded clarification question"""

SINGLE_TEMPLATE = """You are analyzing a construction tender document. Review the following text and identify potential issues that might need clarification.

Document: {name}

Text:
{text}

Please identify:
1. Inconsistencies (conflicting information)
2. Missing information (incomplete specifications)
3. Ambiguities (unclear requirements)
4. Contradictions (conflicting requirements)

{fields}

{response_format}"""

MULTI_TEMPLATE = """You are analyzing construction tender documents. Review the following texts and identify potential issues that might need clarification. Pay special attention to inconsistencies ACROSS documents.

Documents: {names}

Text:
{text}

Please identify:
1. Inconsistencies (conflicting information within or across documents)
2. Missing information (incomplete specifications)
3. Ambiguities (unclear requirements)
4. Contradictions (conflicting requirements)
5. Cross-document conflicts (differences between multiple tender documents)

{fields}

{response_format}"""

ANSWER_TEMPLATE = """You are a construction project manager responding to a tender clarification question.

Question: {question}

Provide a professional, clear, and helpful response that:
1. Addresses the question directly
2. Provides specific information
3. References relevant sections/standards if applicable
4. Maintains a professional tone

Respond with ONLY the clarification response text, no additional formatting or preamble."""


# ── Builders ──────────────────────────────────────────────────────────────

def truncate(text: str, limit: int, notice: str) -> tuple:
    """
    Cut `text` to `limit` characters.

    Returns (embedded, truncated). When truncated, `embedded` is exactly
    `limit` characters of source followed by a space and the notice.
    """
    if len(text) <= limit:
        return text, False
    return f"{text[:limit]} {notice}", True


def combine_documents(documents: Sequence[Document]) -> str:
    """Join documents in the given order, each under a `=== name ===` banner."""
    return "\n".join(f"\n=== {doc.name} ===\n{doc.text}" for doc in documents)


def build_single_analysis_prompt(
    name: str,
    text: str,
    settings: Optional[PromptConfig] = None,
) -> BuiltPrompt:
    settings = settings or config.prompts
    embedded, truncated = truncate(
        text, settings.single_char_limit, settings.truncation_notice
    )
    content = SINGLE_TEMPLATE.format(
        name=name,
        text=embedded,
        fields=ISSUE_FIELDS.format(
            types="Inconsistency/Missing Information/Ambiguity/Contradiction",
            where="document",
        ),
        response_format=RESPONSE_FORMAT,
    )
    return BuiltPrompt(
        use_case=UseCase.SINGLE_ANALYSIS,
        content=content,
        max_tokens=settings.single_max_tokens,
        expected_output="issue_array",
        embedded_text=text[:settings.single_char_limit],
        truncated=truncated,
        source_label=name,
    )


def build_multi_analysis_prompt(
    documents: Sequence[Document],
    settings: Optional[PromptConfig] = None,
) -> BuiltPrompt:
    settings = settings or config.prompts
    combined = combine_documents(documents)
    names = ", ".join(doc.name for doc in documents)
    embedded, truncated = truncate(
        combined, settings.multi_char_limit, settings.truncation_notice
    )
    content = MULTI_TEMPLATE.format(
        names=names,
        text=embedded,
        fields=ISSUE_FIELDS.format(
            types=(
                "Inconsistency/Missing Information/Ambiguity/Contradiction/"
                "Cross-Document Conflict"
            ),
            where="documents",
        ),
        response_format=RESPONSE_FORMAT,
    )
    return BuiltPrompt(
        use_case=UseCase.MULTI_ANALYSIS,
        content=content,
        max_tokens=settings.multi_max_tokens,
        expected_output="issue_array",
        embedded_text=combined[:settings.multi_char_limit],
        truncated=truncated,
        source_label=names,
    )


def build_question_response_prompt(
    question_text: str,
    settings: Optional[PromptConfig] = None,
) -> BuiltPrompt:
    settings = settings or config.prompts
    return BuiltPrompt(
        use_case=UseCase.QUESTION_RESPONSE,
        content=ANSWER_TEMPLATE.format(question=question_text),
        max_tokens=settings.answer_max_tokens,
        expected_output="plain_text",
    )


def build_prompt(
    use_case: UseCase,
    payload: Any,
    settings: Optional[PromptConfig] = None,
) -> BuiltPrompt:
    """
    Dispatch on use case.

    Payloads: a Document for single-analysis, a sequence of Documents for
    multi-analysis, the question text for question-response.
    """
    use_case = UseCase(use_case)
    if use_case is UseCase.SINGLE_ANALYSIS:
        return build_single_analysis_prompt(payload.name, payload.text, settings)
    if use_case is UseCase.MULTI_ANALYSIS:
        return build_multi_analysis_prompt(payload, settings)
    return build_question_response_prompt(payload, settings)
