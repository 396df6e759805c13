"""
schemas.py — Pydantic v2 models for documents, issues and questions.

Field names are snake_case in Python and camelCase on the wire
(suggestedQuestion, sourceFile, aiResponse ...) because that's the shape
the model is asked to produce and the shape the front end consumes.
Dump with `model_dump(by_alias=True)` when serialising.

Everything here is frozen. State changes (a question getting its response)
produce a new instance via `model_copy`, and only the store does that.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

IssueTypeName = Literal[
    "Inconsistency",
    "Missing Information",
    "Ambiguity",
    "Contradiction",
    "Cross-Document Conflict",
]
SeverityName = Literal["high", "medium", "low"]
QuestionStatus = Literal["draft", "responded"]

# Keyed by the lowercased letters-only spelling so "MissingInformation",
# "missing information" and "Missing-Information" all land on one label.
_ISSUE_TYPE_LOOKUP = {
    "inconsistency": "Inconsistency",
    "missinginformation": "Missing Information",
    "ambiguity": "Ambiguity",
    "contradiction": "Contradiction",
    "crossdocumentconflict": "Cross-Document Conflict",
}


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Document(_Model):
    """An uploaded PDF and its full paginated text."""
    id: str
    name: str
    size_label: str
    mime_type: str = "application/pdf"
    uploaded_at: datetime
    text: str
    page_count: int = 0


class IssueDraft(_Model):
    """
    One issue as the model reports it, before we assign identity.

    Every field is required. A missing key or an unknown type/severity
    fails validation and the parser decides whether that drops the entry
    or the whole batch.
    """
    type: IssueTypeName
    severity: SeverityName
    description: str
    location: str
    suggested_question: str

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, v):
        if isinstance(v, str):
            key = re.sub(r"[^a-z]", "", v.lower())
            return _ISSUE_TYPE_LOOKUP.get(key, v)
        return v

    @field_validator("severity", mode="before")
    @classmethod
    def normalise_severity(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("description", "suggested_question")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("field cannot be empty or whitespace")
        return v.strip()


class Issue(IssueDraft):
    """A validated issue with a session-unique id and provenance."""
    id: str
    source_file: Optional[str] = None
    source_files: Optional[str] = None


class Question(_Model):
    """A clarification question promoted from an issue."""
    id: str
    text: str
    related_issue_id: str
    issue_type: IssueTypeName
    status: QuestionStatus = "draft"
    submitted_by: str = "System Generated"
    created_at: datetime
    ai_response: Optional[str] = Field(default=None)
