"""
parsing.py — Turn raw model replies into validated issues or answer text.

The model is told to answer with nothing but a JSON array. It mostly does,
but it also likes to:
  - open with "Here are the issues I found:" before the array
  - wrap the array in ```json fences
  - add a closing remark after the array

So we don't json.loads() the reply directly. We take everything from the
first "[" to the last "]" (greedy) and parse that. Fences and chatter on
either side fall away; nested arrays inside issues are kept intact.

Each element is then validated against IssueDraft. A malformed entry
(missing field, severity "critical", type "Typo") is dropped with a
warning in lenient mode, or rejects the whole reply in strict mode. We
default to lenient: one bad entry in a batch of twelve shouldn't throw
away eleven useful issues.

Nothing in here talks to the network. Same reply in, same result out,
apart from the ids handed out by the caller's id_factory.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from tender_clarification.errors import MalformedResponseError
from tender_clarification.schemas import Issue, IssueDraft

logger = logging.getLogger(__name__)

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class ParsedIssues:
    issues: List[Issue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.warnings)


def extract_json_array(reply: str) -> List[Any]:
    """Find and decode the JSON array embedded in a reply."""
    match = _ARRAY_RE.search(reply or "")
    if not match:
        logger.error("No JSON array in model reply. First 300 chars: %s", (reply or "")[:300])
        raise MalformedResponseError("The model reply did not contain a JSON array")

    try:
        payload = json.loads(match.group())
    except json.JSONDecodeError as exc:
        logger.error("JSON array in model reply failed to parse: %s", exc)
        raise MalformedResponseError(
            f"The model reply contained an invalid JSON array: {exc.msg}"
        ) from exc

    if not isinstance(payload, list):
        raise MalformedResponseError("The model reply did not contain a JSON array")
    return payload


def parse_issues(
    reply: str,
    id_factory: Callable[[], str],
    source_file: Optional[str] = None,
    source_files: Optional[str] = None,
    strict: bool = False,
) -> ParsedIssues:
    """
    Validate every array element as an issue and stamp survivors with an id
    and provenance.

    Ids are drawn only for entries that survive validation.
    """
    payload = extract_json_array(reply)
    result = ParsedIssues()

    drafts: List[IssueDraft] = []
    for index, item in enumerate(payload):
        try:
            if not isinstance(item, dict):
                raise MalformedResponseError(
                    f"expected an object, got {type(item).__name__}"
                )
            drafts.append(IssueDraft.model_validate(item))
        except (ValidationError, MalformedResponseError) as exc:
            reason = _summarise(exc)
            if strict:
                raise MalformedResponseError(
                    f"Issue #{index + 1} in the model reply is invalid: {reason}"
                ) from exc
            result.warnings.append(f"Dropped issue #{index + 1}: {reason}")

    for draft in drafts:
        result.issues.append(Issue(
            **draft.model_dump(),
            id=id_factory(),
            source_file=source_file,
            source_files=source_files,
        ))

    if result.warnings:
        logger.warning(
            "Dropped %d of %d issues as malformed: %s",
            result.dropped, len(payload), "; ".join(result.warnings),
        )
    logger.info("Parsed %d/%d issues from model reply", len(result.issues), len(payload))
    return result


def parse_answer(reply: str) -> str:
    """The reply is the answer. Only an empty reply is unusable."""
    if not reply or not reply.strip():
        raise MalformedResponseError("The model returned an empty response")
    return reply


def _summarise(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)
