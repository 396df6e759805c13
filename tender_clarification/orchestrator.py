"""
orchestrator.py — Runs prompt -> completion -> parse for each use case.

Every run walks the same states:

    IDLE -> BUILDING -> AWAITING_COMPLETION -> PARSING -> DONE | FAILED

BUILDING and PARSING are plain CPU work. The only await is the HTTP call
in AWAITING_COMPLETION.

A run either lands a fully parsed result in the store or nothing at all.
Issues are added as one batch after parsing finishes, and a response is
attached only after it passed parse_answer. Every exception is caught here
and turned into one readable message on the result object, so callers
(the API, a notebook) never have to know the error classes to show
something sensible.

Busy tracking is per operation, not one global lock: batch analysis has a
single key (it's one combined call over everything selected), response
generation has one key per question. Two different questions can be
answered at the same time; the same question can't.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from tender_clarification.config import Config, config
from tender_clarification.errors import (
    ClarificationError,
    OperationInProgressError,
    QuestionNotFoundError,
    SelectionError,
    StateError,
    TransportError,
)
from tender_clarification.llm_client import CompletionClient
from tender_clarification.parsing import parse_answer, parse_issues
from tender_clarification.prompts import (
    BuiltPrompt,
    build_multi_analysis_prompt,
    build_question_response_prompt,
    build_single_analysis_prompt,
)
from tender_clarification.schemas import Document, Issue
from tender_clarification.store import SessionStore

logger = logging.getLogger(__name__)

ANALYSIS_KEY = "batch-analysis"


class RunState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    AWAITING_COMPLETION = "awaiting_completion"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _RunResult:
    state: RunState = RunState.IDLE
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE


@dataclass
class AnalysisResult(_RunResult):
    issues: List[Issue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    truncated: bool = False


@dataclass
class AnswerResult(_RunResult):
    question_id: Optional[str] = None
    answer: Optional[str] = None


class AnalysisOrchestrator:
    """
    Usage:
        store = SessionStore()
        orchestrator = AnalysisOrchestrator(store, CompletionClient())
        result = await orchestrator.analyze_selected()
        if not result.ok:
            print(result.error)
    """

    def __init__(
        self,
        store: SessionStore,
        client: CompletionClient,
        settings: Optional[Config] = None,
    ):
        self.store = store
        self.client = client
        self.settings = settings or config
        self._in_flight: set = set()

    # ── Busy flags ────────────────────────────────────────────────────

    @property
    def is_analyzing(self) -> bool:
        return ANALYSIS_KEY in self._in_flight

    def is_generating(self, question_id: str) -> bool:
        return _question_key(question_id) in self._in_flight

    @contextmanager
    def _claim(self, key: str):
        if key in self._in_flight:
            raise OperationInProgressError(f"'{key}' is already running")
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    # ── Analysis ──────────────────────────────────────────────────────

    async def analyze_selected(self) -> AnalysisResult:
        """Analyze every selected document in one combined call."""
        return await self.analyze_documents(self.store.selected_documents())

    async def analyze_documents(self, documents: Sequence[Document]) -> AnalysisResult:
        result = AnalysisResult()
        start = time.time()
        try:
            with self._claim(ANALYSIS_KEY):
                if not documents:
                    raise SelectionError("Please select at least one document to analyze")

                self._advance(result, RunState.BUILDING, ANALYSIS_KEY)
                prompt = self._build_analysis_prompt(documents)
                result.truncated = prompt.truncated
                if prompt.truncated:
                    logger.info(
                        "Combined text over limit, sending first %d chars",
                        len(prompt.embedded_text),
                    )

                self._advance(result, RunState.AWAITING_COMPLETION, ANALYSIS_KEY)
                reply = await self._complete(prompt)

                self._advance(result, RunState.PARSING, ANALYSIS_KEY)
                single = len(documents) == 1
                parsed = parse_issues(
                    reply,
                    id_factory=self.store.next_issue_id,
                    source_file=prompt.source_label if single else None,
                    source_files=None if single else prompt.source_label,
                    strict=self.settings.parser.strict,
                )

                self.store.add_issues(parsed.issues)
                result.issues = parsed.issues
                result.warnings = parsed.warnings
                self._advance(result, RunState.DONE, ANALYSIS_KEY)
        except ClarificationError as exc:
            self._fail(result, exc, "Failed to analyze documents")

        logger.info(
            "Analysis of %d document(s) %s in %.1fs (%d issues)",
            len(documents), result.state.value, time.time() - start, len(result.issues),
        )
        return result

    def _build_analysis_prompt(self, documents: Sequence[Document]) -> BuiltPrompt:
        if len(documents) == 1:
            doc = documents[0]
            return build_single_analysis_prompt(doc.name, doc.text, self.settings.prompts)
        return build_multi_analysis_prompt(documents, self.settings.prompts)

    # ── Question responses ────────────────────────────────────────────

    async def generate_response(self, question_id: str) -> AnswerResult:
        """Ask the model to draft an answer and attach it to the question."""
        result = AnswerResult(question_id=question_id)
        key = _question_key(question_id)
        try:
            with self._claim(key):
                question = self.store.get_question(question_id)
                if question is None:
                    raise QuestionNotFoundError(f"No question with id {question_id}")
                if question.status != "draft":
                    raise StateError(f"Question {question_id} already has a response")

                self._advance(result, RunState.BUILDING, key)
                prompt = build_question_response_prompt(question.text, self.settings.prompts)

                self._advance(result, RunState.AWAITING_COMPLETION, key)
                reply = await self._complete(prompt)

                self._advance(result, RunState.PARSING, key)
                answer = parse_answer(reply)

                if not self.store.attach_response(question_id, answer):
                    raise StateError(f"Question {question_id} already has a response")
                result.answer = answer
                self._advance(result, RunState.DONE, key)
        except ClarificationError as exc:
            self._fail(result, exc, "Failed to generate AI response")
        return result

    # ── Shared plumbing ───────────────────────────────────────────────

    async def _complete(self, prompt: BuiltPrompt) -> str:
        """
        Call the model, retrying unreachable-endpoint failures only when
        max_retries is configured. Upstream errors (4xx/5xx) are never
        retried: a 400 will be a 400 again.
        """
        attempts = self.settings.llm.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self.client.complete(
                    self.settings.llm.model, prompt.max_tokens, prompt.messages
                )
            except TransportError as exc:
                if attempt == attempts:
                    raise
                delay = self.settings.llm.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "LLM attempt %d/%d failed: %s. Retrying in %.1fs.",
                    attempt, attempts, exc, delay,
                )
                await asyncio.sleep(delay)
        raise TransportError("LLM call was not attempted")

    @staticmethod
    def _advance(result: _RunResult, state: RunState, key: str) -> None:
        logger.debug("[%s] %s -> %s", key, result.state.value, state.value)
        result.state = state

    @staticmethod
    def _fail(result: _RunResult, exc: ClarificationError, prefix: str) -> None:
        result.state = RunState.FAILED
        result.error_kind = type(exc).__name__
        result.error = f"{prefix}: {exc}"
        logger.error("%s (%s)", result.error, result.error_kind)


def _question_key(question_id: str) -> str:
    return f"question:{question_id}"
