"""
store.py — Session-scoped collections for documents, issues and questions.

One SessionStore owns the four collections the rest of the system works
on: documents, the selection set, issues and questions. The orchestrator
and the API get a store passed in; there's no module-level instance.

Ids come from per-kind counters, never from the clock. Two batches parsed
in the same millisecond still get distinct ids.

All mutations go through one RLock. The async routes run on the event
loop thread, but FastAPI runs plain `def` routes in a thread pool.
"""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from tender_clarification.schemas import Document, Issue, Question

logger = logging.getLogger(__name__)


class SessionStore:

    def __init__(self):
        self._lock = threading.RLock()
        self._documents: Dict[str, Document] = {}
        self._selected: set = set()
        self._issues: List[Issue] = []
        self._issue_ids: set = set()
        self._questions: Dict[str, Question] = {}

        self._doc_seq = itertools.count(1)
        self._issue_seq = itertools.count(1)
        self._question_seq = itertools.count(1)

    # ── Documents & selection ─────────────────────────────────────────

    def add_document(
        self,
        name: str,
        text: str,
        size_label: str,
        mime_type: str = "application/pdf",
        page_count: int = 0,
        select: bool = True,
    ) -> Document:
        """Register an extracted document. New uploads are selected by default."""
        with self._lock:
            doc = Document(
                id=f"doc-{next(self._doc_seq):04d}",
                name=name,
                size_label=size_label,
                mime_type=mime_type,
                uploaded_at=datetime.now(),
                text=text,
                page_count=page_count,
            )
            self._documents[doc.id] = doc
            if select:
                self._selected.add(doc.id)
        logger.info("Added document %s (%s, %d chars)", doc.id, name, len(text))
        return doc

    def remove_document(self, doc_id: str) -> bool:
        with self._lock:
            if self._documents.pop(doc_id, None) is None:
                return False
            self._selected.discard(doc_id)
        logger.info("Removed document %s", doc_id)
        return True

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self._documents.get(doc_id)

    @property
    def documents(self) -> List[Document]:
        with self._lock:
            return list(self._documents.values())

    def toggle_selection(self, doc_id: str) -> bool:
        """
        Flip a document in or out of the selection.

        Unknown ids are ignored so the selection can never reference a
        document that isn't there. Returns the new membership.
        """
        with self._lock:
            if doc_id not in self._documents:
                return False
            if doc_id in self._selected:
                self._selected.discard(doc_id)
                return False
            self._selected.add(doc_id)
            return True

    def select_all(self) -> None:
        with self._lock:
            self._selected = set(self._documents)

    def clear_selection(self) -> None:
        with self._lock:
            self._selected.clear()

    @property
    def selected_ids(self) -> set:
        with self._lock:
            return set(self._selected)

    def selected_documents(self) -> List[Document]:
        """Selected documents in upload order. This order decides what survives truncation."""
        with self._lock:
            return [d for d in self._documents.values() if d.id in self._selected]

    # ── Issues ────────────────────────────────────────────────────────

    def next_issue_id(self) -> str:
        with self._lock:
            return f"iss-{next(self._issue_seq):04d}"

    def add_issues(self, batch: Iterable[Issue]) -> int:
        """
        Append a parsed batch. Issues whose id is already stored are skipped,
        so replaying the same batch twice can't duplicate entries.
        """
        added = 0
        with self._lock:
            for issue in batch:
                if issue.id in self._issue_ids:
                    continue
                self._issues.append(issue)
                self._issue_ids.add(issue.id)
                added += 1
        logger.info("Stored %d new issues (%d total)", added, len(self._issues))
        return added

    @property
    def issues(self) -> List[Issue]:
        with self._lock:
            return list(self._issues)

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        with self._lock:
            for issue in self._issues:
                if issue.id == issue_id:
                    return issue
        return None

    # ── Questions ─────────────────────────────────────────────────────

    def add_question_from_issue(self, issue_id: str) -> Optional[Question]:
        """Create a draft question from an issue's suggested question. None if the issue is unknown."""
        issue = self.get_issue(issue_id)
        if issue is None:
            return None
        with self._lock:
            question = Question(
                id=f"q-{next(self._question_seq):04d}",
                text=issue.suggested_question,
                related_issue_id=issue.id,
                issue_type=issue.type,
                created_at=datetime.now(),
            )
            self._questions[question.id] = question
        logger.info("Created question %s from issue %s", question.id, issue.id)
        return question

    def attach_response(self, question_id: str, text: str) -> bool:
        """
        Move a question from draft to responded.

        No-op (returns False) when the question is unknown or already has a
        response. A late reply can't overwrite or re-fire the transition.
        """
        with self._lock:
            question = self._questions.get(question_id)
            if question is None or question.status != "draft":
                return False
            self._questions[question_id] = question.model_copy(
                update={"status": "responded", "ai_response": text}
            )
        logger.info("Attached response to question %s", question_id)
        return True

    @property
    def questions(self) -> List[Question]:
        with self._lock:
            return list(self._questions.values())

    def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "documents": len(self._documents),
                "selected": len(self._selected),
                "issues": len(self._issues),
                "questions": len(self._questions),
                "responded": sum(
                    1 for q in self._questions.values() if q.status == "responded"
                ),
            }
