"""
HTTP surface: the Anthropic pass-through proxy plus the session actions
(upload, select, analyze, promote to question, draft response).

Session state lives on app.state for the lifetime of the process. There is
no persistence; restarting the server starts a clean session.

Run with:
    python -m api.main
    uvicorn api.main:app --port 5000
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tender_clarification.config import Config, config
from tender_clarification.errors import ExtractionError
from tender_clarification.ingestion import PdfTextExtractor, ingest_batch
from tender_clarification.llm_client import CompletionClient
from tender_clarification.orchestrator import AnalysisOrchestrator
from tender_clarification.store import SessionStore

logger = logging.getLogger("tender_clarification.api")

# Orchestrator error kinds -> HTTP status
_STATUS_FOR_KIND = {
    "SelectionError": 400,
    "QuestionNotFoundError": 404,
    "StateError": 409,
    "OperationInProgressError": 409,
    "MalformedResponseError": 422,
    "TransportError": 502,
    "UpstreamError": 502,
}


def create_app(
    settings: Optional[Config] = None,
    llm_transport: Optional[httpx.AsyncBaseTransport] = None,
    proxy_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the app. The transports are for tests: they let the LLM and the
    proxy's upstream be swapped for httpx.MockTransport.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = SessionStore()
        extractor = PdfTextExtractor()
        client = CompletionClient(settings=settings.llm, transport=llm_transport)
        app.state.store = store
        app.state.extractor = extractor
        app.state.orchestrator = AnalysisOrchestrator(store, client, settings)
        app.state.proxy_client = httpx.AsyncClient(
            timeout=settings.llm.timeout, transport=proxy_transport
        )
        await extractor.bootstrap_async()
        yield
        await client.aclose()
        await app.state.proxy_client.aclose()

    app = FastAPI(title="TenderClarify", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_methods=["*"], allow_headers=["*"],
    )

    # ── Proxy ─────────────────────────────────────────────────────────

    @app.post("/api/anthropic/messages")
    async def anthropic_proxy(request: Request):
        api_key = settings.llm.api_key
        if not api_key:
            return JSONResponse(
                status_code=500,
                content={"message": "Missing ANTHROPIC_API_KEY server environment variable"},
            )

        body = await request.body()
        if len(body) > settings.proxy.max_body_mb * 1024 * 1024:
            return JSONResponse(status_code=413, content={"message": "Request body too large"})

        try:
            upstream = await app.state.proxy_client.post(
                settings.proxy.upstream_url,
                content=body,
                headers={
                    "content-type": "application/json",
                    "x-api-key": api_key,
                    "anthropic-version": settings.llm.api_version,
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Anthropic proxy error: %s", type(exc).__name__)
            return JSONResponse(status_code=502, content={"message": "Failed to reach Anthropic API"})

        # Always hand the client JSON, even when upstream sent plain text.
        try:
            payload = json.loads(upstream.text)
        except ValueError:
            payload = {"message": upstream.text}
        return JSONResponse(status_code=upstream.status_code, content=payload)

    # ── Documents ─────────────────────────────────────────────────────

    @app.post("/documents")
    async def upload_documents(files: List[UploadFile] = File(...)):
        batch = [(f.filename or "upload.pdf", await f.read(), f.content_type) for f in files]
        try:
            documents, failures = await ingest_batch(
                app.state.extractor, app.state.store, batch, settings
            )
        except ExtractionError as exc:
            return JSONResponse(status_code=503, content={"error": str(exc)})
        return {
            "documents": [_document_summary(d) for d in documents],
            "errors": [{"filename": f.filename, "message": f.message} for f in failures],
        }

    @app.get("/documents")
    def list_documents():
        store: SessionStore = app.state.store
        selected = store.selected_ids
        return [
            {**_document_summary(d), "selected": d.id in selected}
            for d in store.documents
        ]

    @app.delete("/documents/{doc_id}")
    def delete_document(doc_id: str):
        if not app.state.store.remove_document(doc_id):
            return JSONResponse(status_code=404, content={"error": "not found"})
        return {"deleted": doc_id}

    @app.post("/documents/{doc_id}/toggle")
    def toggle_document(doc_id: str):
        store: SessionStore = app.state.store
        if store.get_document(doc_id) is None:
            return JSONResponse(status_code=404, content={"error": "not found"})
        return {"id": doc_id, "selected": store.toggle_selection(doc_id)}

    @app.get("/selection")
    def get_selection():
        return sorted(app.state.store.selected_ids)

    # ── Analysis & questions ──────────────────────────────────────────

    @app.post("/analyze")
    async def analyze():
        result = await app.state.orchestrator.analyze_selected()
        if not result.ok:
            return _error_response(result)
        return {
            "issues": [i.model_dump(by_alias=True, mode="json") for i in result.issues],
            "warnings": result.warnings,
            "truncated": result.truncated,
        }

    @app.get("/issues")
    def list_issues():
        return [i.model_dump(by_alias=True, mode="json") for i in app.state.store.issues]

    @app.post("/issues/{issue_id}/question")
    def promote_issue(issue_id: str):
        question = app.state.store.add_question_from_issue(issue_id)
        if question is None:
            return JSONResponse(status_code=404, content={"error": "not found"})
        return question.model_dump(by_alias=True, mode="json")

    @app.get("/questions")
    def list_questions():
        return [q.model_dump(by_alias=True, mode="json") for q in app.state.store.questions]

    @app.post("/questions/{question_id}/response")
    async def generate_response(question_id: str):
        result = await app.state.orchestrator.generate_response(question_id)
        if not result.ok:
            return _error_response(result)
        question = app.state.store.get_question(question_id)
        return question.model_dump(by_alias=True, mode="json")

    @app.get("/stats")
    def stats():
        return app.state.store.stats()

    @app.get("/health")
    def health():
        orchestrator: AnalysisOrchestrator = app.state.orchestrator
        return {
            "status": "ok",
            "extractor": app.state.extractor.state.value,
            "analyzing": orchestrator.is_analyzing,
        }

    return app


def _document_summary(doc) -> dict:
    data = doc.model_dump(by_alias=True, mode="json", exclude={"text"})
    data["textLength"] = len(doc.text)
    return data


def _error_response(result) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_FOR_KIND.get(result.error_kind, 500),
        content={"error": result.error, "kind": result.error_kind},
    )


app = create_app()


def main():
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Server listening on http://localhost:%d", config.proxy.port)
    uvicorn.run(app, host="0.0.0.0", port=config.proxy.port)


if __name__ == "__main__":
    main()
