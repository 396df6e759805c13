"""
test_api.py — HTTP surface tests: the Anthropic proxy and the session routes.

Both the analysis client and the proxy's upstream are httpx.MockTransport,
so no request leaves the process.

Run with:
    python tests/test_api.py
    python -m pytest tests/test_api.py -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from api.main import create_app
from tender_clarification.config import Config
from test_pipeline import TWO_ISSUES, claude_reply, make_pdf


def _settings(api_key="server-key"):
    settings = Config()
    settings.llm.api_key = api_key
    return settings


def _client(llm_handler=None, proxy_handler=None, api_key="server-key"):
    app = create_app(
        settings=_settings(api_key),
        llm_transport=httpx.MockTransport(llm_handler or (lambda r: claude_reply("[]"))),
        proxy_transport=httpx.MockTransport(proxy_handler or (lambda r: claude_reply("hi"))),
    )
    return TestClient(app)


# ── Proxy ─────────────────────────────────────────────────────────────────

def test_proxy_forwards_body_and_headers():
    seen = []

    def upstream(request):
        seen.append(request)
        return claude_reply("pong")

    body = {"model": "m", "max_tokens": 10, "messages": [{"role": "user", "content": "ping"}]}
    with _client(proxy_handler=upstream) as client:
        resp = client.post("/api/anthropic/messages", json=body)

    assert resp.status_code == 200
    assert resp.json()["content"][0]["text"] == "pong"
    assert json.loads(seen[0].content) == body
    assert seen[0].headers["x-api-key"] == "server-key"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"
    print("  ✓ test_proxy_forwards_body_and_headers")


def test_proxy_forwards_status_and_wraps_text():
    with _client(proxy_handler=lambda r: httpx.Response(503, text="upstream down")) as client:
        resp = client.post("/api/anthropic/messages", json={})
    assert resp.status_code == 503
    assert resp.json() == {"message": "upstream down"}

    error_body = {"type": "error", "error": {"message": "bad request"}}
    with _client(proxy_handler=lambda r: httpx.Response(400, json=error_body)) as client:
        resp = client.post("/api/anthropic/messages", json={})
    assert resp.status_code == 400
    assert resp.json() == error_body
    print("  ✓ test_proxy_forwards_status_and_wraps_text")


def test_proxy_without_key_returns_500():
    with _client(api_key="") as client:
        resp = client.post("/api/anthropic/messages", json={})
    assert resp.status_code == 500
    assert "ANTHROPIC_API_KEY" in resp.json()["message"]
    print("  ✓ test_proxy_without_key_returns_500")


def test_proxy_unreachable_returns_502():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    with _client(proxy_handler=refuse) as client:
        resp = client.post("/api/anthropic/messages", json={})
    assert resp.status_code == 502
    assert resp.json() == {"message": "Failed to reach Anthropic API"}
    print("  ✓ test_proxy_unreachable_returns_502")


def test_proxy_rejects_get():
    with _client() as client:
        assert client.get("/api/anthropic/messages").status_code == 405
    print("  ✓ test_proxy_rejects_get")


# ── Session flow ──────────────────────────────────────────────────────────

def test_upload_analyze_question_flow():
    replies = [json.dumps(TWO_ISSUES), "The completion period is 18 months."]

    def llm(request):
        return claude_reply(replies.pop(0))

    pdf = make_pdf(["Concrete grade M25", "Concrete grade M30", "Handover"])
    with _client(llm_handler=llm) as client:
        assert client.get("/health").json()["extractor"] == "ready"

        resp = client.post("/documents", files=[
            ("files", ("tender.pdf", pdf, "application/pdf")),
            ("files", ("notes.txt", b"hello", "text/plain")),
        ])
        assert resp.status_code == 200
        body = resp.json()
        assert [d["name"] for d in body["documents"]] == ["tender.pdf"]
        assert body["documents"][0]["pageCount"] == 3
        assert "text" not in body["documents"][0]
        assert body["errors"][0]["filename"] == "notes.txt"

        docs = client.get("/documents").json()
        assert docs[0]["selected"] is True

        resp = client.post("/analyze")
        assert resp.status_code == 200
        issues = resp.json()["issues"]
        assert len(issues) == 2
        assert all(i["sourceFile"] == "tender.pdf" for i in issues)

        resp = client.post(f"/issues/{issues[1]['id']}/question")
        question = resp.json()
        assert question["status"] == "draft"
        assert question["issueType"] == "Missing Information"
        assert question["text"] == TWO_ISSUES[1]["suggestedQuestion"]

        resp = client.post(f"/questions/{question['id']}/response")
        assert resp.status_code == 200
        assert resp.json()["status"] == "responded"
        assert resp.json()["aiResponse"] == "The completion period is 18 months."

        resp = client.post(f"/questions/{question['id']}/response")
        assert resp.status_code == 409

        assert client.get("/stats").json() == {
            "documents": 1, "selected": 1, "issues": 2, "questions": 1, "responded": 1,
        }
    print("  ✓ test_upload_analyze_question_flow")


def test_analyze_errors_map_to_status():
    with _client(llm_handler=lambda r: claude_reply("No issues, looks fine.")) as client:
        assert client.post("/analyze").json()["kind"] == "SelectionError"

        client.post("/documents", files=[("files", ("a.pdf", make_pdf(["x"]), "application/pdf"))])
        resp = client.post("/analyze")
        assert resp.status_code == 422
        assert resp.json()["kind"] == "MalformedResponseError"
        assert client.get("/issues").json() == []

    with _client(llm_handler=lambda r: httpx.Response(500, json={"message": "boom"})) as client:
        client.post("/documents", files=[("files", ("a.pdf", make_pdf(["x"]), "application/pdf"))])
        resp = client.post("/analyze")
        assert resp.status_code == 502
        assert "boom" in resp.json()["error"]
    print("  ✓ test_analyze_errors_map_to_status")


def test_toggle_and_delete_keep_selection_consistent():
    with _client() as client:
        client.post("/documents", files=[
            ("files", ("a.pdf", make_pdf(["a"]), "application/pdf")),
            ("files", ("b.pdf", make_pdf(["b"]), "application/pdf")),
        ])
        a_id, b_id = [d["id"] for d in client.get("/documents").json()]

        assert client.post(f"/documents/{a_id}/toggle").json()["selected"] is False
        assert client.get("/selection").json() == [b_id]

        assert client.delete(f"/documents/{b_id}").status_code == 200
        assert client.get("/selection").json() == []
        assert client.post(f"/documents/{b_id}/toggle").status_code == 404
        assert client.post("/issues/iss-9999/question").status_code == 404
    print("  ✓ test_toggle_and_delete_keep_selection_consistent")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderClarify — API Test Suite")
    print("=" * 60 + "\n")

    tests = [
        test_proxy_forwards_body_and_headers,
        test_proxy_forwards_status_and_wraps_text,
        test_proxy_without_key_returns_500,
        test_proxy_unreachable_returns_502,
        test_proxy_rejects_get,
        test_upload_analyze_question_flow,
        test_analyze_errors_map_to_status,
        test_toggle_and_delete_keep_selection_consistent,
    ]

    passed = 0
    failed = 0
    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
