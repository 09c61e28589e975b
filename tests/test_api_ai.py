from fastapi.testclient import TestClient

from src.coauthor.api.main import app
from src.coauthor.security import rate_limit
from tests.utils import auth_headers


client = TestClient(app)

OWNER = auth_headers("owner@example.com")
VIEWER = auth_headers("viewer@example.com")


def _project(content=None):
    pid = client.post("/projects", json={"name": "Blog"}, headers=OWNER).json()["project_id"]
    client.post(f"/projects/{pid}/collaborators", json={"user": "viewer@example.com", "role": "viewer"}, headers=OWNER)
    if content is not None:
        client.put(f"/workspaces/{pid}", json={"content": content}, headers=OWNER)
    return pid


def test_generate_into_empty_workspace(fake_llm):
    pid = _project()
    fake_llm.queue("Hello world.")
    res = client.post("/ai/generate", json={"project_id": pid, "prompt": "Greet"}, headers=OWNER)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["content"] == "Hello world."
    assert body["stats"]["total_edits"] == 1
    assert body["stats"]["ai_contribution"] == 5
    assert client.get(f"/workspaces/{pid}", headers=VIEWER).json()["content"] == "Hello world."


def test_generate_requires_prompt(fake_llm):
    pid = _project()
    res = client.post("/ai/generate", json={"project_id": pid, "prompt": ""}, headers=OWNER)
    assert res.status_code == 400
    assert fake_llm.prompts == []


def test_improve_selection(fake_llm):
    pid = _project("The cat sat. The cat ran.")
    fake_llm.queue("The feline sat.")
    res = client.post(
        "/api/ai/improve",
        json={"project_id": pid, "instructions": "Fancier", "selection": "The cat sat."},
        headers=OWNER,
    )
    assert res.status_code == 200, res.text
    assert res.json()["content"] == "The feline sat. The cat ran."


def test_viewer_cannot_improve(fake_llm):
    pid = _project("Text")
    res = client.post("/ai/improve", json={"project_id": pid, "instructions": "Fix"}, headers=VIEWER)
    assert res.status_code == 403


def test_ai_outage_returns_503_with_generic_detail(fake_llm):
    pid = _project("Keep me.")
    fake_llm.fail_always(ConnectionError("503 Service Unavailable from upstream host 10.0.0.7"))
    res = client.post("/ai/generate", json={"project_id": pid, "prompt": "More"}, headers=OWNER)
    assert res.status_code == 503
    assert "10.0.0.7" not in res.json()["detail"]
    assert client.get(f"/workspaces/{pid}", headers=OWNER).json()["content"] == "Keep me."
    messages = client.get(f"/workspaces/{pid}/messages", headers=OWNER).json()
    assert all(m["sender"] != "ai" for m in messages)


def test_chat_message_and_transcript(fake_llm):
    pid = _project()
    fake_llm.queue("Try a stronger hook.")
    res = client.post("/ai/message", json={"project_id": pid, "message": "Ideas?", "mode": "edit"}, headers=VIEWER)
    assert res.status_code == 200, res.text
    assert res.json()["text"] == "Try a stronger hook."
    assert res.json()["role"] == "ai"

    messages = client.get(f"/workspaces/{pid}/messages", headers=OWNER).json()
    assert [m["sender"] for m in messages] == ["user", "ai"]
    assert messages[1]["ai_mode"] == "edit"


def test_chat_rejects_empty_message(fake_llm):
    pid = _project()
    res = client.post("/ai/message", json={"project_id": pid, "message": "  "}, headers=OWNER)
    assert res.status_code == 400


def test_analyze_and_suggestions(fake_llm):
    pid = _project("Paragraph one. Paragraph two.")
    fake_llm.queue("- Vary sentence length\n- Add transitions")
    res = client.post("/ai/analyze", json={"project_id": pid}, headers=VIEWER)
    assert res.status_code == 200, res.text
    assert res.json()["suggestions"] == ["Vary sentence length", "Add transitions"]

    fake_llm.queue("- Cut adverbs")
    res = client.post("/ai/suggestions", json={"project_id": pid, "content": "Text"}, headers=OWNER)
    assert res.json() == ["Cut adverbs"]
    assert client.get(f"/projects/{pid}/stats", headers=OWNER).json()["ai_suggestions"] == 3


def test_contributions_estimate(fake_llm):
    pid = _project("Text")
    fake_llm.queue('{"aiContribution": 35, "humanContribution": 65, "explanation": "balanced", "totalEdits": 2}')
    res = client.post("/ai/contributions", json={"project_id": pid, "content": "Text"}, headers=OWNER)
    assert res.status_code == 200, res.text
    assert res.json()["ai_contribution"] == 35
    assert client.get(f"/projects/{pid}/stats", headers=OWNER).json()["human_contribution"] == 65


def test_ai_health_reports_gateway_state(fake_llm):
    res = client.get("/ai/health", headers=OWNER)
    assert res.status_code == 200
    assert res.json()["state"] == "pending"
    assert res.json()["max_attempts"] == 4


def test_ai_health_check_runs_live_generation(fake_llm):
    fake_llm.queue("Hi there.")
    res = client.get("/ai/health", params={"check": "true"}, headers=OWNER)
    assert res.status_code == 200
    assert res.json() == {"healthy": True, "state": "ready", "max_attempts": 4}
    assert fake_llm.prompts == ["Hello, this is a test message."]


def test_ai_health_check_reports_unhealthy_model(fake_llm):
    fake_llm.fail_always(ValueError("bad request"))
    res = client.get("/api/ai/health?check=true", headers=OWNER)
    assert res.status_code == 200
    assert res.json()["healthy"] is False


def test_ai_rate_limit_returns_429(monkeypatch, fake_llm):
    monkeypatch.setattr(rate_limit, "_rate_limiting_disabled", lambda: False)
    monkeypatch.setenv("COAUTHOR_AI_RATE_LIMIT", "1")
    pid = _project()
    assert client.post("/ai/generate", json={"project_id": pid, "prompt": "a"}, headers=OWNER).status_code == 200
    res = client.post("/ai/generate", json={"project_id": pid, "prompt": "b"}, headers=OWNER)
    assert res.status_code == 429
    assert int(res.headers["Retry-After"]) >= 1
