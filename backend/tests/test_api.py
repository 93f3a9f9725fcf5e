import asyncio
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from app.agents.webhooks import ChatAgent, WebhookNotifier
from app.api import chat as chat_api
from app.api import profile as profile_api
from app.api.tasks import get_notifier, get_store
from app.dependencies import auth
from app.dependencies.auth import AuthError, get_current_user
from app.dependencies.task_store import TaskStore
from app.main import app
from fakes import USER_A, FakeSupabase

AUTH = {"Authorization": "Bearer token-a"}


class RecordingNotifier(WebhookNotifier):
    def __init__(self, url="https://n8n.test/webhook/task"):
        super().__init__(url)
        self.sent = []

    def notify(self, payload):
        self.sent.append(payload)
        return None


@pytest.fixture
def api():
    fake = FakeSupabase()
    http = fake.client()
    notifier = RecordingNotifier()
    agent = SimpleNamespace(value=ChatAgent(None))
    app.dependency_overrides[get_current_user] = lambda: {"id": USER_A, "email": "a@example.com"}
    app.dependency_overrides[get_store] = lambda: TaskStore("token-a", client=http)
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[chat_api.get_chat_agent] = lambda: agent.value
    with TestClient(app) as client:
        yield SimpleNamespace(client=client, supabase=fake, notifier=notifier, agent=agent)
    app.dependency_overrides.clear()


def _chat_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_root(api):
    resp = api.client.get("/")

    assert resp.json() == {"status": "ok", "env": "test"}


def test_missing_bearer_token_is_401():
    with TestClient(app) as client:
        resp = client.get("/tasks")

    assert resp.status_code == 401
    assert resp.json() == {"detail": "Missing bearer token"}


def test_create_list_update_delete(api):
    created = api.client.post("/tasks", json={"title": "  buy milk "}, headers=AUTH)
    assert created.status_code == 201
    body = created.json()
    assert body["title"] == "buy milk"
    assert body["completed"] is False
    assert body["is_ai_processing"] is True
    assert api.notifier.sent == [
        {"id": body["id"], "title": "buy milk", "user_id": USER_A, "action": "improve_title"}
    ]
    assert "is_ai_processing" not in api.supabase.rows[0]

    resp = api.client.patch(f"/tasks/{body['id']}", json={"completed": True, "description": "2L"}, headers=AUTH)
    assert resp.status_code == 204

    listed = api.client.get("/tasks", headers=AUTH).json()
    assert [t["id"] for t in listed] == [body["id"]]
    assert listed[0]["completed"] is True
    assert listed[0]["description"] == "2L"

    assert api.client.delete(f"/tasks/{body['id']}", headers=AUTH).status_code == 204
    assert api.client.get("/tasks", headers=AUTH).json() == []


def test_create_rejects_blank_title(api):
    resp = api.client.post("/tasks", json={"title": "   "}, headers=AUTH)

    assert resp.status_code == 400
    assert api.notifier.sent == []


def test_patch_requires_fields(api):
    resp = api.client.patch("/tasks/abc", json={}, headers=AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Nothing to update"}


def test_store_failure_is_surfaced(api):
    api.supabase.fail_status = 503

    resp = api.client.post("/tasks", json={"title": "x"}, headers=AUTH)

    assert resp.status_code == 503
    assert resp.json() == {"detail": "Failed to create task"}
    assert api.notifier.sent == []


def test_ai_trigger(api):
    resp = api.client.post("/ai/trigger", json={"taskId": "t1", "title": "buy milk"}, headers=AUTH)

    assert resp.json() == {"success": True, "message": "Sent to AI"}
    assert api.notifier.sent == [{"id": "t1", "title": "buy milk", "user_id": USER_A, "action": "improve_title"}]


@pytest.mark.parametrize(
    ("payload", "detail"),
    [
        ({"title": "x"}, "Missing or invalid taskId"),
        ({"taskId": 5, "title": "x"}, "Missing or invalid taskId"),
        ({"taskId": "t1"}, "Missing or invalid title"),
    ],
)
def test_ai_trigger_validation(api, payload, detail):
    resp = api.client.post("/ai/trigger", json=payload, headers=AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"detail": detail}


def test_ai_trigger_without_webhook_url(api):
    app.dependency_overrides[get_notifier] = lambda: RecordingNotifier(url="")

    resp = api.client.post("/ai/trigger", json={"taskId": "t1", "title": "x"}, headers=AUTH)

    assert resp.status_code == 500
    assert resp.json() == {"detail": "Configuration Error"}


def test_chat_agent_create(api):
    resp = api.client.post("/chat/agent", json={"message": "remind me to buy milk"}, headers=AUTH)

    assert resp.json() == {"action": "create", "title": "buy milk"}


@pytest.mark.parametrize("payload", [{}, {"message": ""}, {"message": "   "}, {"message": 42}])
def test_chat_agent_rejects_bad_input(api, payload):
    resp = api.client.post("/chat/agent", json=payload, headers=AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Message is required"}


def test_chat_agent_reply_without_webhook(api):
    resp = api.client.post("/chat/agent", json={"message": "what can you do?"}, headers=AUTH)

    assert resp.json()["action"] == "reply"
    assert resp.json()["text"].startswith("Hello! I can help you organize your tasks.")


def test_chat_agent_forwards_replies(api):
    api.agent.value = ChatAgent(
        "https://n8n.test/chat",
        client=_chat_client(lambda r: httpx.Response(200, json={"reply": "You have 3 tasks."})),
    )

    resp = api.client.post("/chat/agent", json={"message": "how many tasks do I have?"}, headers=AUTH)

    assert resp.json() == {"action": "reply", "text": "You have 3 tasks."}


def test_chat_agent_timeout(api):
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={"reply": "late"})

    api.agent.value = ChatAgent("https://n8n.test/chat", timeout=0.05, client=_chat_client(slow))

    resp = api.client.post("/chat/agent", json={"message": "hello?"}, headers=AUTH)

    assert resp.status_code == 504
    assert resp.json() == {
        "action": "reply",
        "text": "Sorry, the chat service took too long to respond. Please try again.",
    }


def test_chat_agent_upstream_error(api):
    api.agent.value = ChatAgent("https://n8n.test/chat", client=_chat_client(lambda r: httpx.Response(500)))

    resp = api.client.post("/chat/agent", json={"message": "hello?"}, headers=AUTH)

    assert resp.status_code == 500
    assert resp.json()["text"] == "Sorry, I'm having trouble connecting to the chat service."


def test_chat_proxy_enforces_user(api):
    api.agent.value = ChatAgent("https://n8n.test/chat", client=_chat_client(lambda r: httpx.Response(200, json={"reply": "hi"})))

    ok = api.client.post("/chat", json={"message": "hi", "user_id": USER_A}, headers=AUTH)
    forbidden = api.client.post("/chat", json={"message": "hi", "user_id": "someone-else"}, headers=AUTH)
    missing = api.client.post("/chat", json={"message": "hi"}, headers=AUTH)

    assert ok.json() == {"reply": "hi"}
    assert forbidden.status_code == 403
    assert missing.status_code == 400
    assert missing.json() == {"detail": "User ID is required"}


def test_oauth_start_sets_verifier_cookie(api):
    resp = api.client.get("/auth/oauth/google", follow_redirects=False)

    assert resp.status_code == 302
    location = httpx.URL(resp.headers["location"])
    assert location.path == "/auth/v1/authorize"
    assert location.params["provider"] == "google"
    assert "sb-code-verifier" in resp.headers["set-cookie"]


def test_oauth_callback_error_redirects_to_auth(api, monkeypatch):
    async def failing_exchange(code, verifier, client=None):
        raise AuthError(400, "Invalid code")

    monkeypatch.setattr(auth, "exchange_code_for_session", failing_exchange)
    api.client.cookies.set("sb-code-verifier", "ver-1")

    resp = api.client.get("/auth/callback?code=abc", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://app.test/auth?error=Invalid%20code"


def test_oauth_callback_without_code_goes_home(api):
    resp = api.client.get("/auth/callback", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://app.test"


def test_whatsapp_link(api, monkeypatch):
    calls = []

    async def fake_request(method, url, *, headers, json=None, retries=2):
        calls.append((method, url, json))
        return httpx.Response(201, json=[json])

    monkeypatch.setattr(profile_api, "_sb_request_with_retry", fake_request)

    resp = api.client.put("/profile/whatsapp", json={"phone": "+55 (22) 99273-7876"}, headers=AUTH)

    assert resp.status_code == 200
    assert resp.json()["phone"] == "5522992737876"
    assert resp.json()["whatsapp_url"].startswith("https://wa.me/")
    [(method, url, body)] = calls
    assert method == "POST"
    assert url.endswith("/rest/v1/profiles?on_conflict=id")
    assert body["id"] == USER_A


def test_whatsapp_rejects_short_numbers(api):
    resp = api.client.put("/profile/whatsapp", json={"phone": "12-34"}, headers=AUTH)

    assert resp.status_code == 400


def test_shared_http_client_lives_for_the_app_lifespan():
    with TestClient(app):
        http = app.state.http
        assert not http.is_closed

    assert http.is_closed
    assert app.state.http is None
