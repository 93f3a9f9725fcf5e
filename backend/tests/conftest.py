import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def supabase_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://sb.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("N8N_WEBHOOK_URL", "https://n8n.test/webhook/task")
    monkeypatch.setenv("N8N_CHAT_WEBHOOK_URL", "https://n8n.test/webhook/chat")
    monkeypatch.setenv("SITE_URL", "http://app.test")
    monkeypatch.setenv("APP_ENV", "test")
