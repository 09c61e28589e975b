import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch, tmp_path):
    """Fresh in-memory stores and a hub without the Redis mirror for every test."""
    from src.coauthor.infrastructure import chat_store, doc_store, repository
    from src.coauthor.security.rate_limit import reset_rate_limits
    from src.coauthor.services import broadcast

    for name in ("DB_MODE", "COAUTHOR_REPO_IMPL", "COAUTHOR_CHAT_STORE_IMPL", "COAUTHOR_DOC_STORE_IMPL", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("COAUTHOR_PUBLIC_MODE", raising=False)
    monkeypatch.setenv("COAUTHOR_STORAGE_PATH", str(tmp_path / "storage"))

    monkeypatch.setattr(repository, "_repo", None)
    monkeypatch.setattr(chat_store, "_store", None)
    monkeypatch.setattr(doc_store, "_workspace_store", None)
    monkeypatch.setattr(doc_store, "_version_store", None)
    monkeypatch.setattr(broadcast, "_hub", broadcast.BroadcastHub(mirror=None))
    reset_rate_limits()


@pytest.fixture(autouse=True)
def fake_llm(monkeypatch):
    """Deterministic upstream model wired into the shared gateway; no network, no real sleeps."""
    from src.coauthor.services import ai_gateway
    from tests.utils import FakeChatClient

    client = FakeChatClient()
    gateway = ai_gateway.AIGateway(
        client_factory=lambda: client,
        retry_policy=ai_gateway.RetryPolicy(),
        sleep=client.sleep,
    )
    client.gateway = gateway
    monkeypatch.setattr(ai_gateway, "_gateway", gateway)
    return client
