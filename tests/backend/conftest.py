from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    # Pipeline rules at their defaults.
    monkeypatch.setenv("OFFER_STAGE_REQUIRES_OFFER", "true")
    monkeypatch.setenv("DECLINE_REJECTS_CANDIDATE", "true")
    monkeypatch.delenv("DEFAULT_PAGE_SIZE", raising=False)
    app = create_app()
    return TestClient(app)
