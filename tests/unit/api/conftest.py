"""API fixtures: an app wired to in-memory backends."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from stepflow.api.app import create_app


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
def client(settings, store, cache, file_store):
    app = create_app(settings=settings, persistence=(store, cache, file_store))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def job(client) -> dict:
    resp = client.post(
        "/jobs",
        json={
            "title": "Fit kitchen",
            "worker_id": "worker-1",
            "steps": [{"title": "Cabinets"}, {"title": "Worktop", "instructions": "Photo from the door"}],
        },
        headers=as_user("manager-1"),
    )
    assert resp.status_code == 201
    return resp.json()
