"""
API tests through FastAPI's TestClient.

The app builds its own in-memory database in the lifespan; items are seeded
through the client's portal so they land on the app's event loop.
"""

import pytest
from fastapi.testclient import TestClient

from newslens.main import create_app

from conftest import make_item, make_settings


@pytest.fixture
def client():
    with TestClient(create_app(make_settings())) as client:
        store = client.app.state.services.store
        for i in range(4):
            client.portal.call(
                store.put_item,
                make_item(f"f{i}", topics=[("football", 0.9)], family={"football": "sport"},
                          evidence_strength=0.6, hours_ago=1 + i),
            )
        client.portal.call(store.put_item, make_item("bare", title="Fresh headline", analysed=False))
        yield client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "newslens"

    def test_root(self, client):
        assert "feed" in client.get("/").json()["endpoints"]


class TestFeed:
    def test_feed(self, client):
        response = client.get("/api/v1/users/u1/feed", params={"limit": 3})
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 3
        assert set(body[0]) == {"item_id", "title", "url", "source", "score"}

    def test_feed_require_analysis(self, client):
        body = client.get("/api/v1/users/u1/feed", params={"require_analysis": True}).json()
        assert "bare" not in {d["item_id"] for d in body}
        assert len(body) == 4

    def test_feed_limit_validated(self, client):
        assert client.get("/api/v1/users/u1/feed", params={"limit": 0}).status_code == 422

    def test_digest_empty_when_paused(self, client):
        assert len(client.get("/api/v1/users/u1/digest").json()) == 4

        response = client.put("/api/v1/users/u1/pause", json={"paused": True})
        assert response.json()["paused"] is True
        assert client.get("/api/v1/users/u1/digest").json() == []


class TestProfile:
    def test_unknown_user_is_404_and_not_created(self, client):
        assert client.get("/api/v1/users/new-user/profile").status_code == 404

        store = client.app.state.services.store
        assert client.portal.call(store.get_user, "new-user") is None

    def test_defaults_after_first_write(self, client):
        client.put("/api/v1/users/new-user/pause", json={"paused": False})
        body = client.get("/api/v1/users/new-user/profile").json()
        assert body["user_id"] == "new-user"
        assert body["interest_profile"] is None
        assert body["paused"] is False

    def test_put_and_delete(self, client):
        profile = {"topics": [{"tag": "Football", "weight": 0.7}]}
        response = client.put("/api/v1/users/u1/profile", json=profile)
        assert response.status_code == 200
        topics = response.json()["topics"]
        assert topics[0]["tag"] == "football"
        assert topics[0]["weight"] == 0.7

        stored = client.get("/api/v1/users/u1/profile").json()
        assert stored["interest_profile"]["topics"][0]["tag"] == "football"

        assert client.delete("/api/v1/users/u1/profile").status_code == 204
        assert client.get("/api/v1/users/u1/profile").json()["interest_profile"] is None

    def test_invalid_profile_rejected(self, client):
        profile = {"topics": [{"tag": "", "weight": 0.5}]}
        assert client.put("/api/v1/users/u1/profile", json=profile).status_code == 422

    def test_weights(self, client):
        response = client.put("/api/v1/users/u1/weights", json={"I": 0.9, "H": 2.0})
        weights = response.json()["score_weights"]
        assert weights["I"] == 0.9
        assert weights["H"] == 1.0


class TestFeedback:
    def test_vote(self, client):
        response = client.put("/api/v1/users/u1/feedback/f0", json={"vote": 1})
        assert response.status_code == 200
        assert response.json()["vote"] == 1

        services = client.app.state.services
        assert client.portal.call(services.store.get_feedback_vote, "u1", "f0") == 1

    def test_unknown_item(self, client):
        response = client.put("/api/v1/users/u1/feedback/nope", json={"vote": 1})
        assert response.status_code == 404

    def test_vote_out_of_range(self, client):
        assert client.put("/api/v1/users/u1/feedback/f0", json={"vote": 2}).status_code == 422


class TestTopics:
    def test_resolve_without_llm_falls_back(self, client):
        response = client.post("/api/v1/topics/resolve", json={"tags": ["Quantum Computing"]})
        assert response.status_code == 200
        (tag,) = response.json()
        assert tag["surface"] == "Quantum Computing"
        assert tag["canonical"] == "quantum computing"
        assert tag["method"] == "fallback"
        assert tag["confidence"] == 0.3


class TestAdmin:
    def test_enrich_records_failures_without_llm(self, client):
        response = client.post("/api/v1/admin/enrich")
        assert response.status_code == 200
        stats = response.json()
        assert stats["evaluated"] == 0
        assert stats["pending"] == 1
        assert stats["failed"] == 1

        store = client.app.state.services.store
        pending = client.portal.call(store.get_pending, "bare")
        assert pending.attempts == 1
