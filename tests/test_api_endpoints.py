"""API endpoint tests using TestClient and an in-memory attempt store."""

import pytest
from fastapi.testclient import TestClient

from attempt_engine.api.v1.live import ClientRelayCapability, EngineRegistry
from attempt_engine.core.app_exceptions import AttemptStoreError
from attempt_engine.core.config import settings
from attempt_engine.main import create_app
from attempt_engine.models.attempt import IntegritySignal
from attempt_engine.services.attempt_engine import EngineConfig
from tests.helpers.fakes import FakeAttemptStore, FakeClock

PREFIX = f"{settings.API_PREFIX}/attempts"


@pytest.fixture
def fake_store() -> FakeAttemptStore:
    return FakeAttemptStore()


@pytest.fixture
def client(fake_store):
    """TestClient bound to a registry backed by the fake store."""
    app = create_app()
    app.state.registry = EngineRegistry(
        fake_store,
        clock=fake_store.clock,
        config=EngineConfig(
            tick_interval_s=3600,
            sync_retry_delay_s=0,
            results_poll_interval_s=3600,
            results_poll_max_attempts=1,
        ),
    )
    with TestClient(app) as test_client:
        yield test_client


def open_active(client: TestClient, attempt_id: str = "att-1") -> dict:
    assert client.post(f"{PREFIX}/{attempt_id}/load").status_code == 200
    response = client.post(f"{PREFIX}/{attempt_id}/activate")
    assert response.status_code == 200
    return response.json()["view"]


class TestHealth:
    def test_health(self, client):
        response = client.get(f"{settings.API_PREFIX}/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_ready_reports_live_attempts(self, client):
        open_active(client)
        body = client.get(f"{settings.API_PREFIX}/ready").json()
        assert body["status"] == "ok"
        assert body["live_attempts"] == 1

    def test_request_id_is_echoed(self, client):
        response = client.get(f"{settings.API_PREFIX}/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestAttemptLifecycleEndpoints:
    def test_load_and_activate(self, client):
        response = client.post(f"{PREFIX}/att-1/load")
        assert response.status_code == 200
        view = response.json()
        assert view["status"] == "NOT_STARTED"
        assert view["total_questions"] == 4
        assert "isCorrect" not in str(view)

        view = open_active(client)
        assert view["status"] == "ACTIVE"
        assert view["remaining_ms"] == 60 * 60 * 1000
        assert view["remaining_minutes"] == 60

    def test_unknown_attempt_is_404(self, client):
        response = client.get(f"{PREFIX}/missing")
        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "ATTEMPT_NOT_FOUND"
        assert body["request_id"]

    def test_load_failure_is_502(self, client, fake_store):
        fake_store.load_error = AttemptStoreError("down")
        response = client.post(f"{PREFIX}/att-1/load")
        assert response.status_code == 502
        body = response.json()
        assert body["error_code"] == "LOAD_FAILED"
        assert body["retryable"] is True

        # The terminal error is visible on the view until a reload succeeds.
        view = client.get(f"{PREFIX}/att-1").json()
        assert view["error"]["terminal"] is True

        fake_store.load_error = None
        assert client.post(f"{PREFIX}/att-1/load").json()["total_questions"] == 4

    def test_close_removes_engine(self, client):
        open_active(client)
        assert client.delete(f"{PREFIX}/att-1").status_code == 204
        assert client.get(f"{PREFIX}/att-1").status_code == 404
        assert client.delete(f"{PREFIX}/att-1").status_code == 404


class TestAnswerEndpoints:
    def test_record_and_navigate(self, client):
        open_active(client)
        response = client.post(f"{PREFIX}/att-1/answers", json={"question_id": "q1", "value": "a"})
        assert response.status_code == 200
        assert response.json()["view"]["current_answer"] == "a"

        view = client.post(f"{PREFIX}/att-1/next").json()["view"]
        assert view["current_index"] == 1

        view = client.post(f"{PREFIX}/att-1/review").json()["view"]
        assert view["review_bitmap"] == [False, True, False, False]

        response = client.post(f"{PREFIX}/att-1/jump", json={"index": 3})
        assert response.json()["view"]["current_index"] == 3
        assert client.post(f"{PREFIX}/att-1/next").json()["accepted"] is False

        response = client.post(f"{PREFIX}/att-1/answers", json={"question_id": "q4", "value": 3.5})
        assert response.json()["view"]["current_answer"] == "3.5"
        assert response.json()["view"]["answered_bitmap"] == [True, False, False, True]

    def test_invalid_answer_is_409(self, client):
        open_active(client)
        response = client.post(f"{PREFIX}/att-1/answers", json={"question_id": "q1", "value": "zz"})
        assert response.status_code == 409
        assert response.json()["error_code"] == "ACTION_REJECTED"

    def test_answer_before_activation_is_409(self, client):
        client.post(f"{PREFIX}/att-1/load")
        response = client.post(f"{PREFIX}/att-1/answers", json={"question_id": "q1", "value": "a"})
        assert response.status_code == 409
        assert response.json()["details"]["status"] == "NOT_STARTED"

    def test_jump_out_of_range(self, client):
        open_active(client)
        assert client.post(f"{PREFIX}/att-1/jump", json={"index": 9}).status_code == 409
        response = client.post(f"{PREFIX}/att-1/jump", json={"index": -1})
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestSubmitEndpoints:
    def test_two_step_submit(self, client, fake_store):
        open_active(client)
        assert client.post(f"{PREFIX}/att-1/submit/confirm").status_code == 409

        view = client.post(f"{PREFIX}/att-1/submit").json()["view"]
        assert view["confirmation_pending"] is True

        view = client.post(f"{PREFIX}/att-1/submit/cancel").json()["view"]
        assert view["confirmation_pending"] is False

        client.post(f"{PREFIX}/att-1/submit")
        body = client.post(f"{PREFIX}/att-1/submit/confirm").json()
        assert body["accepted"] is True
        assert body["view"]["status"] == "SUBMITTED"
        assert body["view"]["results_state"] == "EVALUATING"
        assert fake_store.submit_calls == 1

        assert client.post(f"{PREFIX}/att-1/submit").status_code == 409

    def test_failed_submit_reports_error(self, client, fake_store):
        fake_store.submit_failures = 1
        open_active(client)
        client.post(f"{PREFIX}/att-1/submit")
        body = client.post(f"{PREFIX}/att-1/submit/confirm").json()
        assert body["accepted"] is False
        assert body["view"]["status"] == "ACTIVE"
        assert body["view"]["error"]["code"] == "SUBMIT_FAILED"


class TestIntegrityEndpoints:
    def test_fullscreen_and_media_requests(self, client):
        open_active(client)
        view = client.post(f"{PREFIX}/att-1/fullscreen").json()["view"]
        assert view["fullscreen_requested"] is True
        view = client.post(f"{PREFIX}/att-1/media").json()["view"]
        assert view["media_requested"] is True

    def test_violations_force_submission(self, client, fake_store):
        open_active(client)
        for signal in ("VISIBILITY_HIDDEN", "WINDOW_BLUR"):
            view = client.post(f"{PREFIX}/att-1/signals", json={"signal": signal}).json()
            assert view["status"] == "ACTIVE"

        view = client.post(
            f"{PREFIX}/att-1/signals", json={"signal": "BLOCKED_KEY", "detail": "F12"}
        ).json()
        assert view["violation_count"] == 3
        assert view["status"] in ("SUBMITTING", "SUBMITTED")

        client.post(f"{PREFIX}/att-1/signals", json={"signal": "WINDOW_BLUR"})
        client.delete(f"{PREFIX}/att-1")
        assert fake_store.submit_calls == 1

    def test_unknown_signal_is_422(self, client):
        open_active(client)
        response = client.post(f"{PREFIX}/att-1/signals", json={"signal": "SCREENSHOT"})
        assert response.status_code == 422


class TestClientRelayCapability:
    @pytest.mark.asyncio
    async def test_tracks_browser_reports(self):
        relay = ClientRelayCapability()
        seen = []
        unsubscribe = relay.subscribe(lambda signal, detail: seen.append((signal, detail)))

        await relay.enter_fullscreen()
        assert not relay.is_fullscreen_active
        relay.dispatch(IntegritySignal.FULLSCREEN_ENTER)
        assert relay.is_fullscreen_active

        await relay.start_media()
        assert relay.is_media_active
        relay.dispatch(IntegritySignal.MEDIA_ENDED)
        assert not relay.is_media_active

        unsubscribe()
        relay.dispatch(IntegritySignal.WINDOW_BLUR)
        assert seen == [
            (IntegritySignal.FULLSCREEN_ENTER, None),
            (IntegritySignal.MEDIA_ENDED, None),
        ]
