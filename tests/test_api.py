import pytest
from fastapi.testclient import TestClient

from async_whatsapp_queue.api import API_TOKEN_HEADER_NAME, create_app
from async_whatsapp_queue.config import DispatchConfig, QueueConfig
from async_whatsapp_queue.core import AsyncMessageQueue
from async_whatsapp_queue.models import MessageStatus


API_TOKEN = "secret-token"


class DummyTransport:
    def __init__(self):
        self.calls = []

    def is_connected(self):
        return True

    async def send_text(self, to, body):
        self.calls.append((to, body))
        return True

    async def send_media(self, to, media, caption=None):
        self.calls.append((to, media, caption))
        return True


@pytest.fixture
def queue():
    return AsyncMessageQueue(DummyTransport(), config=QueueConfig(dispatch=DispatchConfig(test_mode=True)))


@pytest.fixture
def client(queue):
    client = TestClient(create_app(queue, api_token=API_TOKEN))
    client.headers.update({API_TOKEN_HEADER_NAME: API_TOKEN})
    return client


def enqueue_body(**overrides):
    body = {"to": "5511999999999@c.us", "payload": {"kind": "text", "body": "hello"}}
    body.update(overrides)
    return body


def test_health_requires_no_token(queue):
    client = TestClient(create_app(queue, api_token=API_TOKEN))
    assert client.get("/health").json() == {"status": "ok"}


def test_rejects_missing_or_wrong_token(queue):
    client = TestClient(create_app(queue, api_token=API_TOKEN))
    response = client.get("/stats")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing API token"

    response = client.post("/commands/sweep", headers={API_TOKEN_HEADER_NAME: "wrong"})
    assert response.status_code == 401


def test_no_token_configured_allows_requests(queue):
    client = TestClient(create_app(queue))
    assert client.get("/stats").status_code == 200


def test_returns_500_when_queue_missing(queue):
    app = create_app(queue, api_token=API_TOKEN)
    app.state.queue = None
    client = TestClient(app)
    response = client.post("/commands/run-now", headers={API_TOKEN_HEADER_NAME: API_TOKEN})
    assert response.status_code == 500
    assert response.json()["detail"] == "Queue not initialized"


def test_enqueue_and_read_back(client, queue):
    response = client.post("/messages", json=enqueue_body(priority="HIGH", ticket_id=42, metadata={"agent": "ana"}))
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    message_id = data["id"]

    stored = queue.get(message_id)
    assert stored.priority.value == "high"
    assert stored.ticket_id == 42

    detail = client.get(f"/messages/{message_id}").json()
    assert detail["status"] == "pending"
    assert detail["attempts"] == 0
    assert detail["max_attempts"] == 3
    assert detail["payload"] == {"kind": "text", "body": "hello"}
    assert detail["metadata"] == {"agent": "ana"}

    assert client.get("/stats").json() == {"pending": 1, "sending": 0, "sent": 0, "failed": 0, "total": 1}


def test_enqueue_rejects_invalid_payload(client, queue):
    response = client.post("/messages", json={"to": "5511@c.us"})
    assert response.status_code == 422
    assert any(err["loc"][-1] == "payload" for err in response.json()["detail"])

    response = client.post("/messages", json=enqueue_body(max_attempts=0))
    assert response.status_code == 422

    response = client.post("/messages", json=enqueue_body(priority="asap"))
    assert response.status_code == 422
    assert queue.list() == []


def test_list_filters(client):
    first = client.post("/messages", json=enqueue_body(customer_id=7, priority="low")).json()["id"]
    second = client.post("/messages", json=enqueue_body(customer_id="7", ticket_id=1, priority="urgent")).json()["id"]
    client.post("/messages", json=enqueue_body(customer_id=8))
    client.post(f"/messages/{first}/cancel")

    all_ids = [m["id"] for m in client.get("/messages").json()["messages"]]
    assert all_ids[0] == second
    assert len(all_ids) == 3

    by_customer = [m["id"] for m in client.get("/messages", params={"customer_id": "7"}).json()["messages"]]
    assert by_customer == [second, first]

    by_ticket = client.get("/messages", params={"ticket_id": "1"}).json()["messages"]
    assert [m["id"] for m in by_ticket] == [second]

    cancelled = client.get("/messages", params={"status": "cancelled"}).json()["messages"]
    assert [m["id"] for m in cancelled] == [first]


def test_unknown_message_is_404(client):
    response = client.get("/messages/msg_missing")
    assert response.status_code == 404


def test_cancel_retry_and_delete(client, queue):
    message_id = client.post("/messages", json=enqueue_body()).json()["id"]

    assert client.post(f"/messages/{message_id}/retry").json() == {"ok": False}
    assert client.post(f"/messages/{message_id}/cancel").json() == {"ok": True}
    assert client.post(f"/messages/{message_id}/cancel").json() == {"ok": False}

    failed_id = client.post("/messages", json=enqueue_body()).json()["id"]
    record = queue.store.lookup(failed_id)
    record.status = MessageStatus.FAILED
    record.attempts = record.max_attempts
    assert client.post(f"/messages/{failed_id}/retry").json() == {"ok": True}
    assert queue.get(failed_id).attempts == 0

    assert client.delete(f"/messages/{message_id}").json() == {"ok": True}
    assert client.delete(f"/messages/{message_id}").json() == {"ok": False}


def test_commands(client, queue):
    cancelled = client.post("/messages", json=enqueue_body()).json()["id"]
    failed = client.post("/messages", json=enqueue_body()).json()["id"]
    client.post(f"/messages/{cancelled}/cancel")
    queue.store.lookup(failed).status = MessageStatus.FAILED

    assert client.post("/commands/retry-failed").json() == {"ok": True, "retried": 1}
    assert client.post("/commands/sweep").json() == {"ok": True, "removed": 1}
    assert client.post("/commands/sweep").json() == {"ok": True, "removed": 0}

    assert client.post("/commands/suspend").json() == {"ok": True}
    assert queue.is_active is False
    assert client.post("/commands/activate").json() == {"ok": True}
    assert queue.is_active is True
    assert client.post("/commands/run-now").json() == {"ok": True}


def test_metrics_endpoint(client):
    client.post("/messages", json=enqueue_body())
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'waq_messages{status="pending"} 1.0' in response.text
