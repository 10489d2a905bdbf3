import pytest
from fastapi import status
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.casehub.main import app
from src.casehub.services.cases.service import case_service
from src.casehub.services.messages.service import message_service


def as_user(identity) -> dict:
    return {"X-User-ID": str(identity.user_id)}


def test_change_feed_pushes_case_events(attorney):
    client = TestClient(app)
    with client.websocket_connect("/api/v1/changes/ws", headers=as_user(attorney)) as ws:
        assert ws.receive_json() == {"type": "subscribed", "case_id": None}

        case = case_service.create_case(attorney, title="Labor claim", patient_name="Paulo Reis")

        event = ws.receive_json()
        assert event == {"type": "change", "table": "cases", "event": "INSERT", "id": str(case.id), "case_id": str(case.id)}


def test_change_feed_filters_by_case(attorney):
    watched = case_service.create_case(attorney, title="Watched", patient_name="A")
    other = case_service.create_case(attorney, title="Other", patient_name="B")

    client = TestClient(app)
    with client.websocket_connect(f"/api/v1/changes/ws?case_id={watched.id}", headers=as_user(attorney)) as ws:
        assert ws.receive_json()["case_id"] == str(watched.id)

        message_service.send(attorney, other.id, "not for this socket")
        message = message_service.send(attorney, watched.id, "hello")

        event = ws.receive_json()
        assert event["table"] == "case_messages"
        assert event["id"] == str(message.id)


def test_change_feed_only_delivers_cases_the_caller_is_party_to(attorney, other_attorney):
    client = TestClient(app)
    with client.websocket_connect("/api/v1/changes/ws", headers=as_user(other_attorney)) as ws:
        ws.receive_json()

        case_service.create_case(attorney, title="Not yours", patient_name="A")
        own = case_service.create_case(other_attorney, title="Yours", patient_name="B")

        # The first event to arrive is the caller's own case.
        assert ws.receive_json()["id"] == str(own.id)


def test_change_feed_rejects_unidentified_clients():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/changes/ws"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_change_feed_rejects_foreign_case_subscription(attorney, other_attorney, case):
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/v1/changes/ws?case_id={case.id}", headers=as_user(other_attorney)):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION
