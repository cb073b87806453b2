import pytest
from starlette.websockets import WebSocketDisconnect

from ..test_fixtures.messaging_fixtures import as_user


@pytest.fixture
def conversation_id(api, patient_id, mentor_id) -> str:
    resp = api.post("/api/v1/conversations", json={"other_user_id": str(mentor_id)}, headers=as_user(patient_id))
    return resp.json()["conversation_id"]


def socket_url(topic, user_id=None) -> str:
    url = f"/api/v1/ws?topic={topic}"
    if user_id is not None:
        url += f"&user_id={user_id}"
    return url


def test_subscribe_ping_and_receive(api, conversation_id, patient_id, mentor_id):
    """
    Behavior:
            - The mentor subscribes to the conversation and gets an acknowledgement.
            - A ping is answered with a pong.
            - A message the patient posts over HTTP arrives as a message_inserted event.
    """
    topic = f"conversation:{conversation_id}"

    with api.websocket_connect(socket_url(topic, mentor_id)) as ws:
        assert ws.receive_json() == {"type": "subscribed", "topic": topic}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        sent = api.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"content": "live?"},
            headers=as_user(patient_id),
        ).json()
        event = ws.receive_json()

    assert event["type"] == "message_inserted"
    assert event["message_id"] == sent["id"]
    assert event["sender_id"] == str(patient_id)


def test_unknown_topic_is_closed_with_4400(api, mentor_id):
    with api.websocket_connect(socket_url("room:lobby", mentor_id)) as ws:
        assert ws.receive_json()["code"] == "invalid_topic"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 4400


def test_missing_user_is_closed_with_4401(api, conversation_id):
    with api.websocket_connect(socket_url(f"conversation:{conversation_id}")) as ws:
        assert ws.receive_json()["code"] == "unauthenticated"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 4401


def test_outsider_and_foreign_user_topic_are_closed_with_4403(api, conversation_id, outsider_id, patient_id, mentor_id):
    with api.websocket_connect(socket_url(f"conversation:{conversation_id}", outsider_id)) as ws:
        assert ws.receive_json()["code"] == "not_a_participant"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 4403

    with api.websocket_connect(socket_url(f"user:{mentor_id}", patient_id)) as ws:
        ws.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 4403
