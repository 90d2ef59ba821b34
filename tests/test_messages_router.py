"""
Tests for the /messages HTTP and WebSocket endpoints.

The MessageService is replaced through dependency_overrides.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conversa.main import app
from conversa.routers import messages as messages_router
from conversa.services.errors import FailureKind, NotFoundError, UpstreamUnavailableError, ValidationError
from conversa.services.message_service import BotReply, MessageService, SubmitResult
from conversa.utils.dependencies import get_message_service
from conversa.utils.realtime_bus import NoopBus


AUTH = {"X-User-Id": "u1"}
MESSAGE = {"_id": "m1", "conversation_id": "c1", "sender_id": "u1", "text": "hi", "seen_by": [], "deleted_from": []}


@pytest.fixture
def mock_service():
    service = MagicMock(spec=MessageService)
    app.dependency_overrides[get_message_service] = lambda: service
    yield service
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def local_bus(monkeypatch):
    monkeypatch.setattr(messages_router, "get_bus", AsyncMock(return_value=NoopBus()))
    yield
    messages_router.manager.active_connections.clear()


def _send_event(receiver="u2"):
    return {
        "type": "send",
        "text": "hi",
        "senderId": "u1",
        "conversationId": "c1",
        "receiverId": receiver,
        "isReceiverInsideChatRoom": True,
    }


class TestSendMessage:

    def test_success(self, client, mock_service):
        mock_service.submit_message.return_value = SubmitResult(message=MESSAGE)

        response = client.post("/messages", data={"conversationId": "c1", "sender": "u1", "text": "hi"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["_id"] == "m1"
        args = mock_service.submit_message.await_args.args
        assert args == ("c1", "u1", "hi", None)

    def test_with_file(self, client, mock_service):
        mock_service.submit_message.return_value = SubmitResult(message=MESSAGE)

        response = client.post(
            "/messages",
            data={"conversationId": "c1", "sender": "u1", "text": "hi"},
            files={"file": ("cat.png", b"\x89PNG", "image/png")},
            headers=AUTH,
        )

        assert response.status_code == 200
        image = mock_service.submit_message.await_args.args[3]
        assert image.filename == "cat.png"
        assert image.content_type == "image/png"
        assert image.data == b"\x89PNG"

    def test_missing_fields(self, client, mock_service):
        mock_service.submit_message.side_effect = ValidationError("Please fill all fields")

        response = client.post("/messages", data={"conversationId": "c1"}, headers=AUTH)

        assert response.status_code == 400
        assert "fill all fields" in response.json()["detail"]

    def test_routed_to_bot(self, client, mock_service):
        mock_service.submit_message.return_value = SubmitResult(routed_to_bot=True)

        response = client.post("/messages", data={"conversationId": "c1", "sender": "u1", "text": "hi"}, headers=AUTH)

        assert response.status_code == 202
        assert response.json() == {"routed_to_bot": True}

    def test_requires_identity(self, client, mock_service):
        response = client.post("/messages", data={"conversationId": "c1", "sender": "u1", "text": "hi"})

        assert response.status_code == 401
        mock_service.submit_message.assert_not_called()

    def test_sender_must_match_identity(self, client, mock_service):
        response = client.post("/messages", data={"conversationId": "c1", "sender": "u2", "text": "hi"}, headers=AUTH)

        assert response.status_code == 400
        assert "sender" in response.json()["detail"]
        mock_service.submit_message.assert_not_called()


class TestListMessages:

    def test_success(self, client, mock_service):
        mock_service.list_messages.return_value = [MESSAGE]

        response = client.get("/messages/c1", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == [MESSAGE]
        mock_service.list_messages.assert_awaited_once_with("c1", "u1")

    def test_not_found(self, client, mock_service):
        mock_service.list_messages.side_effect = NotFoundError("missing")

        assert client.get("/messages/c1", headers=AUTH).status_code == 404

    def test_store_failure_is_generic_500(self, client, mock_service):
        mock_service.list_messages.side_effect = RuntimeError("mongo down")

        response = client.get("/messages/c1", headers=AUTH)

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal Server Error"


class TestDeleteMessage:

    def test_success(self, client, mock_service):
        mock_service.soft_delete_message.return_value = MESSAGE

        response = client.post("/messages/delete", json={"messageid": "m1", "userids": ["u1", "u2"]}, headers=AUTH)

        assert response.status_code == 200
        assert response.text == "Message deleted successfully"
        mock_service.soft_delete_message.assert_awaited_once_with("m1", ["u1", "u2"])

    def test_missing_message(self, client, mock_service):
        mock_service.soft_delete_message.side_effect = NotFoundError("missing")

        response = client.post("/messages/delete", json={"messageid": "m1", "userids": ["u1"]}, headers=AUTH)

        assert response.status_code == 404


class TestUploadUrl:

    def test_success(self, client, mock_service):
        mock_service.issue_upload_credential.return_value = {"url": "https://s3/", "fields": {"key": "k"}}

        response = client.get("/messages/upload-url", params={"filename": "a.png", "filetype": "image/png"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"url": "https://s3/", "fields": {"key": "k"}}
        mock_service.issue_upload_credential.assert_awaited_once_with("u1", "a.png", "image/png")

    def test_missing_params(self, client, mock_service):
        mock_service.issue_upload_credential.side_effect = ValidationError("Filename and filetype are required")

        response = client.get("/messages/upload-url", headers=AUTH)

        assert response.status_code == 400
        mock_service.issue_upload_credential.assert_awaited_once_with("u1", "", "")

    def test_gateway_error(self, client, mock_service):
        mock_service.issue_upload_credential.side_effect = UpstreamUnavailableError("denied")

        assert client.get("/messages/upload-url", params={"filename": "a", "filetype": "image/png"}, headers=AUTH).status_code == 500


class TestBotReply:

    def test_success(self, client, mock_service):
        mock_service.generate_bot_reply.return_value = BotReply(message={**MESSAGE, "sender_id": "bot"})

        response = client.post("/messages/bot-reply", json={"conversationId": "c1", "prompt": "hi"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["sender_id"] == "bot"
        mock_service.generate_bot_reply.assert_awaited_once_with("hi", "u1", "c1")

    @pytest.mark.parametrize(
        "kind,code",
        [(FailureKind.VALIDATION, 400), (FailureKind.NOT_FOUND, 404), (FailureKind.UPSTREAM_UNAVAILABLE, 502)],
    )
    def test_failure_kinds(self, client, mock_service, kind, code):
        mock_service.generate_bot_reply.return_value = BotReply(failure=kind, detail="nope")

        response = client.post("/messages/bot-reply", json={"conversationId": "c1", "prompt": "hi"}, headers=AUTH)

        assert response.status_code == code
        assert response.json()["kind"] == kind.value

    @pytest.mark.parametrize("kind", [FailureKind.VALIDATION, FailureKind.NOT_FOUND])
    def test_client_failure_detail_passes_through(self, client, mock_service, kind):
        mock_service.generate_bot_reply.return_value = BotReply(failure=kind, detail="Conversation not found")

        response = client.post("/messages/bot-reply", json={"conversationId": "c1", "prompt": "hi"}, headers=AUTH)

        assert response.json()["detail"] == "Conversation not found"

    def test_upstream_detail_is_generic(self, client, mock_service):
        mock_service.generate_bot_reply.return_value = BotReply(
            failure=FailureKind.UPSTREAM_UNAVAILABLE, detail="mongo exploded at 10.0.0.5:27017"
        )

        response = client.post("/messages/bot-reply", json={"conversationId": "c1", "prompt": "hi"}, headers=AUTH)

        assert response.status_code == 502
        assert response.json() == {"kind": "upstream_unavailable", "detail": "Internal Server Error"}


class TestMessageSocket:

    def test_send_event(self, client, mock_service):
        mock_service.dispatch_realtime_message.return_value = MESSAGE

        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json(
                {
                    "type": "send",
                    "text": "hi",
                    "senderId": "u1",
                    "conversationId": "c1",
                    "receiverId": "u2",
                    "isReceiverInsideChatRoom": True,
                }
            )
            reply = ws.receive_json()

        assert reply == {"type": "message", "message": MESSAGE}
        payload = mock_service.dispatch_realtime_message.await_args.args[0]
        assert payload.receiver_id == "u2"
        assert payload.is_receiver_inside_chat_room is True

    def test_delete_event(self, client, mock_service):
        mock_service.retract_realtime_message.return_value = False

        with client.websocket_connect("/messages/ws/u1?uid=u1") as ws:
            ws.send_json({"type": "delete", "messageId": "m1", "deleteFrom": ["u1"]})
            reply = ws.receive_json()

        assert reply == {"type": "deleted", "message_id": "m1", "ok": False}

    def test_bot_event_failure(self, client, mock_service):
        mock_service.generate_bot_reply.return_value = BotReply(
            failure=FailureKind.UPSTREAM_UNAVAILABLE, detail="groq: 401 invalid api key"
        )

        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json({"type": "bot", "conversationId": "c1", "prompt": "hi"})
            reply = ws.receive_json()

        assert reply == {"type": "error", "kind": "upstream_unavailable", "detail": "Internal Server Error"}

    def test_binary_frame_is_rejected_and_socket_released(self, client, mock_service, local_bus):
        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_bytes(b"\x00\x01")
            reply = ws.receive_json()
            assert "u1" in messages_router.manager.active_connections

        assert reply["kind"] == "validation"
        assert "u1" not in messages_router.manager.active_connections

    def test_stale_receiver_socket_does_not_fail_send(self, client, mock_service, local_bus):
        mock_service.dispatch_realtime_message.return_value = MESSAGE
        stale = MagicMock()
        stale.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))
        messages_router.manager.active_connections["u2"] = [stale]

        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json(_send_event())
            reply = ws.receive_json()

        assert reply == {"type": "message", "message": MESSAGE}
        mock_service.dispatch_realtime_message.assert_awaited_once()
        assert "u2" not in messages_router.manager.active_connections

    def test_publish_failure_does_not_fail_send(self, client, mock_service, monkeypatch):
        mock_service.dispatch_realtime_message.return_value = MESSAGE
        subscription = MagicMock()
        subscription.run = AsyncMock(return_value=None)
        subscription.cancel = AsyncMock()
        bus = MagicMock()
        bus.enabled = True
        bus.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        bus.subscribe = AsyncMock(return_value=subscription)
        monkeypatch.setattr(messages_router, "get_bus", AsyncMock(return_value=bus))

        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json(_send_event())
            reply = ws.receive_json()

        assert reply == {"type": "message", "message": MESSAGE}
        bus.publish.assert_awaited_once()
        assert bus.publish.await_args.args[0] == "user:u2"
        subscription.cancel.assert_awaited_once()

    def test_invalid_payload(self, client, mock_service):
        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json({"type": "send", "text": "hi"})
            reply = ws.receive_json()
            ws.send_text("not json")
            garbage = ws.receive_json()

        assert reply["kind"] == "validation"
        assert garbage["kind"] == "validation"
        mock_service.dispatch_realtime_message.assert_not_called()

    def test_sender_must_match_socket_user(self, client, mock_service):
        with client.websocket_connect("/messages/ws/u1", headers=AUTH) as ws:
            ws.send_json({"type": "send", "text": "hi", "senderId": "u9", "conversationId": "c1", "receiverId": "u2"})
            reply = ws.receive_json()

        assert reply["kind"] == "validation"
        mock_service.dispatch_realtime_message.assert_not_called()

    def test_identity_mismatch_closes(self, client, mock_service):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/messages/ws/u1", headers={"X-User-Id": "u2"}) as ws:
                ws.receive_text()
