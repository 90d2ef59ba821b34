import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError as PayloadValidationError

from conversa.schemas.message import (
    BotReplyRequest,
    DeleteMessageRequest,
    RealtimeDeletePayload,
    RealtimeSendPayload,
    UploadCredential,
)
from conversa.services.errors import FailureKind, MessageServiceError
from conversa.services.message_service import ImageUpload, MessageService
from conversa.utils.dependencies import get_current_user, get_message_service
from conversa.utils.realtime_bus import get_bus
from conversa.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])
manager = ConnectionManager()

_STATUS_BY_KIND = {
    FailureKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    FailureKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, MessageServiceError) and exc.kind in _STATUS_BY_KIND:
        return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=str(exc))
    logger.error("Request failed: %s", exc, exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")


def _public_detail(kind: FailureKind, detail: str) -> str:
    # upstream details carry raw provider/store errors and stay in the logs
    if kind in _STATUS_BY_KIND:
        return detail
    return "Internal Server Error"


def _failure_detail(reply) -> str:
    return _public_detail(reply.failure, reply.detail)


@router.post("")
async def send_message(
    conversationId: Optional[str] = Form(default=None),
    sender: Optional[str] = Form(default=None),
    text: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    current_user: str = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    if sender and sender != current_user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="sender does not match authenticated user")
    image = None
    if file is not None and file.filename:
        image = ImageUpload(
            filename=file.filename,
            content_type=file.content_type or "application/octet-stream",
            data=await file.read(),
        )
    try:
        result = await service.submit_message(conversationId or "", sender or "", text or "", image)
    except Exception as exc:
        raise _to_http(exc)
    if result.routed_to_bot:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"routed_to_bot": True})
    return result.message


@router.get("/upload-url", response_model=UploadCredential)
async def get_upload_url(
    filename: Optional[str] = Query(default=None),
    filetype: Optional[str] = Query(default=None),
    current_user: str = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    try:
        return await service.issue_upload_credential(current_user, filename or "", filetype or "")
    except Exception as exc:
        raise _to_http(exc)


@router.post("/delete", response_class=PlainTextResponse)
async def delete_message(
    body: DeleteMessageRequest,
    current_user: str = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    try:
        await service.soft_delete_message(body.messageid, body.userids)
    except Exception as exc:
        raise _to_http(exc)
    return "Message deleted successfully"


@router.post("/bot-reply")
async def bot_reply(
    body: BotReplyRequest,
    current_user: str = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    reply = await service.generate_bot_reply(body.prompt, current_user, body.conversation_id)
    if not reply:
        code = _STATUS_BY_KIND.get(reply.failure, status.HTTP_502_BAD_GATEWAY)
        return JSONResponse(status_code=code, content={"kind": reply.failure.value, "detail": _failure_detail(reply)})
    return reply.message


@router.get("/{conversation_id}")
async def list_messages(
    conversation_id: str,
    current_user: str = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    try:
        return await service.list_messages(conversation_id, current_user)
    except Exception as exc:
        raise _to_http(exc)


def _encode(event: Dict[str, Any]) -> str:
    return json.dumps(jsonable_encoder(event))


async def _deliver(receiver_id: str, payload: str) -> None:
    bus = await get_bus()
    # the event is already persisted here, fanout errors are only logged
    try:
        if getattr(bus, "enabled", False):
            await bus.publish(f"user:{receiver_id}", payload)
        else:
            await manager.send_personal_message(receiver_id, payload)
    except Exception:
        logger.exception("Delivering realtime event to %s failed", receiver_id)


async def _handle_event(user_id: str, msg: Dict[str, Any], service: MessageService) -> Dict[str, Any]:
    kind = msg.get("type")
    if kind == "send":
        payload = RealtimeSendPayload.model_validate(msg)
        if payload.sender_id != user_id:
            return {"type": "error", "kind": FailureKind.VALIDATION.value, "detail": "senderId does not match socket user"}
        message = await service.dispatch_realtime_message(payload)
        event = {"type": "message", "message": message}
        await _deliver(payload.receiver_id, _encode(event))
        return event
    if kind == "delete":
        payload = RealtimeDeletePayload.model_validate(msg)
        ok = await service.retract_realtime_message(payload)
        return {"type": "deleted", "message_id": payload.message_id, "ok": ok}
    if kind == "bot":
        request = BotReplyRequest.model_validate(msg)
        reply = await service.generate_bot_reply(request.prompt, user_id, request.conversation_id)
        if not reply:
            return {"type": "error", "kind": reply.failure.value, "detail": _failure_detail(reply)}
        return {"type": "message", "message": reply.message}
    return {"type": "error", "kind": FailureKind.VALIDATION.value, "detail": f"Unknown event type {kind!r}"}


@router.websocket("/ws/{user_id}")
async def message_socket(websocket: WebSocket, user_id: str, service: MessageService = Depends(get_message_service)):
    identity = websocket.headers.get("x-user-id") or websocket.query_params.get("uid")
    if identity != user_id:
        await websocket.close(code=4401)
        return

    await manager.connect(user_id, websocket)
    bus = await get_bus()
    subscriber = None
    sub_task = None
    if getattr(bus, "enabled", False):
        subscriber = await bus.subscribe(f"user:{user_id}", websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            data = frame.get("text")
            try:
                if data is None:
                    raise ValueError("binary frames are not supported, send JSON text")
                msg = json.loads(data)
                if not isinstance(msg, dict):
                    raise ValueError("event must be a JSON object")
                reply = await _handle_event(user_id, msg, service)
            except (ValueError, PayloadValidationError) as exc:
                reply = {"type": "error", "kind": FailureKind.VALIDATION.value, "detail": str(exc)}
            except MessageServiceError as exc:
                reply = {"type": "error", "kind": exc.kind.value, "detail": _public_detail(exc.kind, str(exc))}
            except Exception:
                logger.exception("Socket event from %s failed", user_id)
                reply = {"type": "error", "kind": FailureKind.UPSTREAM_UNAVAILABLE.value, "detail": "Internal Server Error"}
            await websocket.send_text(_encode(reply))
    except WebSocketDisconnect:
        logger.debug("Socket for %s disconnected", user_id)
    finally:
        manager.disconnect(user_id, websocket)
        if subscriber is not None:
            await subscriber.cancel()
        if sub_task is not None:
            sub_task.cancel()
