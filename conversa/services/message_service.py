import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from conversa.config import Settings
from conversa.repositories.conversation_repository import ConversationRepository
from conversa.repositories.message_repository import MessageRepository
from conversa.repositories.user_repository import UserRepository
from conversa.schemas.message import RealtimeDeletePayload, RealtimeSendPayload
from conversa.services.errors import (
    FailureKind,
    MessageServiceError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from conversa.services.history import build_history
from conversa.utils.inference import InferenceGateway
from conversa.utils.storage import StorageGateway


logger = logging.getLogger(__name__)


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


@dataclass
class SubmitResult:
    message: Optional[Dict[str, Any]] = None
    # True when the conversation belongs to a bot and the text must go through generate_bot_reply
    routed_to_bot: bool = False


@dataclass
class BotReply:
    """Outcome of a bot reply: the stored bot message, or why there is none."""

    message: Optional[Dict[str, Any]] = None
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.message is not None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def failed(cls, error: MessageServiceError) -> "BotReply":
        return cls(failure=error.kind, detail=str(error))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _seen(user_id: str) -> Dict[str, Any]:
    return {"user": user_id, "seen_at": _now()}


class MessageService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        inference: InferenceGateway,
        storage: StorageGateway,
        settings: Settings,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._inference = inference
        self._storage = storage
        self._settings = settings

    async def _get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get_by_id(conversation_id)
        if convo is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return convo

    def _object_key(self, user_id: str, filename: str) -> str:
        return f"{self._settings.UPLOAD_KEY_PREFIX}/{user_id}/{int(time.time() * 1000)}_{filename}"

    async def has_bot_member(self, conversation: Dict[str, Any], sender_id: str) -> bool:
        others = [m for m in conversation.get("members", []) if str(m) != str(sender_id)]
        marker = self._settings.BOT_EMAIL_MARKER
        users = await self._user_repo.get_users_by_ids(others)
        return any(marker in (user.get("email") or "") for user in users)

    async def submit_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        image: Optional[ImageUpload] = None,
    ) -> SubmitResult:
        if not conversation_id or not sender_id or not text:
            raise ValidationError("Please fill all fields: conversationId, sender and text are required")

        convo = await self._get_conversation(conversation_id)
        if await self.has_bot_member(convo, sender_id):
            logger.info("Conversation %s has a bot member, message from %s routed to bot reply", conversation_id, sender_id)
            return SubmitResult(routed_to_bot=True)

        image_url = None
        if image is not None:
            try:
                image_url = await self._storage.upload_object(
                    self._object_key(sender_id, image.filename), image.data, image.content_type
                )
            except Exception as exc:
                logger.exception("Image upload failed for sender %s", sender_id)
                raise UpstreamUnavailableError("Image upload failed") from exc

        message = await self._message_repo.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            image_url=image_url,
            seen_by=[_seen(sender_id)],
        )
        await self._conversation_repo.touch(conversation_id, latest_message=text)
        return SubmitResult(message=message)

    async def list_messages(self, conversation_id: str, viewer_id: str) -> List[Dict[str, Any]]:
        messages = await self._message_repo.list_visible(conversation_id, viewer_id)
        for message in messages:
            seen_by = message.setdefault("seen_by", [])
            if any(str(entry.get("user")) == str(viewer_id) for entry in seen_by):
                continue
            marker = _seen(viewer_id)
            await self._message_repo.add_seen_marker(message["_id"], viewer_id, marker["seen_at"])
            seen_by.append(marker)
        await self._conversation_repo.reset_unread(conversation_id, viewer_id)
        return messages

    async def soft_delete_message(self, message_id: str, user_ids: List[str]) -> Dict[str, Any]:
        if not message_id or not user_ids:
            raise ValidationError("messageid and userids are required")
        message = await self._message_repo.add_deleted_from(message_id, user_ids)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    async def issue_upload_credential(self, user_id: str, filename: str, filetype: str) -> Dict[str, Any]:
        if not filename or not filetype:
            raise ValidationError("Filename and filetype are required")
        if filetype not in self._settings.UPLOAD_ALLOWED_TYPES:
            raise ValidationError("Invalid file type")
        try:
            return await self._storage.issue_upload_credential(
                key=self._object_key(user_id, filename),
                max_bytes=self._settings.UPLOAD_MAX_BYTES,
                expires_in=self._settings.UPLOAD_EXPIRES_SECONDS,
            )
        except Exception as exc:
            logger.exception("Presigned upload request failed for user %s", user_id)
            raise UpstreamUnavailableError(str(exc)) from exc

    async def _resolve_bot_id(self, conversation_id: str, sender_id: str) -> tuple[Dict[str, Any], str]:
        convo = await self._get_conversation(conversation_id)
        members = [str(m) for m in convo.get("members", [])]
        if len(members) != 2 or str(sender_id) not in members:
            raise ValidationError("Bot replies need a two-member conversation that includes the sender")
        bot_id = next(m for m in members if m != str(sender_id))
        return convo, bot_id

    async def generate_bot_reply(self, prompt: str, sender_id: str, conversation_id: str) -> BotReply:
        if not prompt or not sender_id or not conversation_id:
            return BotReply.failed(ValidationError("prompt, sender and conversation are required"))
        try:
            _, bot_id = await self._resolve_bot_id(conversation_id, sender_id)
            recent = await self._message_repo.list_recent(conversation_id, self._settings.BOT_HISTORY_LIMIT)
        except MessageServiceError as exc:
            return BotReply.failed(exc)
        except Exception as exc:
            logger.exception("Loading conversation %s for bot reply failed", conversation_id)
            return BotReply.failed(UpstreamUnavailableError(str(exc)))

        history = build_history(recent, sender_id)
        try:
            reply_text = await self._inference.send_completion(self._settings.BOT_SYSTEM_PROMPT, history, prompt)
        except Exception as exc:
            logger.error("AI ERROR: %s", exc)
            return BotReply.failed(UpstreamUnavailableError(str(exc)))
        reply_text = reply_text or self._settings.BOT_FALLBACK_REPLY

        # no rollback: if the reply insert fails the prompt message stays stored
        try:
            await self._message_repo.create(
                conversation_id=conversation_id,
                sender_id=sender_id,
                text=prompt,
                seen_by=[_seen(bot_id), _seen(sender_id)],
            )
            bot_message = await self._message_repo.create(
                conversation_id=conversation_id,
                sender_id=bot_id,
                text=reply_text,
                seen_by=[_seen(bot_id)],
            )
            await self._conversation_repo.touch(conversation_id, latest_message=reply_text)
        except Exception as exc:
            logger.exception("Persisting bot reply for conversation %s failed", conversation_id)
            return BotReply.failed(UpstreamUnavailableError(str(exc)))

        return BotReply(message=bot_message)

    async def dispatch_realtime_message(self, payload: RealtimeSendPayload) -> Dict[str, Any]:
        await self._get_conversation(payload.conversation_id)
        seen_by = [_seen(payload.receiver_id)] if payload.is_receiver_inside_chat_room else []
        message = await self._message_repo.create(
            conversation_id=payload.conversation_id,
            sender_id=payload.sender_id,
            text=payload.text,
            image_url=payload.image_url,
            seen_by=seen_by,
        )
        if not payload.is_receiver_inside_chat_room:
            await self._conversation_repo.increment_unread(payload.conversation_id, payload.receiver_id)
        await self._conversation_repo.touch(payload.conversation_id, latest_message=payload.text)
        return message

    async def retract_realtime_message(self, payload: RealtimeDeletePayload) -> bool:
        try:
            await self.soft_delete_message(payload.message_id, payload.delete_from)
        except (NotFoundError, ValidationError) as exc:
            logger.info("Realtime delete of %s ignored: %s", payload.message_id, exc)
            return False
        return True
