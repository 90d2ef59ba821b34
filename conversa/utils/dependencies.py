from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from conversa.config import get_settings
from conversa.database.connection import mongo_db_dependency
from conversa.repositories.conversation_repository import ConversationRepository
from conversa.repositories.message_repository import MessageRepository
from conversa.repositories.user_repository import UserRepository
from conversa.services.message_service import MessageService
from conversa.utils.inference import get_inference_gateway
from conversa.utils.storage import get_storage_gateway


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity resolved upstream and forwarded in the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authenticated user")
    return x_user_id


def build_message_service(db) -> MessageService:
    return MessageService(
        MessageRepository(db),
        ConversationRepository(db),
        UserRepository(db),
        inference=get_inference_gateway(),
        storage=get_storage_gateway(),
        settings=get_settings(),
    )


def get_message_service(db = Depends(mongo_db_dependency)) -> MessageService:
    return build_message_service(db)
