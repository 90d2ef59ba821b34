from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RealtimeSendPayload(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    sender_id: str = Field(alias="senderId", min_length=1)
    conversation_id: str = Field(alias="conversationId", min_length=1)
    receiver_id: str = Field(alias="receiverId", min_length=1)
    is_receiver_inside_chat_room: bool = Field(default=False, alias="isReceiverInsideChatRoom")


class RealtimeDeletePayload(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    delete_from: List[str] = Field(alias="deleteFrom")


class DeleteMessageRequest(BaseModel):

    messageid: str
    userids: List[str]


class BotReplyRequest(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    prompt: str


class UploadCredential(BaseModel):

    url: str
    fields: Dict[str, str]
