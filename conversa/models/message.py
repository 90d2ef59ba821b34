from datetime import datetime
from typing import List, Optional, TypedDict


class SeenMarker(TypedDict):
    user: str
    seen_at: datetime


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    text: str
    image_url: Optional[str]
    # one entry per user, appended when the user first views the message
    seen_by: List[SeenMarker]
    # users the message is hidden from; the record itself is never removed
    deleted_from: List[str]
    created_at: datetime
