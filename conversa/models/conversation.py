from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    members: List[str]
    latest_message: Optional[str]
    # per-user unread counters (user_id -> count)
    unread_counts: dict[str, int]
    updated_at: datetime
