from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from conversa.models.conversation import ConversationDocument
from conversa.utils.object_id import normalize_id, parse_object_id


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("members", ASCENDING)])

    async def create(self, members: List[str]) -> ConversationDocument:
        doc: ConversationDocument = {
            "members": list(members),
            "latest_message": None,
            "unread_counts": {member: 0 for member in members},
            "updated_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_by_id(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = parse_object_id(conversation_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    async def touch(self, conversation_id: str, latest_message: Optional[str] = None) -> None:
        update: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if latest_message is not None:
            update["latest_message"] = latest_message
        await self.collection.update_one({"_id": parse_object_id(conversation_id)}, {"$set": update})

    async def increment_unread(self, conversation_id: str, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": parse_object_id(conversation_id)},
            {"$inc": {f"unread_counts.{user_id}": 1}},
        )

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": parse_object_id(conversation_id)},
            {"$set": {f"unread_counts.{user_id}": 0}},
        )
