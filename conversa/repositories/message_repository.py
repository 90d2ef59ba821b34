from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from conversa.models.message import MessageDocument
from conversa.utils.object_id import normalize_id, parse_object_id


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])

    async def create(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        image_url: Optional[str] = None,
        seen_by: Optional[List[Dict[str, Any]]] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "text": text,
            "image_url": image_url,
            "seen_by": list(seen_by or []),
            "deleted_from": [],
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_by_id(self, message_id: str) -> Optional[MessageDocument]:
        oid = parse_object_id(message_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    async def list_visible(self, conversation_id: str, viewer_id: str) -> List[MessageDocument]:
        # natural (insertion) order, no explicit sort
        cursor = self.collection.find({"conversation_id": conversation_id, "deleted_from": {"$ne": viewer_id}})
        items = await cursor.to_list(length=None)
        for it in items:
            normalize_id(it)
        return items

    async def list_recent(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        """Most recent ``limit`` messages of a conversation, newest first."""
        cursor = (
            self.collection.find({"conversation_id": conversation_id})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .limit(limit)
        )
        items = await cursor.to_list(length=limit)
        for it in items:
            normalize_id(it)
        return items

    async def add_seen_marker(self, message_id: str, user_id: str, seen_at: datetime) -> bool:
        oid = parse_object_id(message_id)
        if oid is None:
            return False
        # the filter keeps a user from being recorded twice even under concurrent reads
        result = await self.collection.update_one(
            {"_id": oid, "seen_by.user": {"$ne": user_id}},
            {"$push": {"seen_by": {"user": user_id, "seen_at": seen_at}}},
        )
        return bool(result.modified_count)

    async def add_deleted_from(self, message_id: str, user_ids: List[str]) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$addToSet": {"deleted_from": {"$each": list(user_ids)}}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize_id(doc)
