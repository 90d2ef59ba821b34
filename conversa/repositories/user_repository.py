from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from conversa.models.user import UserDocument
from conversa.utils.object_id import normalize_id, parse_object_id


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def create_user(self, email: str, full_name: Optional[str] = None) -> str:

        doc = {"email": email, "full_name": full_name}
        result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_users_by_ids(self, user_ids: List[str]) -> List[UserDocument]:

        oids = [oid for oid in (parse_object_id(u) for u in user_ids) if oid is not None]
        if not oids:
            return []
        cursor = self._collection.find({"_id": {"$in": oids}}, {"email": 1, "full_name": 1})
        users = await cursor.to_list(length=len(oids))
        return [normalize_id(user) for user in users]
