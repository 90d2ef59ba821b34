from contextlib import asynccontextmanager

from fastapi import FastAPI

from conversa.config import get_settings
from conversa.database.connection import close_mongo_connection, connect_to_mongo, get_database
from conversa.repositories.conversation_repository import ConversationRepository
from conversa.repositories.message_repository import MessageRepository
from conversa.routers.messages import router as messages_router
from conversa.utils.log_config import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging(get_settings())
    await connect_to_mongo()
    db = get_database()
    await MessageRepository(db).ensure_indexes()
    await ConversationRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="Conversa messages", lifespan=lifespan)


app.include_router(messages_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
