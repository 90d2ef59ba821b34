"""
Shared fixtures.

Repositories run against mongomock-motor, the inference and storage
gateways are AsyncMock fakes so no network is touched.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from conversa.config import Settings
from conversa.repositories.conversation_repository import ConversationRepository
from conversa.repositories.message_repository import MessageRepository
from conversa.repositories.user_repository import UserRepository
from conversa.services.message_service import MessageService


@pytest.fixture
def db():
    return AsyncMongoMockClient()["conversa_test"]


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, REDIS_URL=None, BOT_FALLBACK_REPLY="fallback reply")


@pytest.fixture
def message_repo(db) -> MessageRepository:
    return MessageRepository(db)


@pytest.fixture
def conversation_repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture
def user_repo(db) -> UserRepository:
    return UserRepository(db)


@pytest.fixture
def mock_inference() -> AsyncMock:
    inference = AsyncMock()
    inference.send_completion = AsyncMock(return_value="Hello from the model")
    return inference


@pytest.fixture
def mock_storage() -> AsyncMock:
    storage = AsyncMock()
    storage.issue_upload_credential = AsyncMock(
        return_value={"url": "https://bucket.s3.amazonaws.com/", "fields": {"key": "conversa/u/1_a.png"}}
    )
    storage.upload_object = AsyncMock(return_value="https://bucket.s3.amazonaws.com/conversa/u/1_a.png")
    return storage


@pytest.fixture
def service(message_repo, conversation_repo, user_repo, mock_inference, mock_storage, settings) -> MessageService:
    return MessageService(
        message_repo,
        conversation_repo,
        user_repo,
        inference=mock_inference,
        storage=mock_storage,
        settings=settings,
    )


@pytest_asyncio.fixture
async def alice(user_repo) -> str:
    return await user_repo.create_user("alice@example.com", "Alice")


@pytest_asyncio.fixture
async def bob(user_repo) -> str:
    return await user_repo.create_user("bob@example.com", "Bob")


@pytest_asyncio.fixture
async def assistant(user_repo) -> str:
    return await user_repo.create_user("assistant.bot@example.com", "Assistant")


@pytest_asyncio.fixture
async def direct_chat(conversation_repo, alice, bob) -> dict:
    return await conversation_repo.create([alice, bob])


@pytest_asyncio.fixture
async def bot_chat(conversation_repo, alice, assistant) -> dict:
    return await conversation_repo.create([alice, assistant])
