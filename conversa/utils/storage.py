import asyncio
import logging
from typing import Any, Dict, Protocol

import boto3

from conversa.config import Settings, get_settings


logger = logging.getLogger(__name__)


class StorageGateway(Protocol):

    async def issue_upload_credential(self, key: str, max_bytes: int, expires_in: int) -> Dict[str, Any]:
        ...

    async def upload_object(self, key: str, data: bytes, content_type: str) -> str:
        ...


class S3StorageGateway:

    def __init__(self, client, bucket: str, region: str) -> None:
        self._client = client
        self._bucket = bucket
        self._region = region

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3StorageGateway":
        client = boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY,
            aws_secret_access_key=settings.AWS_SECRET,
        )
        return cls(client, bucket=settings.AWS_BUCKET_NAME, region=settings.AWS_REGION)

    async def issue_upload_credential(self, key: str, max_bytes: int, expires_in: int) -> Dict[str, Any]:
        # boto3 is sync; keep it off the event loop
        presigned = await asyncio.to_thread(
            self._client.generate_presigned_post,
            Bucket=self._bucket,
            Key=key,
            Conditions=[["content-length-range", 0, max_bytes]],
            ExpiresIn=expires_in,
        )
        return {"url": presigned["url"], "fields": presigned["fields"]}

    async def upload_object(self, key: str, data: bytes, content_type: str) -> str:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.info("Uploaded %d bytes to s3://%s/%s", len(data), self._bucket, key)
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"


_storage = None


def get_storage_gateway() -> StorageGateway:
    global _storage
    if _storage is None:
        _storage = S3StorageGateway.from_settings(get_settings())
    return _storage
