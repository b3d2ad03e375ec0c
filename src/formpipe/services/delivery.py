"""Destinations for finished export files."""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """An export file could not be written to its destination."""

    pass


class FileDelivery(Protocol):
    """Anything that can store an encoded export and say where it went."""

    async def deliver(self, content: bytes, filename: str, mime_type: str) -> str: ...


class S3FileDelivery:
    """Uploads export files to an S3 bucket under a key prefix."""

    def __init__(self, s3_client, bucket: str, prefix: str = "exports/"):
        self.s3_client = s3_client
        self.bucket = bucket
        self.prefix = prefix

    def _put(self, key: str, content: bytes, mime_type: str) -> None:
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=mime_type,
            ContentDisposition=f'attachment; filename="{key.rsplit("/", 1)[-1]}"',
            CacheControl="private, no-cache",  # Exports contain submission data
        )

    async def deliver(self, content: bytes, filename: str, mime_type: str) -> str:
        key = f"{self.prefix}{filename}"
        try:
            await asyncio.to_thread(self._put, key, content, mime_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key} to S3: {e}")
            raise DeliveryError(f"Failed to upload {filename}: {e}") from e

        location = f"s3://{self.bucket}/{key}"
        logger.info(f"Uploaded {filename} to {location}")
        return location


class LocalFileDelivery:
    """Writes export files into a local directory (development and tests)."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def deliver(self, content: bytes, filename: str, mime_type: str) -> str:
        path = self.directory / Path(filename).name
        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise DeliveryError(f"Failed to write {filename}: {e}") from e

        logger.info(f"Wrote {filename} ({len(content)} bytes, {mime_type}) to {path}")
        return str(path)
