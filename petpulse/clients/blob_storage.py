"""Object storage client for uploaded pet clips.

Clips are stored under ``scheme://bucket/key`` URIs (``gs://``, ``s3://``).
Downloads go through boto3's S3 client; pointing STORAGE_ENDPOINT_URL at an
S3-compatible endpoint (GCS interoperability, R2, MinIO) serves the other
schemes with the same code.

Architecture Pattern:
    Simple client wrapper - no retry logic (the video worker owns retries)
    boto3 is synchronous, so downloads run in a thread via asyncio.to_thread

Usage:
    from petpulse.clients.blob_storage import BlobFetcher, parse_storage_uri

    location = parse_storage_uri("gs://pet-videos/7/clip.mp4")
    await BlobFetcher().fetch(location, Path("/tmp/clip.mp4"))
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from petpulse.config import get_storage_endpoint_url, get_storage_region
from petpulse.exceptions import BlobFetchError, StorageURIError
from petpulse.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class StorageLocation:
    bucket: str
    key: str


def parse_storage_uri(uri: str) -> StorageLocation:
    """Split ``scheme://bucket/key`` into bucket and key.

    Raises:
        StorageURIError: If the scheme separator, bucket or key is missing.
    """
    scheme, sep, rest = uri.partition("://")
    if not sep or not scheme:
        raise StorageURIError(uri)

    bucket, slash, key = rest.partition("/")
    if not slash or not bucket or not key:
        raise StorageURIError(uri)

    return StorageLocation(bucket=bucket, key=key)


class BlobFetcher:
    """Downloads stored clips to a local scratch path.

    Args:
        client: Pre-built boto3 S3 client (tests inject a stub). Built from
            STORAGE_ENDPOINT_URL / STORAGE_REGION when omitted.
    """

    def __init__(self, client: Any = None) -> None:
        self._client = client or boto3.client(
            "s3",
            endpoint_url=get_storage_endpoint_url(),
            region_name=get_storage_region(),
        )

    async def fetch(self, location: StorageLocation, destination: Path) -> Path:
        """Download ``location`` to ``destination``.

        Raises:
            BlobFetchError: If the object cannot be downloaded.
        """
        try:
            await asyncio.to_thread(
                self._client.download_file,
                location.bucket,
                location.key,
                str(destination),
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise BlobFetchError(location.bucket, location.key, str(e)) from e

        log.info(
            "blob_downloaded",
            bucket=location.bucket,
            key=location.key,
            path=str(destination),
        )
        return destination
