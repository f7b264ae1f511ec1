"""
Preview artifact uploader

Pushes a variant's playlist and segments to the object store (Cloudflare R2
through its S3-compatible API) under previews/<taskId>-<index>/.
"""

import os
import logging
from typing import Any, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .config import CONTENT_TYPES, PreviewConfig
from .errors import UploadError
from .limiter import ConcurrencyLimiter
from .task import PreviewArtifactSet

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Put-object sink"""

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        ...


class S3ObjectStore:
    """S3-compatible object store bound to one bucket"""

    def __init__(self, bucket: str, client: Optional[Any] = None, **client_kwargs: Any) -> None:
        if not bucket:
            raise RuntimeError("object store bucket is not configured (set R2_BUCKET)")
        self.bucket = bucket
        if client is None:
            import boto3

            client = boto3.client("s3", **client_kwargs)
        self.client = client

    @classmethod
    def from_config(cls, config: PreviewConfig) -> 'S3ObjectStore':
        """Create the store from preview configuration

        Args:
            config: preview configuration

        Returns:
            S3ObjectStore instance
        """
        return cls(
            config.bucket,
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
        )

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)


class PreviewUploader:
    """Uploads artifact sets with bounded per-variant concurrency"""

    def __init__(self, store: ObjectStore, config: PreviewConfig):
        """Initialise the uploader

        Args:
            store: object store sink, shared across variants
            config: preview configuration
        """
        self.store = store
        self.config = config

    def _upload_file(self, prefix: str, path: str) -> str:
        name = os.path.basename(path)
        key = f"{prefix}/{name}"
        content_type = CONTENT_TYPES[os.path.splitext(name)[1].lower()]
        with open(path, "rb") as f:
            body = f.read()
        try:
            self.store.put_object(key, body, content_type)
        except (BotoCoreError, ClientError) as exc:
            raise UploadError(f"upload of {key} failed: {exc}") from exc
        return key

    def upload(self, artifacts: PreviewArtifactSet, task_id: str, index: int) -> str:
        """Upload every artifact of one variant

        Only the verified playlist and its referenced segments are sent;
        any single failure fails the whole variant.

        Args:
            artifacts: artifact set produced by ffmpeg
            task_id: batch identifier
            index: variant index

        Returns:
            object key of the playlist
        """
        prefix = self.config.get_output_prefix(task_id, index)
        files = artifacts.all_paths()
        limiter = ConcurrencyLimiter(self.config.max_concurrent_uploads, name=f"upload-{task_id}-{index}")
        settled = limiter.run_all(lambda path: self._upload_file(prefix, path), files)

        failures = [s for s in settled if not s.ok]
        if failures:
            first = failures[0].error
            if isinstance(first, UploadError):
                raise first
            raise UploadError(f"upload under {prefix} failed: {first}") from first

        logger.info(f"Uploaded {len(settled)} files to {prefix}/")
        return f"{prefix}/{artifacts.playlist_name}"
