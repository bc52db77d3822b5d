"""Blob store for chat images and voice clips (S3-compatible, e.g. R2)."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hexchat.domain.chat.attachments import Upload, UploadKind, extension_for
from hexchat.obs import metrics as obs_metrics
from hexchat.settings import settings

logger = logging.getLogger(__name__)

_FOLDERS = {"image": "chat_images", "voice": "voice_messages"}


class BlobUploadError(RuntimeError):
	def __init__(self, kind: str, reason: str) -> None:
		super().__init__(f"{kind} upload failed: {reason}")
		self.kind = kind
		self.reason = reason


def object_key(kind: UploadKind, extension: str, *, now_ms: Optional[int] = None) -> str:
	stamp = now_ms if now_ms is not None else int(time.time() * 1000)
	return f"{_FOLDERS[kind]}/{stamp}_{secrets.token_hex(3)}.{extension}"


class BlobStore:
	"""Puts objects into the configured bucket and returns their public URL.

	Size limits are the caller's job (see ``attachments.validate_uploads``).
	"""

	def __init__(
		self,
		*,
		client: Any = None,
		bucket: Optional[str] = None,
		public_url: Optional[str] = None,
	) -> None:
		self._client = client
		self.bucket = bucket or settings.blob_bucket
		self.public_url = (public_url if public_url is not None else settings.blob_public_url).rstrip("/")

	def _s3(self):
		if self._client is None:
			secret = settings.blob_secret_access_key
			self._client = boto3.client(
				"s3",
				endpoint_url=settings.blob_endpoint or None,
				aws_access_key_id=settings.blob_access_key_id or None,
				aws_secret_access_key=secret.get_secret_value() if secret else None,
				region_name="auto",
			)
		return self._client

	async def upload(self, upload: Upload, *, kind: UploadKind) -> str:
		key = object_key(kind, extension_for(kind, upload))
		try:
			await asyncio.to_thread(
				self._s3().put_object,
				Bucket=self.bucket,
				Key=key,
				Body=upload.data,
				ContentType=upload.content_type or "application/octet-stream",
			)
		except (BotoCoreError, ClientError) as exc:
			obs_metrics.inc_upload(kind, "error")
			logger.warning("blob upload failed kind=%s key=%s: %s", kind, key, exc)
			raise BlobUploadError(kind, str(exc)) from exc
		obs_metrics.inc_upload(kind, "ok")
		logger.info("blob uploaded kind=%s key=%s bytes=%d", kind, key, upload.size)
		return f"{self.public_url}/{key}"
