"""Attachment helpers for image and voice messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

from hexchat.settings import settings

UploadKind = Literal["image", "voice"]

TEXT_MAX_LEN = 4000
IMAGE_MIME_PREFIX = "image/"
VOICE_MIME_PREFIXES = ("audio/", "video/webm")
PLACEHOLDER_SCHEME = "local://"

_IMAGE_EXTENSIONS = {
	"image/jpeg": "jpg",
	"image/png": "png",
	"image/webp": "webp",
	"image/gif": "gif",
}
_VOICE_EXTENSIONS = {
	"audio/webm": "webm",
	"audio/mp4": "mp4",
	"audio/ogg": "ogg",
	"audio/mpeg": "mp3",
}


class AttachmentValidationError(ValueError):
	"""Raised when an upload is rejected before reaching the blob store."""

	def __init__(self, code: str) -> None:
		super().__init__(code)
		self.code = code


@dataclass(frozen=True, slots=True)
class Upload:
	data: bytes
	content_type: str
	filename: str = ""

	@property
	def size(self) -> int:
		return len(self.data)


def max_bytes(kind: UploadKind) -> int:
	return settings.voice_max_bytes if kind == "voice" else settings.image_max_bytes


def extension_for(kind: UploadKind, upload: Upload) -> str:
	if kind == "voice":
		return _VOICE_EXTENSIONS.get(upload.content_type, "webm")
	suffix = upload.filename.rsplit(".", 1)[-1].lower() if "." in upload.filename else ""
	if suffix in {"jpg", "jpeg", "png", "webp", "gif"}:
		return suffix
	return _IMAGE_EXTENSIONS.get(upload.content_type, "bin")


def validate_upload(kind: UploadKind, upload: Upload) -> None:
	if upload.size <= 0:
		raise AttachmentValidationError("empty_upload")
	if upload.size > max_bytes(kind):
		raise AttachmentValidationError("media_too_large")
	mime = upload.content_type or ""
	if kind == "image" and not mime.startswith(IMAGE_MIME_PREFIX):
		raise AttachmentValidationError("media_mime_invalid")
	if kind == "voice" and not mime.startswith(VOICE_MIME_PREFIXES):
		raise AttachmentValidationError("media_mime_invalid")


def validate_uploads(kind: UploadKind, uploads: Sequence[Upload]) -> None:
	if not uploads:
		raise AttachmentValidationError("upload_required")
	if kind == "voice" and len(uploads) != 1:
		raise AttachmentValidationError("single_voice_clip")
	for upload in uploads:
		validate_upload(kind, upload)


def validate_text(content: str) -> str:
	text = content.strip()
	if not text:
		raise AttachmentValidationError("text_required")
	if len(text) > TEXT_MAX_LEN:
		raise AttachmentValidationError("text_too_long")
	return text


def placeholder_content(uploads: Iterable[Upload]) -> str:
	"""Local-only content shown while uploads are in flight."""
	return ",".join(f"{PLACEHOLDER_SCHEME}{upload.filename or index}" for index, upload in enumerate(uploads))


def join_urls(urls: Iterable[str]) -> str:
	return ",".join(urls)
