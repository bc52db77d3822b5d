import re

import pytest

from hexchat.domain.chat import attachments
from hexchat.domain.chat.attachments import AttachmentValidationError, Upload
from hexchat.infra.blob import BlobStore, BlobUploadError, object_key
from hexchat.settings import settings


def test_text_validation():
    assert attachments.validate_text("  hi  ") == "hi"
    with pytest.raises(AttachmentValidationError) as info:
        attachments.validate_text("   ")
    assert info.value.code == "text_required"
    with pytest.raises(AttachmentValidationError):
        attachments.validate_text("x" * (attachments.TEXT_MAX_LEN + 1))


def test_upload_limits_are_enforced_before_upload():
    big_image = Upload(b"x" * (settings.image_max_bytes + 1), "image/png", "a.png")
    with pytest.raises(AttachmentValidationError) as info:
        attachments.validate_uploads("image", [big_image])
    assert info.value.code == "media_too_large"

    big_voice = Upload(b"x" * (settings.voice_max_bytes + 1), "audio/webm")
    with pytest.raises(AttachmentValidationError):
        attachments.validate_uploads("voice", [big_voice])

    with pytest.raises(AttachmentValidationError) as info:
        attachments.validate_uploads("image", [Upload(b"x", "text/plain", "a.txt")])
    assert info.value.code == "media_mime_invalid"

    clip = Upload(b"x", "audio/webm")
    with pytest.raises(AttachmentValidationError):
        attachments.validate_uploads("voice", [clip, clip])


def test_extensions():
    assert attachments.extension_for("image", Upload(b"x", "image/png", "photo.JPEG")) == "jpeg"
    assert attachments.extension_for("image", Upload(b"x", "image/webp", "blob")) == "webp"
    assert attachments.extension_for("voice", Upload(b"x", "audio/ogg")) == "ogg"


def test_object_key_layout():
    assert re.fullmatch(r"chat_images/1700000000000_[0-9a-f]{6}\.png", object_key("image", "png", now_ms=1700000000000))
    assert object_key("voice", "webm").startswith("voice_messages/")


@pytest.mark.asyncio
async def test_blob_upload_returns_public_url(stub_s3):
    s3 = stub_s3
    store = BlobStore(client=s3, bucket="assets", public_url="https://cdn.example/")
    url = await store.upload(Upload(b"png-bytes", "image/png", "cat.png"), kind="image")
    assert url.startswith("https://cdn.example/chat_images/")
    assert url.endswith(".png")
    (put,) = s3.puts
    assert put["Bucket"] == "assets"
    assert put["ContentType"] == "image/png"
    assert put["Body"] == b"png-bytes"


@pytest.mark.asyncio
async def test_blob_upload_failure_raises(stub_s3):
    stub_s3.fail = True
    store = BlobStore(client=stub_s3, bucket="assets", public_url="https://cdn.example")
    with pytest.raises(BlobUploadError) as info:
        await store.upload(Upload(b"v", "audio/webm"), kind="voice")
    assert info.value.kind == "voice"
