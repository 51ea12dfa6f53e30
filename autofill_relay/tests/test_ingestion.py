import pytest

from autofill_relay.errors import InvalidInputError, PayloadTooLargeError, UnsupportedMediaError
from autofill_relay.ingestion import detect_image_mime_type, remove_upload, store_upload, validate_upload


def test_validate_upload_accepts_png_by_magic_bytes(png_bytes):
    mime = validate_upload("scan.bin", "application/octet-stream", png_bytes, max_bytes=1024)

    assert mime == "image/png"


def test_validate_upload_trusts_declared_image_content_type():
    assert validate_upload("photo.heic", "image/heic", b"\x00\x01", max_bytes=1024) == "image/heic"


def test_validate_upload_rejects_non_image():
    with pytest.raises(UnsupportedMediaError):
        validate_upload("notes.txt", "text/plain", b"hello", max_bytes=1024)


def test_validate_upload_rejects_empty_file():
    with pytest.raises(InvalidInputError):
        validate_upload("scan.png", "image/png", b"", max_bytes=1024)


def test_validate_upload_rejects_oversized_file(png_bytes):
    with pytest.raises(PayloadTooLargeError):
        validate_upload("scan.png", "image/png", png_bytes, max_bytes=8)


def test_detect_image_mime_type_uses_filename_as_last_resort():
    assert detect_image_mime_type(filename="scan.jpg", content_type=None, content_bytes=b"??") == "image/jpeg"
    assert detect_image_mime_type(filename="scan", content_type=None, content_bytes=b"??") is None


def test_store_and_remove_upload(tmp_path, png_bytes):
    stored = store_upload(tmp_path / "uploads", "My Scan.PNG", png_bytes)

    assert stored.exists()
    assert stored.suffix == ".png"
    assert stored.read_bytes() == png_bytes

    remove_upload(stored)
    remove_upload(stored)
    remove_upload(None)

    assert not stored.exists()
