"""
SmartNotes Backend — File Service Unit Tests
===============================================

What:  Tests for FileService validation and bucketed storage.
How:   Each test gets a FileService rooted in a temporary directory. MIME sniffing
       is patched where the fixture bytes are not a complete media file.

Test Strategy:
    ✅ Allowed / rejected extensions per upload kind
    ✅ Size limits (reported and actual), empty files
    ✅ Object paths: <bucket>/<prefix>/<stem>_<epoch_ms>.<ext>
    ✅ Path traversal rejected on resolve
    ✅ Cleanup tolerates missing files
"""

import sys

import pytest
from unittest.mock import MagicMock, patch

from smartnotes.config import settings
from smartnotes.services.file_service import UPLOAD_KINDS, FileService
from smartnotes.exceptions import FileStorageError, NotFoundError, ValidationError


class TestFileValidation:

    @pytest.fixture(autouse=True)
    def service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)

    # ── Extension Validation ──────────────────────────────────────────────

    @pytest.mark.parametrize("filename", ["memo.m4a", "memo.MP3", "memo.wav", "memo.webm"])
    def test_audio_extensions_allowed(self, filename):
        assert self.service.validate_extension(filename, UPLOAD_KINDS["audio"]).startswith(".")

    def test_image_extension_is_normalized(self):
        assert self.service.validate_extension("photo.JPeG", UPLOAD_KINDS["image"]) == ".jpeg"

    @pytest.mark.parametrize("filename", ["animation.gif", "document.pdf", "malware.exe", "noextension"])
    def test_image_extension_rejected(self, filename):
        with pytest.raises(ValidationError, match="not supported"):
            self.service.validate_extension(filename, UPLOAD_KINDS["image"])

    def test_image_extension_rejected_for_audio(self):
        with pytest.raises(ValidationError, match="not supported"):
            self.service.validate_extension("photo.png", UPLOAD_KINDS["audio"])

    # ── Size Validation ───────────────────────────────────────────────────

    def test_validate_size_within_limit(self):
        self.service.validate_size(None, 1000)

    def test_validate_size_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(None, 0)

    def test_validate_size_over_limit(self):
        with patch.object(settings, "max_file_size", 1024 * 1024):
            with pytest.raises(ValidationError, match="too large"):
                self.service.validate_size(None, 1024 * 1024 + 1)

    def test_reported_size_over_limit(self):
        with patch.object(settings, "max_file_size", 1024 * 1024):
            with pytest.raises(ValidationError, match="exceeds maximum"):
                self.service.validate_size(5 * 1024 * 1024, 10)

    # ── MIME Validation ───────────────────────────────────────────────────

    def test_mime_mismatch_rejected(self):
        with patch.object(self.service, "detect_mime_type", return_value="application/x-dosexec"):
            with pytest.raises(ValidationError, match="not supported"):
                self.service.validate_mime_type(b"MZ...", UPLOAD_KINDS["image"])

    def test_mime_detection_failure_is_storage_error(self):
        broken_magic = MagicMock()
        broken_magic.from_buffer.side_effect = RuntimeError("libmagic missing")
        with patch.dict(sys.modules, {"magic": broken_magic}):
            with pytest.raises(FileStorageError):
                self.service.detect_mime_type(b"\x00\x01")


class TestFileStorage:

    @pytest.fixture(autouse=True)
    def service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)

    @pytest.mark.asyncio
    async def test_validate_and_store_audio_path(self, sample_audio_bytes):
        with patch.object(self.service, "detect_mime_type", return_value="audio/mpeg"):
            stored = await self.service.validate_and_store(
                "audio", "memo.mp3", sample_audio_bytes, prefix="note-123"
            )

        assert stored.bucket == "audio-files"
        assert stored.path.startswith("note-123/audio_")
        assert stored.path.endswith(".mp3")
        assert stored.url == f"{settings.public_base_url}/api/files/audio-files/{stored.path}"
        assert stored.size == len(sample_audio_bytes)
        with open(stored.absolute_path, "rb") as f:
            assert f.read() == sample_audio_bytes

    @pytest.mark.asyncio
    async def test_validate_and_store_image(self, sample_image_bytes):
        with patch.object(self.service, "detect_mime_type", return_value="image/jpeg"):
            stored = await self.service.validate_and_store(
                "image", "photo.jpg", sample_image_bytes, prefix="note-9"
            )
        assert stored.bucket == "images"
        assert stored.path.startswith("note-9/image_")

    @pytest.mark.asyncio
    async def test_rejected_upload_writes_nothing(self, temp_storage):
        with pytest.raises(ValidationError):
            await self.service.validate_and_store("image", "evil.exe", b"MZ", prefix="x")
        assert not (self.service.storage_root / "images").exists()

    def test_resolve_rejects_traversal(self):
        with pytest.raises(ValidationError, match="Invalid file path"):
            self.service.resolve("images", "../../etc/passwd")

    def test_resolve_rejects_unknown_bucket(self):
        with pytest.raises(ValidationError, match="Unknown bucket"):
            self.service.resolve("secrets", "a.txt")

    def test_existing_file_missing(self):
        with pytest.raises(NotFoundError):
            self.service.existing_file("exports", "nobody/none.json")

    @pytest.mark.asyncio
    async def test_existing_file_found(self):
        stored = await self.service.store_object("exports", "u1/export.json", b"{}")
        assert self.service.existing_file("exports", "u1/export.json") == self.service.resolve(
            "exports", stored.path
        )

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, tmp_path):
        test_file = tmp_path / "memo.m4a"
        test_file.write_bytes(b"test content")

        await self.service.cleanup_file(str(test_file))
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, tmp_path):
        await self.service.cleanup_file(str(tmp_path / "nonexistent.m4a"))
