"""
SmartNotes Backend — File Storage Service
============================================

What:  Bucketed file storage: validation, writes, public URLs, safe resolution, cleanup.
Why:   Centralizes all file system operations with security checks.
How:   Uploads are validated (extension, size, magic-byte MIME type) and written to
       <storage_root>/<bucket>/<object path>. Object paths are built by the server
       from UUIDs and timestamps, never from user-supplied names.

Buckets:
    audio-files/<note_id>/audio_<epoch_ms>.<ext>    voice recordings
    images/<note_id>/image_<epoch_ms>.<ext>         photos attached to notes
    exports/<user_id>/smartnotes-export-<ts>.<fmt>  JSON / PDF data exports

Security Model:
    1. Extension check:  fast first rejection
    2. Size check:       prevents memory exhaustion
    3. MIME check:       python-magic inspects header bytes (catches renamed files)
    4. Server-built paths + resolve() guard: no path traversal on read or write
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Set

import aiofiles

from smartnotes.config import settings
from smartnotes.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

AUDIO_BUCKET = "audio-files"
IMAGE_BUCKET = "images"
EXPORT_BUCKET = "exports"
BUCKETS = {AUDIO_BUCKET, IMAGE_BUCKET, EXPORT_BUCKET}


@dataclass(frozen=True)
class UploadKind:
    bucket: str
    stem: str
    extensions: Set[str]
    mime_types: Set[str]
    label: str


UPLOAD_KINDS: Dict[str, UploadKind] = {
    "audio": UploadKind(
        bucket=AUDIO_BUCKET,
        stem="audio",
        extensions={".m4a", ".mp3", ".wav", ".aac", ".ogg", ".webm"},
        # libmagic reports several names for the same containers
        mime_types={
            "audio/mp4", "audio/x-m4a", "audio/m4a", "video/mp4",
            "audio/mpeg", "audio/mp3",
            "audio/wav", "audio/x-wav", "audio/wave",
            "audio/aac", "audio/x-hx-aac-adts",
            "audio/ogg", "application/ogg",
            "audio/webm", "video/webm",
        },
        label="audio recording (m4a, mp3, wav, aac, ogg or webm)",
    ),
    "image": UploadKind(
        bucket=IMAGE_BUCKET,
        stem="image",
        extensions={".png", ".jpg", ".jpeg"},
        mime_types={"image/png", "image/jpeg", "image/jpg"},
        label="image (PNG or JPEG)",
    ),
}


@dataclass(frozen=True)
class StoredFile:
    bucket: str
    path: str
    absolute_path: str
    url: str
    size: int


class FileService:
    """
    Manages upload validation and the storage lifecycle of every bucket.

    Lifecycle of an uploaded file:
        1. validate_and_store(): extension → size → MIME → write
        2. The public URL is saved on the note (audio_uri / image_uri)
        3. On any failure after the write: cleanup_file() removes it
    """

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str, kind: UploadKind) -> str:
        """Returns the normalized extension (lowercase with dot)."""
        ext = Path(filename).suffix.lower()
        if ext not in kind.extensions:
            raise ValidationError(
                message=(
                    f"File type '{ext or 'none'}' is not supported. "
                    f"Allowed types: {', '.join(sorted(kind.extensions))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(kind.extensions)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """Checks Content-Length first (may be absent or wrong), then the real size."""
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="The uploaded file is empty.",
                field="file",
            )

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller file.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) is too large. Maximum is {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def detect_mime_type(self, file_content: bytes) -> str:
        """
        Sniff the MIME type from header bytes with python-magic.

        Imported lazily so the service can start on hosts where libmagic is
        only needed by the upload routes.
        """
        try:
            import magic
            return magic.from_buffer(file_content[:4096], mime=True)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            ) from e

    def validate_mime_type(self, file_content: bytes, kind: UploadKind) -> str:
        mime_type = self.detect_mime_type(file_content)
        if mime_type not in kind.mime_types:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported. "
                    f"The file must be a valid {kind.label}."
                ),
                field="file",
                context={"detected_mime": mime_type},
            )
        return mime_type

    # ── Paths & URLs ──────────────────────────────────────────────────────

    def public_url(self, bucket: str, path: str) -> str:
        return f"{settings.public_base_url}/api/files/{bucket}/{path}"

    def resolve(self, bucket: str, path: str) -> Path:
        """
        Map (bucket, object path) to an absolute path inside the storage root.

        Raises:
            ValidationError: unknown bucket or a path escaping the bucket
        """
        if bucket not in BUCKETS:
            raise ValidationError(message=f"Unknown bucket '{bucket}'", field="bucket")
        bucket_root = (self.storage_root / bucket).resolve()
        full_path = (bucket_root / path).resolve()
        if full_path == bucket_root or bucket_root not in full_path.parents:
            raise ValidationError(message="Invalid file path", field="path")
        return full_path

    def existing_file(self, bucket: str, path: str) -> Path:
        full_path = self.resolve(bucket, path)
        if not full_path.is_file():
            raise NotFoundError(resource="file", resource_id=f"{bucket}/{path}")
        return full_path

    # ── Writes ────────────────────────────────────────────────────────────

    async def store_object(self, bucket: str, object_path: str, content: bytes) -> StoredFile:
        """
        Write bytes to <bucket>/<object_path>.

        Raises:
            FileStorageError if directory creation or file write fails.
        """
        absolute_path = self.resolve(bucket, object_path)
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save the uploaded file. Please try again.",
                context={"bucket": bucket, "os_error": str(e)},
            ) from e

        logger.info("File stored: %s/%s (%d bytes)", bucket, object_path, len(content))
        return StoredFile(
            bucket=bucket,
            path=object_path,
            absolute_path=str(absolute_path),
            url=self.public_url(bucket, object_path),
            size=len(content),
        )

    async def validate_and_store(
        self,
        kind_name: str,
        filename: str,
        content: bytes,
        prefix: str,
        content_length: Optional[int] = None,
    ) -> StoredFile:
        """
        Complete upload pipeline: extension → size → MIME → write.

        Args:
            kind_name: 'audio' or 'image'
            filename: client filename, used only for its extension
            prefix: first object-path segment (the owning note ID)
        """
        kind = UPLOAD_KINDS[kind_name]
        ext = self.validate_extension(filename, kind)
        self.validate_size(content_length, len(content))
        self.validate_mime_type(content, kind)

        object_path = f"{prefix}/{kind.stem}_{int(time.time() * 1000)}{ext}"
        return await self.store_object(kind.bucket, object_path, content)

    async def cleanup_file(self, file_path: str) -> None:
        """
        Best-effort removal of a stored file after a failed workflow.

        Missing files are ignored; other OS errors are logged, not raised,
        because the caller is already handling the original failure.
        """
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    def remove_tree(self, bucket: str, prefix: str) -> None:
        """
        Delete everything stored under <bucket>/<prefix>/.

        Synchronous so it can run from an after-commit hook. Same best-effort
        contract as cleanup_file: errors are logged, not raised.
        """
        try:
            target = self.resolve(bucket, prefix)
        except ValidationError as e:
            logger.warning("Refusing to remove %s/%s: %s", bucket, prefix, e.message)
            return
        if not target.is_dir():
            return
        try:
            shutil.rmtree(target)
            logger.info("Removed stored files under %s/%s", bucket, prefix)
        except OSError as e:
            logger.warning("Failed to remove %s/%s: %s", bucket, prefix, str(e))


file_service = FileService()
