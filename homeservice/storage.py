from __future__ import annotations

import logging
import os
import uuid
from typing import Iterable, List

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from homeservice.config import NegotiationSettings
from homeservice.errors import ValidationError


LOGGER = logging.getLogger("homeservice.storage")


class PhotoStorage:
    """Saves request photos under ``upload_dir`` and hands back their public paths."""

    def __init__(self, settings: NegotiationSettings) -> None:
        self.upload_dir = settings.upload_dir
        self.url_prefix = settings.upload_url_prefix.rstrip("/")
        self.max_photo_bytes = settings.max_photo_bytes
        self.allowed_extensions = {ext.lower().lstrip(".") for ext in settings.allowed_image_extensions}

    def extension_for(self, upload: FileStorage) -> str:
        filename = secure_filename(upload.filename or "")
        _, ext = os.path.splitext(filename)
        return ext.lower().lstrip(".")

    def check(self, upload: FileStorage) -> None:
        ext = self.extension_for(upload)
        mimetype = str(upload.mimetype or "").lower()
        if ext not in self.allowed_extensions or not mimetype.startswith("image/"):
            raise ValidationError(
                code="photo_type_invalid",
                payload={"filename": upload.filename, "allowed": sorted(self.allowed_extensions)},
            )
        if self._size_of(upload) > self.max_photo_bytes:
            raise ValidationError(
                code="payload_too_large",
                http_status=413,
                payload={"filename": upload.filename, "max_bytes": self.max_photo_bytes},
            )

    def check_all(self, uploads: Iterable[FileStorage]) -> None:
        for upload in uploads:
            self.check(upload)

    def store(self, upload: FileStorage) -> str:
        ext = self.extension_for(upload)
        filename = secure_filename(f"photo-{uuid.uuid4().hex}.{ext}")
        os.makedirs(self.upload_dir, exist_ok=True)
        upload.save(os.path.join(self.upload_dir, filename))
        return f"{self.url_prefix}/{filename}"

    def store_all(self, uploads: Iterable[FileStorage]) -> List[str]:
        stored: List[str] = []
        try:
            for upload in uploads:
                stored.append(self.store(upload))
        except OSError:
            self.delete_all(stored)
            raise
        return stored

    def local_path(self, public_path: str) -> str:
        filename = os.path.basename(public_path)
        return os.path.join(self.upload_dir, filename)

    def delete_all(self, public_paths: Iterable[str]) -> None:
        for public_path in public_paths:
            path = self.local_path(public_path)
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError:
                LOGGER.warning("photo_cleanup_failed", extra={"photo_path": public_path}, exc_info=True)

    @staticmethod
    def _size_of(upload: FileStorage) -> int:
        stream = upload.stream
        position = stream.tell()
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(position)
        return size
