# Overview: Service-layer operations for file storage; encapsulates business logic and filesystem work.

"""
File Attachment Storage

WHY: Bills and payment proofs live outside the database. The lifecycle
services only depend on this narrow contract:

- upload(actor, owner_id, expense_id, upload) -> path
  Every attempt gets a distinct object key (timestamp + random suffix), so
  a retried submission never overwrites or collides with an earlier try.
  Non-privileged callers may only write under their own namespace.
- Any storage failure surfaces as DependencyFailure; the caller aborts
  the whole composite operation and deletes what it already stored.

LocalObjectStorage stands in for the bucket. Keys look like
<owner_id>/<expense_id>/<epoch_ms>-<random>.<ext>.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from ..errors import DependencyFailure, NotFoundError, ValidationError
from ..time_utils import epoch_millis
from . import policy_service


@dataclass(frozen=True)
class Upload:
    """A file received from a client, already read into memory."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_file_storage(cls, file: FileStorage) -> "Upload":
        return cls(
            filename=file.filename or "upload",
            content_type=(file.mimetype or "application/octet-stream").lower(),
            data=file.read(),
        )


class LocalObjectStorage:
    """Filesystem-backed object store rooted at one directory."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _resolve(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([self.root, full]) != self.root or full == self.root:
            raise ValidationError("Invalid storage path")
        return full

    def put(self, path: str, data: bytes) -> None:
        full = self._resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        # "xb": a key is never reused
        with open(full, "xb") as fh:
            fh.write(data)

    def delete(self, path: str) -> None:
        try:
            os.remove(self._resolve(path))
        except FileNotFoundError:
            pass

    def open(self, path: str) -> BinaryIO:
        full = self._resolve(path)
        if not os.path.isfile(full):
            raise NotFoundError("File not found in storage")
        return open(full, "rb")


def get_storage() -> LocalObjectStorage:
    root = current_app.config["STORAGE_ROOT"]
    if not os.path.isabs(root):
        root = os.path.join(current_app.instance_path, root)
    return LocalObjectStorage(root)


def build_object_key(owner_id: str, expense_id: str, filename: str) -> str:
    safe = secure_filename(filename or "")
    ext = safe.rsplit(".", 1)[-1].lower() if "." in safe else "bin"
    return f"{owner_id}/{expense_id}/{epoch_millis()}-{secrets.token_hex(4)}.{ext}"


def validate_upload(upload: Upload) -> None:
    if not upload.data:
        raise ValidationError(f"File {upload.filename} is empty")
    max_bytes = current_app.config["MAX_UPLOAD_BYTES"]
    if upload.size > max_bytes:
        raise ValidationError(f"File {upload.filename} exceeds {max_bytes} bytes")
    allowed = current_app.config["ALLOWED_UPLOAD_TYPES"]
    if upload.content_type not in allowed:
        raise ValidationError(f"File type {upload.content_type} is not allowed")


def upload(actor, owner_id: str, expense_id: str, upload: Upload) -> str:
    """
    Store one file under the owner's namespace and return its key.

    Raises Unauthorized for a foreign namespace (non-privileged caller),
    ValidationError for bad files, DependencyFailure if storage fails.
    """
    if owner_id != actor.user_id and not actor.is_privileged:
        policy_service.deny(
            actor, "UPLOAD", f"storage:{owner_id}/{expense_id}",
            "Cannot write outside your own storage namespace",
        )

    validate_upload(upload)
    key = build_object_key(owner_id, expense_id, upload.filename)

    try:
        get_storage().put(key, upload.data)
    except OSError as e:
        current_app.logger.exception("Failed to store %s for expense %s", key, expense_id)
        raise DependencyFailure("File storage unavailable, please retry") from e

    return key


def remove_objects(paths: Iterable[str]) -> None:
    """
    Delete stored objects after an aborted operation or a draft deletion.

    Failures are logged: an orphaned object is harmless, its key is never reused.
    """
    storage = get_storage()
    for path in paths:
        try:
            storage.delete(path)
        except OSError:
            current_app.logger.exception("Failed to delete stored object %s", path)


def open_object(path: str) -> BinaryIO:
    try:
        return get_storage().open(path)
    except OSError as e:
        current_app.logger.exception("Failed to open stored object %s", path)
        raise DependencyFailure("File storage unavailable, please retry") from e
