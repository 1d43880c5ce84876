"""Image uploads attached to topics and replies."""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Tuple

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

logger = logging.getLogger("forum.uploads")


def _stream_size(upload: FileStorage) -> int:
    stream = upload.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def save_upload(upload: Optional[FileStorage], owner_id: int) -> Tuple[Optional[str], Optional[str]]:
    """Store ``upload`` under ``UPLOAD_FOLDER`` and return its public URL.

    Args:
        upload: File posted in the ``file`` form field.
        owner_id: Identifier of the uploading member; used as a sub-folder so
            uploads stay grouped per member.

    Returns:
        ``(url, None)`` on success or ``(None, error_message)`` when the file
        is missing, has a disallowed extension or exceeds ``FILE_LIMIT``.
    """

    if upload is None or not upload.filename:
        return None, "Choose a file to upload."

    filename = secure_filename(upload.filename)
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    allowed = current_app.config.get("UPLOAD_ALLOWED_EXTENSIONS") or ()
    if allowed and extension not in allowed:
        return None, "This file type is not allowed."

    limit = current_app.config.get("FILE_LIMIT")
    if limit and _stream_size(upload) > limit:
        return None, f"Files must be smaller than {limit} bytes."

    stored_name = f"{uuid.uuid4().hex}.{extension}" if extension else uuid.uuid4().hex
    folder = Path(current_app.config["UPLOAD_FOLDER"]) / str(owner_id)
    folder.mkdir(parents=True, exist_ok=True)
    upload.save(str(folder / stored_name))
    logger.info("stored upload %s/%s", owner_id, stored_name)

    prefix = str(current_app.config.get("UPLOAD_URL_PREFIX", "/public/upload")).rstrip("/")
    return f"{prefix}/{owner_id}/{stored_name}", None
