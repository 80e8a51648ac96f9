"""
Attachment staging.
Uploaded files are written to the upload directory under a random name and
removed again once the send attempt is over.
"""

import os
import uuid
from pathlib import Path

from fastapi import UploadFile

from mailrelay.infrastructure.observability.logging import get_logger
from mailrelay.models.domain.email_domain import AttachmentFile

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


async def stage_uploads(uploads: list[UploadFile], upload_dir: Path) -> list[AttachmentFile]:
    """
    Copy uploads to disk.

    If any upload fails to stage, the files already written are removed
    before the error propagates.
    """
    upload_dir.mkdir(parents=True, exist_ok=True)
    staged: list[AttachmentFile] = []

    try:
        for upload in uploads:
            path = (upload_dir / uuid.uuid4().hex).resolve()
            with open(path, "wb") as out:
                staged.append(
                    AttachmentFile(
                        original_name=upload.filename or path.name,
                        path=path,
                        content_type=upload.content_type,
                    )
                )
                while chunk := await upload.read(CHUNK_SIZE):
                    out.write(chunk)
    except Exception:
        release_attachments(staged)
        raise

    return staged


def release_attachments(attachments: list[AttachmentFile]) -> None:
    """Delete staged files. Missing files are logged, not raised."""
    for attachment in attachments:
        try:
            os.unlink(attachment.path)
        except OSError as e:
            logger.warning(
                "Failed to remove staged attachment",
                path=str(attachment.path),
                error=str(e),
            )
