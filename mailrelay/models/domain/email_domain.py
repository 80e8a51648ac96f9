"""
Email Domain Models
Request-scoped types used by the send orchestrator and recipient filter.
None of these are persisted.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# group key -> authorized member identifiers (trusted)
PermissionTree = dict[str, set[str]]

# group key -> requested member identifiers (untrusted, validated shape)
RequestedRecipients = dict[str, list[str]]


@dataclass(slots=True)
class RawSendInput:
    """Untyped send fields exactly as received at the HTTP boundary."""

    sender: str | None = None
    to: str | None = None
    subject: str | None = None
    html: str | None = None
    to_index: bool = False


@dataclass(slots=True)
class AttachmentFile:
    """An uploaded file staged on local disk, pending attachment."""

    original_name: str
    path: Path
    content_type: str | None = None


@dataclass(slots=True)
class EmailSendRequest:
    """Validated outbound unit handed to the email provider."""

    sender: str
    recipients: list[str]
    subject: str
    html: str
    attachments: list[AttachmentFile] = field(default_factory=list)
    to_index: bool = False

    def to_index_document(self) -> "IndexDocument":
        """Derive the search document for this message."""
        return IndexDocument(
            title=self.subject,
            sender=self.sender,
            recipients=list(self.recipients),
            content=self.html,
        )


@dataclass(slots=True)
class IndexDocument:
    """Search document written after a confirmed send."""

    title: str
    sender: str
    recipients: list[str]
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "sender": self.sender,
            "recipients": self.recipients,
            "content": self.content,
        }
