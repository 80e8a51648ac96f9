"""
Email service for high-level send orchestration.
Validates inbound fields, authorizes recipients against the permission tree,
submits to Mailjet and queues best-effort indexing. Also serves the history
and search read paths.
"""

from collections.abc import Mapping
from typing import Any

from mailrelay.infrastructure.observability.logging import get_logger
from mailrelay.models.domain.email_domain import (
    AttachmentFile,
    EmailSendRequest,
    IndexDocument,
    RawSendInput,
)
from mailrelay.services.background import BackgroundTaskRunner
from mailrelay.services.idol_client import IdolClient, IdolError
from mailrelay.services.mailjet_client import MailjetClient, MailjetError
from mailrelay.services.permission_tree import PermissionTreeProvider
from mailrelay.services.recipient_filter import (
    RecipientParseError,
    filter_recipients,
    parse_requested_recipients,
)
from mailrelay.services.uploads import release_attachments

logger = get_logger(__name__)

# Never forwarded to Mailjet from caller-supplied history filters
RESERVED_HISTORY_KEYS = frozenset({"apikey"})


class EmailValidationError(Exception):
    """Caller input failed a precondition. Reported as-is, never retried."""


class UpstreamError(Exception):
    """A collaborator (Mailjet, IDOL, permission source) failed."""

    def __init__(
        self,
        message: str,
        source: str,
        status_code: int | None = None,
        response_data: Any = None,
    ):
        super().__init__(message)
        self.source = source
        self.status_code = status_code
        self.response_data = response_data


class EmailService:
    """
    Orchestrates one send per call.

    The only suspension points on the send path are the permission tree
    fetch and the Mailjet submit, in that order.
    """

    def __init__(
        self,
        mailjet: MailjetClient,
        tree_provider: PermissionTreeProvider,
        background: BackgroundTaskRunner,
        idol: IdolClient | None = None,
        emails_index: str = "emails",
    ):
        self.mailjet = mailjet
        self.tree_provider = tree_provider
        self.background = background
        self.idol = idol
        self.emails_index = emails_index

    async def send(self, raw: RawSendInput, attachments: list[AttachmentFile]) -> Any:
        """
        Send an email to the authorized subset of the requested recipients.

        Staged attachment files are released exactly once, whatever the
        outcome.

        Args:
            raw: Fields as received from the caller
            attachments: Files already staged on disk

        Returns:
            Mailjet's raw acceptance payload

        Raises:
            EmailValidationError: Missing fields, bad `to`, or no valid recipient
            UpstreamError: Permission tree or Mailjet failure
        """
        logger.debug(
            "Sending parameters",
            sender=raw.sender,
            to=raw.to,
            subject=raw.subject,
            to_index=raw.to_index,
            attachments=[a.original_name for a in attachments],
        )

        try:
            message = await self._prepare(raw, attachments)
            result = await self._submit(message)
        finally:
            release_attachments(attachments)

        if message.to_index:
            self._queue_indexing(message.to_index_document())

        return result

    async def _prepare(self, raw: RawSendInput, attachments: list[AttachmentFile]) -> EmailSendRequest:
        if not raw.sender:
            raise EmailValidationError("from required")

        try:
            requested = parse_requested_recipients(raw.to)
        except RecipientParseError as e:
            raise EmailValidationError(f"invalid to field: {e}") from e

        if not raw.subject:
            raise EmailValidationError("subject required")
        if not raw.html:
            raise EmailValidationError("html required")

        try:
            tree = await self.tree_provider.fetch()
        except Exception as e:
            logger.error(
                "Permission tree fetch failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamError(
                f"Failed to fetch permission tree: {e}",
                source="permission_tree",
                status_code=getattr(e, "status_code", None),
                response_data=getattr(e, "response_data", None),
            ) from e

        recipients = filter_recipients(requested, tree)
        logger.info("Secure recipients", recipients=recipients)

        if not recipients:
            raise EmailValidationError("at least 1 valid recipient required")

        return EmailSendRequest(
            sender=raw.sender,
            recipients=recipients,
            subject=raw.subject,
            html=raw.html,
            attachments=list(attachments),
            to_index=raw.to_index,
        )

    async def _submit(self, message: EmailSendRequest) -> Any:
        try:
            return await self.mailjet.send_message(message)
        except MailjetError as e:
            raise UpstreamError(
                str(e),
                source="mailjet",
                status_code=e.status_code,
                response_data=e.response_data,
            ) from e

    def _queue_indexing(self, document: IndexDocument) -> None:
        if self.idol is None:
            logger.warning("Indexing requested but IDOL is not configured", title=document.title)
            return

        logger.info("Email queued for indexing", index=self.emails_index)
        self.background.spawn(
            self.idol.add_to_text_index(self.emails_index, [document]),
            name="index-sent-email",
        )

    async def history(self, query: Mapping[str, Any]) -> Any:
        """
        List sent-message statistics.

        Args:
            query: Caller filters; any `apikey` entry is dropped

        Returns:
            Mailjet's statistics body

        Raises:
            UpstreamError: On Mailjet failure
        """
        filters = {key: value for key, value in query.items() if key not in RESERVED_HISTORY_KEYS}
        logger.debug("History query", query=filters, dropped=sorted(set(query) - set(filters)))

        try:
            return await self.mailjet.get_message_statistics(filters)
        except MailjetError as e:
            raise UpstreamError(
                str(e),
                source="mailjet",
                status_code=e.status_code,
                response_data=e.response_data,
            ) from e

    async def search(self, text: str | None) -> dict:
        """
        Query indexed messages.

        Args:
            text: Free-text query, forwarded unchanged

        Returns:
            dict: IDOL result set with highlighted terms and all fields

        Raises:
            UpstreamError: When IDOL is unavailable or fails
        """
        logger.info("Query indexed messages", text=text)

        if self.idol is None:
            raise UpstreamError("Search backend is not configured", source="idol")

        try:
            return await self.idol.query_text_index(
                text,
                self.emails_index,
                highlight="terms",
                print="all",
            )
        except IdolError as e:
            raise UpstreamError(
                str(e),
                source="idol",
                status_code=e.status_code,
                response_data=e.response_data,
            ) from e
