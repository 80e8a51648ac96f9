"""
Mailjet API client for sending mail and reading delivery statistics.
Low-level client: builds the HTTP requests and maps failures to MailjetError.
No retries; a failed call is reported once.
"""

from contextlib import ExitStack
from typing import Any
from urllib.parse import urlencode

import httpx

from mailrelay.config import Settings
from mailrelay.infrastructure.observability.logging import get_logger
from mailrelay.models.domain.email_domain import EmailSendRequest

logger = get_logger(__name__)

# Mailjet v3 accepts a send only with a plain 200
SUCCESS_STATUS = 200


class MailjetError(Exception):
    """Custom exception for Mailjet API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class MailjetClient:
    """
    Client for the Mailjet v3 send and statistics endpoints.

    Authenticates every call with the API key pair via HTTP basic auth.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = "https://api.mailjet.com",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._auth = httpx.BasicAuth(api_key, secret_key)
        self._client = self._create_client(timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MailjetClient":
        return cls(
            api_key=settings.MAILJET_API_KEY,
            secret_key=settings.MAILJET_SECRET_KEY,
            base_url=settings.MAILJET_API_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        """Create async HTTP client for the Mailjet API."""
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), limits=limits, auth=self._auth)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def send_url(self) -> str:
        return f"{self.base_url}/v3/send"

    @property
    def statistics_url(self) -> str:
        return f"{self.base_url}/v3/REST/messagesentstatistics"

    def _handle_api_response(self, response: httpx.Response, operation: str) -> Any:
        """
        Validate a Mailjet response.

        Args:
            response: HTTP response from Mailjet
            operation: Operation name for logging

        Returns:
            Parsed JSON body, or the raw text when the body is not JSON

        Raises:
            MailjetError: If the status is anything but 200
        """
        logger.debug(
            f"Mailjet {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        body = _decode_body(response)

        if response.status_code == SUCCESS_STATUS:
            return body

        logger.error(
            f"Mailjet {operation} failed",
            status_code=response.status_code,
            response_body=body if isinstance(body, dict) else str(body)[:200],
        )
        raise MailjetError(
            f"Mailjet {operation} failed (HTTP {response.status_code})",
            status_code=response.status_code,
            response_data=body,
        )

    async def send_message(self, message: EmailSendRequest) -> Any:
        """
        Submit one message as a multipart/form-data request.

        Recipients go out as a repeated `to` part and each attachment as a
        repeated `attachment` part named after the uploaded file.

        Args:
            message: Validated message with filtered recipients

        Returns:
            The provider's raw acceptance payload

        Raises:
            MailjetError: On transport failure or a non-200 status
        """
        # Text fields ride as file-less parts so the body is multipart even
        # when nothing is attached
        parts: list[tuple[str, tuple]] = [
            ("from", (None, message.sender)),
            ("subject", (None, message.subject)),
            ("html", (None, message.html)),
        ]
        parts.extend(("to", (None, recipient)) for recipient in message.recipients)

        logger.info(
            "Sending Mailjet message",
            recipient_count=len(message.recipients),
            attachment_count=len(message.attachments),
        )

        try:
            with ExitStack() as stack:
                for attachment in message.attachments:
                    logger.debug(
                        "Attaching file",
                        filename=attachment.original_name,
                        path=str(attachment.path),
                    )
                    handle = stack.enter_context(open(attachment.path, "rb"))
                    if attachment.content_type:
                        parts.append(
                            ("attachment", (attachment.original_name, handle, attachment.content_type))
                        )
                    else:
                        parts.append(("attachment", (attachment.original_name, handle)))

                response = await self._client.post(self.send_url, files=parts)

        except (httpx.HTTPError, OSError) as e:
            logger.error("Mailjet send request failed", error=str(e), error_type=type(e).__name__)
            raise MailjetError(f"Failed to send message: {e}") from e

        result = self._handle_api_response(response, "send")
        logger.info("Email sent")
        return result

    async def get_message_statistics(self, query: dict[str, Any]) -> Any:
        """
        Read delivery statistics.

        Args:
            query: Filters forwarded as the URL query string (already sanitized)

        Returns:
            Parsed statistics body

        Raises:
            MailjetError: On transport failure or a non-200 status
        """
        url = self.statistics_url
        if query:
            url = f"{url}?{urlencode(query, doseq=True)}"

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.error("Mailjet statistics request failed", error=str(e))
            raise MailjetError(f"Failed to read message statistics: {e}") from e

        return self._handle_api_response(response, "statistics")

    def health_check(self) -> dict[str, Any]:
        """Static configuration summary for readiness reporting."""
        return {
            "service": "mailjet",
            "api_base_url": self.base_url,
            "supported_operations": ["send_message", "get_message_statistics"],
        }


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return response.text
