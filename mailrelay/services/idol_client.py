"""
IDOL (Haven OnDemand) text index client.
Writes sent messages to a text index and runs free-text queries against it.
Low-level client: raises IdolError for any failure.
"""

import json
from typing import Any

import httpx

from mailrelay.config import Settings
from mailrelay.infrastructure.observability.logging import get_logger
from mailrelay.models.domain.email_domain import IndexDocument

logger = get_logger(__name__)

ADD_TO_TEXT_INDEX_PATH = "/1/api/sync/addtotextindex/v1"
QUERY_TEXT_INDEX_PATH = "/1/api/sync/querytextindex/v1"


class IdolError(Exception):
    """Custom exception for IDOL API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class IdolClient:
    """
    Client for the IDOL text index API.

    The API key travels as the `apikey` parameter on every call.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.havenondemand.com",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdolClient":
        return cls(
            api_key=settings.IDOL_API_KEY,
            base_url=settings.IDOL_API_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate an IDOL response.

        Raises:
            IdolError: If the status is not 2xx or the body is not JSON
        """
        logger.debug(
            f"IDOL {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = None

        if response.is_success and data is not None:
            return data

        if response.is_success:
            logger.error(f"Failed to parse IDOL {operation} response")
            raise IdolError(f"Invalid IDOL {operation} response format", status_code=response.status_code)

        logger.error(
            f"IDOL {operation} failed",
            status_code=response.status_code,
            response_text=response.text[:200] if response.text else "",
        )
        raise IdolError(
            f"IDOL {operation} failed (HTTP {response.status_code})",
            status_code=response.status_code,
            response_data=data if data is not None else response.text,
        )

    async def add_to_text_index(self, index: str, documents: list[IndexDocument]) -> dict:
        """
        Add documents to a text index.

        Args:
            index: Target index name
            documents: Documents to add

        Returns:
            dict: IDOL acknowledgement (index name and references)

        Raises:
            IdolError: If the write fails
        """
        payload = {"document": [document.to_dict() for document in documents]}
        form = {
            "index": index,
            "json": json.dumps(payload),
            "apikey": self._api_key,
        }

        try:
            response = await self._client.post(f"{self.base_url}{ADD_TO_TEXT_INDEX_PATH}", data=form)
        except httpx.HTTPError as e:
            raise IdolError(f"Failed to add documents to index {index}: {e}") from e

        data = self._handle_api_response(response, "addtotextindex")
        logger.info("Documents indexed", index=index, document_count=len(documents))
        return data

    async def query_text_index(self, text: str | None, indexes: str, **parameters: Any) -> dict:
        """
        Run a free-text query.

        Args:
            text: Query text, passed through as given (None omits the parameter)
            indexes: Index name(s) to search
            **parameters: Extra IDOL parameters (highlight, print, ...)

        Returns:
            dict: IDOL result set

        Raises:
            IdolError: If the query fails
        """
        params: dict[str, Any] = {"indexes": indexes}
        if text is not None:
            params["text"] = text
        params.update(parameters)
        params["apikey"] = self._api_key

        try:
            response = await self._client.get(f"{self.base_url}{QUERY_TEXT_INDEX_PATH}", params=params)
        except httpx.HTTPError as e:
            raise IdolError(f"Failed to query index {indexes}: {e}") from e

        return self._handle_api_response(response, "querytextindex")
