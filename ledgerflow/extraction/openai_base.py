"""Shared plumbing for the OpenAI-backed extraction providers.

Wraps the async OpenAI client so every SDK failure lands in the same error
taxonomy as raw HTTP providers, and prices calls from token usage.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import openai
from openai import AsyncOpenAI

from ledgerflow.extraction.base import ExtractionProvider
from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType, error_for_status
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# GPT-4o pricing per 1k tokens
INPUT_COST_PER_1K_TOKENS = 0.005
OUTPUT_COST_PER_1K_TOKENS = 0.015

CORE_FIELDS_PROMPT = """Extract the following information from this invoice/document and \
return ONLY a JSON object with these exact fields:

{
  "supplier_name": {"value": "Company Name", "confidence": 0.95},
  "invoice_number": {"value": "INV-12345", "confidence": 0.90},
  "invoice_date": {"value": "2024-01-15", "confidence": 0.85},
  "total_amount": {"value": "1250.00", "confidence": 0.95},
  "currency": {"value": "USD", "confidence": 0.90},
  "line_items": [
    {"value": "Item 1 - $100.00", "confidence": 0.90},
    {"value": "Item 2 - $200.00", "confidence": 0.85}
  ]
}

Rules:
- Return confidence scores between 0 and 1
- Use null for missing values
- Extract line items as descriptive strings with amounts
- Format dates as YYYY-MM-DD
- Return ONLY the JSON object, no additional text"""


class OpenAIProviderBase(ExtractionProvider):
    """Base for providers calling the OpenAI API.

    Requires OPENAI_API_KEY (or APP_OPENAI_API_KEY).
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(settings, http_client=http_client, timeout=timeout)
        self._model = settings.openai_model
        self._client: AsyncOpenAI | None = None

    def is_available(self) -> bool:
        return bool(self.settings.openai_api_key)

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client (lazy initialization).

        Raises:
            ExtractionError: CONFIGURATION_ERROR if no API key is configured
        """
        if self._client is None:
            api_key = self._require_api_key(self.settings.openai_api_key)
            # Retries are owned by the router's fallback policy, not the SDK
            self._client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an SDK call, translating SDK exceptions into ExtractionError."""
        try:
            return await operation()
        except openai.APITimeoutError as e:
            raise ExtractionError(
                ExtractionErrorType.TIMEOUT, f"Request timed out after {self.timeout}s", e
            ) from e
        except openai.APIConnectionError as e:
            raise ExtractionError(
                ExtractionErrorType.NETWORK_ERROR, "Network error during OpenAI API request", e
            ) from e
        except openai.APIStatusError as e:
            raise error_for_status(e.status_code, e.message, e.body) from e

    def _record_usage(self, usage: Any) -> float:
        """Price a completion from its token usage and charge it to the running call."""
        if usage is None:
            return 0.0
        input_cost = (usage.prompt_tokens / 1000) * INPUT_COST_PER_1K_TOKENS
        output_cost = (usage.completion_tokens / 1000) * OUTPUT_COST_PER_1K_TOKENS
        cost = input_cost + output_cost
        self._charge(cost)
        logger.debug(
            f"{self.provider_name} cost - input: ${input_cost:.4f}, "
            f"output: ${output_cost:.4f}, total: ${cost:.4f}"
        )
        return cost

    async def _complete(self, content: list[dict[str, Any]], max_tokens: int = 1000) -> str:
        """Send one user message and return the text of the first choice.

        Raises:
            ExtractionError: INVALID_RESPONSE if the completion has no content
        """
        client = self._get_client()
        response = await self._call(
            lambda: client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                max_tokens=max_tokens,
                temperature=0.1,  # Low temperature for consistent extraction
            )
        )
        self._record_usage(response.usage)

        message = response.choices[0].message.content if response.choices else None
        if not message:
            raise ExtractionError(
                ExtractionErrorType.INVALID_RESPONSE, f"No content returned from {self.get_name()}"
            )
        return message

    async def _upload_document(self, file_url: str) -> str:
        """Download a document and upload it to the OpenAI Files API.

        Returns:
            Uploaded file id
        """
        response = await self._download(file_url)
        filename = file_url.split("?", 1)[0].rsplit("/", 1)[-1] or "document.pdf"
        content_type = response.headers.get("content-type", "application/pdf")

        client = self._get_client()
        uploaded = await self._call(
            lambda: client.files.create(
                file=(filename, response.content, content_type),
                purpose="assistants",
            )
        )
        logger.info(f"{self.provider_name}: uploaded {filename} ({uploaded.bytes} bytes)")
        return uploaded.id

    async def _delete_document(self, file_id: str) -> None:
        """Remove an uploaded file; failures are logged and never raised."""
        try:
            await self._call(lambda: self._get_client().files.delete(file_id))
            logger.debug(f"{self.provider_name}: cleaned up uploaded file {file_id}")
        except ExtractionError as e:
            logger.warning(f"{self.provider_name}: failed to delete file {file_id}: {e.message}")

    async def test_connection(self) -> bool:
        try:
            client = self._get_client()
            await self._call(lambda: client.models.list())
            return True
        except ExtractionError as e:
            logger.error(f"{self.get_name()} connection test failed: {e.message}")
            return False
