"""Abstract base class for extraction providers.

Enables switching between document-AI providers (OpenAI vision, OpenAI files,
Mindee) while keeping one interface and one output shape.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Every provider response passes through the same validation discipline:
missing or malformed confidences become 0.0, confidences are clamped to
[0, 1], and malformed fields or line items become null-valued entries instead
of being dropped. Providers raise ``ExtractionError`` internally; the public
``extract`` converts the outcome into an ``ExtractionAttempt`` value so the
router can decide on fallback without try/except control flow.
"""

import json
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, NoReturn
from urllib.parse import urlparse

import httpx

from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType, error_for_status
from ledgerflow.extraction.schema import (
    ExtractedField,
    ExtractionAttempt,
    ExtractionResult,
    VendorExtractionRule,
)
from ledgerflow.shared import metrics
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class _CallCost:
    """Spend accumulated by one extract() call."""

    total: float = 0.0


# One meter per extract() call; asyncio tasks each see their own value
_call_cost: ContextVar[_CallCost | None] = ContextVar("extraction_call_cost", default=None)


class ExtractionProvider(ABC):
    """Abstract base class for document extraction providers.

    All extraction providers must implement this interface to ensure
    consistent behavior and type safety.

    Example implementations:
    - OpenAIVisionProvider: images through the vision API
    - OpenAIFilesProvider: PDFs through the files API
    - MindeeProvider: fixed-schema invoice API
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
            http_client: Shared async HTTP client (created lazily if omitted)
            timeout: Per-call timeout in seconds (defaults to settings.request_timeout_seconds)
        """
        self.settings = settings
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        self.cost = 0.0

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Registry identifier (e.g., 'openai-vision', 'mindee')."""

    @abstractmethod
    def get_name(self) -> str:
        """Human-readable provider name."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if credentials for this provider are configured."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the provider is reachable with the configured credentials."""

    @abstractmethod
    async def _extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionResult:
        """Run the provider-specific extraction.

        Providers that do not build prompts from vendor rules ignore them.

        Raises:
            ExtractionError: On any provider, network or validation failure
        """

    async def extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionAttempt:
        """Extract fields from a document and report the outcome as a value.

        Args:
            file_url: URL of the document to process
            vendor_rules: Optional vendor instructions for schema-aware providers

        Returns:
            ExtractionAttempt holding either the result or the typed error
        """
        meter = _CallCost()
        token = _call_cost.set(meter)
        start = time.perf_counter()
        try:
            result = await self._extract(file_url, vendor_rules)
        except ExtractionError as e:
            logger.warning(f"{self.provider_name} extraction failed [{e.type.value}]: {e.message}")
            attempt = ExtractionAttempt(provider=self.provider_name, error=e, cost=meter.total)
        except Exception as e:
            logger.exception(f"Unexpected error during {self.provider_name} extraction")
            error = ExtractionError(
                ExtractionErrorType.NETWORK_ERROR,
                f"Unexpected error during {self.provider_name} extraction: {e}",
                e,
            )
            attempt = ExtractionAttempt(provider=self.provider_name, error=error, cost=meter.total)
        else:
            attempt = ExtractionAttempt(provider=self.provider_name, result=result, cost=meter.total)
        finally:
            _call_cost.reset(token)

        self.cost = attempt.cost
        metrics.extraction_duration_seconds.labels(provider=self.provider_name).observe(
            time.perf_counter() - start
        )
        metrics.extraction_attempts_total.labels(
            provider=self.provider_name,
            status="success" if attempt.success else "failed",
        ).inc()
        if attempt.cost:
            metrics.extraction_cost_usd_total.labels(provider=self.provider_name).inc(attempt.cost)
        return attempt

    def get_cost(self) -> float:
        """Spend of the most recently completed extraction in USD.

        Concurrent calls on a shared provider each report their own spend on
        the returned ExtractionAttempt; read ``attempt.cost`` rather than this.
        """
        return self.cost

    def _charge(self, amount: float) -> None:
        """Add billable spend to the extract() call currently running.

        Outside of extract() (e.g. a direct ``_extract`` call) the charge is
        only logged.
        """
        meter = _call_cost.get()
        if meter is None:
            logger.debug(f"{self.provider_name}: ${amount:.4f} charged outside extract()")
            return
        meter.total += amount

    async def aclose(self) -> None:
        await self._http.aclose()

    # HTTP helpers

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping transport failures onto the error taxonomy.

        Raises:
            ExtractionError: TIMEOUT if the call exceeded its timeout,
                NETWORK_ERROR for any other transport failure
        """
        timeout = timeout if timeout is not None else self.timeout
        try:
            return await self._http.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise ExtractionError(
                ExtractionErrorType.TIMEOUT, f"Request timed out after {timeout}s", e
            ) from e
        except httpx.HTTPError as e:
            raise ExtractionError(
                ExtractionErrorType.NETWORK_ERROR, "Network error during API request", e
            ) from e

    async def _download(self, file_url: str) -> httpx.Response:
        """Fetch the document to process.

        Raises:
            ExtractionError: If the URL is invalid or the file is not accessible
        """
        self.validate_url(file_url)
        response = await self._request("GET", file_url)
        if not response.is_success:
            raise ExtractionError(
                ExtractionErrorType.INVALID_RESPONSE,
                f"File URL is not accessible ({response.status_code})",
            )
        return response

    @staticmethod
    def handle_api_error(response: httpx.Response) -> NoReturn:
        """Raise the taxonomy error for a failed provider response."""
        raise error_for_status(response.status_code, response.reason_phrase, response.text)

    def _require_api_key(self, api_key: str) -> str:
        if not api_key:
            raise ExtractionError(
                ExtractionErrorType.CONFIGURATION_ERROR,
                f"API key is required for {self.get_name()}",
            )
        return api_key

    # Validation discipline

    @staticmethod
    def validate_url(url: str) -> None:
        """Reject missing or non-HTTP(S) file URLs.

        Raises:
            ExtractionError: INVALID_RESPONSE for an unusable URL
        """
        if not url or not isinstance(url, str):
            raise ExtractionError(ExtractionErrorType.INVALID_RESPONSE, "Invalid file URL provided")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ExtractionError(ExtractionErrorType.INVALID_RESPONSE, "Invalid file URL format")

    @staticmethod
    def validate_confidence(confidence: Any) -> float:
        """Coerce a raw confidence into [0, 1]; anything non-numeric becomes 0.0."""
        if isinstance(confidence, bool) or not isinstance(confidence, int | float):
            return 0.0
        if math.isnan(confidence):
            return 0.0
        return max(0.0, min(1.0, float(confidence)))

    @staticmethod
    def _coerce_value(value: Any) -> str | int | float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            return value if value.strip() else None
        if isinstance(value, int | float):
            return None if isinstance(value, float) and math.isnan(value) else value
        return None

    @classmethod
    def validate_field(cls, field: Any) -> ExtractedField:
        """Normalize one raw `{value, confidence}` field."""
        if not isinstance(field, dict):
            return ExtractedField(value=None, confidence=0.0)
        return ExtractedField(
            value=cls._coerce_value(field.get("value")),
            confidence=cls.validate_confidence(field.get("confidence")),
        )

    @classmethod
    def validate_line_items(cls, items: Any) -> list[ExtractedField]:
        """Normalize line items one by one; malformed entries become null fields."""
        if not isinstance(items, list):
            return []
        return [cls.validate_field(item) for item in items]

    @classmethod
    def create_standard_result(cls, data: Any) -> ExtractionResult:
        """Build an ExtractionResult from a raw provider payload of any shape."""
        if not isinstance(data, dict):
            data = {}
        result = ExtractionResult(
            supplier_name=cls.validate_field(data.get("supplier_name")),
            invoice_number=cls.validate_field(data.get("invoice_number")),
            invoice_date=cls.validate_field(data.get("invoice_date")),
            total_amount=cls.validate_field(data.get("total_amount")),
            line_items=cls.validate_line_items(data.get("line_items")),
        )
        if "currency" in data:
            result.currency = cls.validate_field(data.get("currency"))
        if "document_type" in data:
            result.document_type = cls.validate_field(data.get("document_type"))
        return result

    @staticmethod
    def parse_json_content(content: str) -> Any:
        """Extract and parse JSON from an LLM response.

        Handles common LLM quirks like markdown code blocks and surrounding text.

        Raises:
            ExtractionError: INVALID_RESPONSE if no valid JSON is found
        """
        candidates = []
        block = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if block:
            candidates.append(block.group(1).strip())
        candidates.append(content.strip())
        obj = re.search(r"\{[\s\S]*\}", content)
        if obj:
            candidates.append(obj.group(0))

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
        raise ExtractionError(
            ExtractionErrorType.INVALID_RESPONSE, "Failed to parse provider response as JSON"
        )
