"""Mindee invoice provider (V2 API).

Fixed-schema extraction: the document is enqueued as a multipart upload, the
job is polled until processed, and the inference fields are transformed into
the five core fields. Mindee charges a flat fee per document.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import urlparse

import httpx
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from ledgerflow.extraction.base import ExtractionProvider
from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType
from ledgerflow.extraction.schema import ExtractionResult, VendorExtractionRule
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)

MINDEE_COST_PER_DOCUMENT = 0.035
DEFAULT_FIELD_CONFIDENCE = 0.8
INITIAL_POLL_DELAY_SECONDS = 3.0


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class MindeeProvider(ExtractionProvider):
    """Mindee V2 invoice extraction (60s timeout per call, bounded polling).

    Requires MINDEE_API_KEY (or APP_MINDEE_API_KEY).
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        initial_delay: float = INITIAL_POLL_DELAY_SECONDS,
    ) -> None:
        super().__init__(
            settings,
            http_client=http_client,
            timeout=timeout if timeout is not None else settings.file_upload_timeout_seconds,
        )
        self.base_url = settings.mindee_base_url.rstrip("/")
        self.model_id = settings.mindee_model_id
        self.max_polls = settings.mindee_max_polls
        self.poll_interval = settings.mindee_poll_interval_seconds
        self.initial_delay = initial_delay

    @property
    def provider_name(self) -> str:
        return "mindee"

    def get_name(self) -> str:
        return "Mindee Invoice API"

    def is_available(self) -> bool:
        return bool(self.settings.mindee_api_key)

    @property
    def enqueue_url(self) -> str:
        return f"{self.base_url}/inferences/enqueue"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self._require_api_key(self.settings.mindee_api_key)}

    async def _extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionResult:
        headers = self._headers()
        document = await self._download(file_url)

        polling_url = await self._enqueue(document.content, self._file_name(file_url), headers)
        self._charge(MINDEE_COST_PER_DOCUMENT)

        if self.initial_delay:
            await asyncio.sleep(self.initial_delay)
        result_url = await self._wait_for_result(polling_url, headers)

        response = await self._request("GET", result_url, headers=headers)
        if not response.is_success:
            self.handle_api_error(response)
        return self.transform_response(self._json(response))

    async def _enqueue(self, content: bytes, file_name: str, headers: dict[str, str]) -> str:
        """Submit the document for inference and return the job polling URL."""
        response = await self._request(
            "POST",
            self.enqueue_url,
            headers=headers,
            data={"model_id": self.model_id, "rag": "false"},
            files={"file": (file_name, content)},
        )
        if not response.is_success:
            self.handle_api_error(response)

        job = self._json(response).get("job") or {}
        polling_url = job.get("polling_url")
        if not polling_url:
            raise ExtractionError(
                ExtractionErrorType.INVALID_RESPONSE, "Mindee enqueue response has no polling URL"
            )
        logger.info(f"Mindee job enqueued: {job.get('id', 'unknown')}")
        return polling_url

    async def _poll_once(self, polling_url: str, headers: dict[str, str]) -> str | None:
        """Check the job once; returns the result URL when processing is done."""
        response = await self._request("GET", polling_url, headers=headers, follow_redirects=False)
        if response.status_code not in (200, 302):
            logger.debug(f"Mindee poll returned {response.status_code}, retrying")
            return None

        try:
            job = response.json().get("job") or {}
        except ValueError:
            job = {}

        if response.status_code == 302 or job.get("status") == "Processed":
            return job.get("result_url") or response.headers.get("location")
        return None

    async def _wait_for_result(self, polling_url: str, headers: dict[str, str]) -> str:
        """Poll the job until it is processed.

        Raises:
            ExtractionError: TIMEOUT when the job is still pending after max_polls
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_polls),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda url: url is None),
            retry_error_callback=lambda state: None,
        )
        result_url = await retrying(self._poll_once, polling_url, headers)
        if not result_url:
            raise ExtractionError(
                ExtractionErrorType.TIMEOUT, f"Polling timed out after {self.max_polls} attempts"
            )
        return result_url

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ExtractionError(
                ExtractionErrorType.INVALID_RESPONSE, "Mindee returned invalid JSON response", e
            ) from e
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _file_name(file_url: str) -> str:
        return urlparse(file_url).path.rsplit("/", 1)[-1] or "document"

    @staticmethod
    def _field(raw: Any, value: Any = None) -> dict[str, Any]:
        raw = raw if isinstance(raw, dict) else {}
        if value is None:
            value = raw.get("value")
        return {"value": value, "confidence": raw.get("confidence") or DEFAULT_FIELD_CONFIDENCE}

    @classmethod
    def transform_response(cls, data: dict[str, Any]) -> ExtractionResult:
        """Map a Mindee V2 inference onto the standard result.

        Raises:
            ExtractionError: INVALID_RESPONSE when the inference carries no fields
        """
        fields = ((data.get("inference") or {}).get("result") or {}).get("fields")
        if not isinstance(fields, dict):
            raise ExtractionError(ExtractionErrorType.INVALID_RESPONSE, "No fields data in response")

        line_items = []
        raw_items = (fields.get("line_items") or {}).get("items") or []
        for index, item in enumerate(raw_items):
            item = item if isinstance(item, dict) else {}
            item_fields = item.get("fields") or {}

            def value_of(name: str, default: Any) -> Any:
                return (item_fields.get(name) or {}).get("value") or default

            description = value_of("description", f"Item {index + 1}")
            quantity = _format_number(value_of("quantity", 1))
            unit_price = _format_number(value_of("unit_price", 0))
            total_price = _format_number(value_of("total_price", 0))
            line_items.append(
                {
                    "value": f"{description} ({quantity} × ${unit_price}) = ${total_price}",
                    "confidence": cls.validate_confidence(item.get("confidence"))
                    or DEFAULT_FIELD_CONFIDENCE,
                }
            )

        total = fields.get("total_amount") or {}
        total_value = total.get("value") if isinstance(total, dict) else None

        return cls.create_standard_result(
            {
                "supplier_name": cls._field(fields.get("supplier_name")),
                "invoice_number": cls._field(fields.get("invoice_number")),
                "invoice_date": cls._field(fields.get("date")),
                "total_amount": cls._field(
                    total, _format_number(total_value) if total_value is not None else None
                ),
                "line_items": line_items,
            }
        )

    async def test_connection(self) -> bool:
        """Call the enqueue endpoint; only an authentication failure counts as down."""
        try:
            response = await self._request("POST", self.enqueue_url, headers=self._headers())
        except ExtractionError as e:
            logger.error(f"Mindee connection test failed: {e.message}")
            return False
        if response.status_code == 401:
            logger.error("Mindee API key is invalid or revoked")
            return False
        return True
