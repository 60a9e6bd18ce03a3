"""Unit tests for the extraction provider base class.

Tests cover:
- Abstract base class enforcement
- Validation discipline for confidences, fields and line items
- JSON parsing of LLM responses
- Error taxonomy for HTTP statuses and transport failures
- extract() reporting outcomes as ExtractionAttempt values
"""

import math

import httpx
import pytest

from ledgerflow.extraction.base import ExtractionProvider
from ledgerflow.extraction.errors import (
    ExtractionError,
    ExtractionErrorType,
    error_for_status,
)
from ledgerflow.extraction.schema import ExtractionResult, VendorExtractionRule
from ledgerflow.shared.config import Settings


class StubProvider(ExtractionProvider):
    """Provider returning a canned payload or raising a canned error."""

    def __init__(self, settings: Settings, payload=None, error: Exception | None = None, **kwargs):
        super().__init__(settings, **kwargs)
        self.payload = payload
        self.error = error
        self.seen_rules: list[VendorExtractionRule] | None = None

    @property
    def provider_name(self) -> str:
        return "stub"

    def get_name(self) -> str:
        return "Stub Provider"

    def is_available(self) -> bool:
        return True

    async def test_connection(self) -> bool:
        return True

    async def _extract(self, file_url, vendor_rules=None) -> ExtractionResult:
        self.seen_rules = vendor_rules
        self._charge(0.01)
        if self.error:
            raise self.error
        return self.create_standard_result(self.payload)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


def test_extraction_provider_is_abstract(settings: Settings) -> None:
    """Test that ExtractionProvider cannot be instantiated directly."""
    with pytest.raises(TypeError, match="Can't instantiate abstract class"):
        ExtractionProvider(settings)  # type: ignore[abstract]


def test_extraction_provider_requires_implementation(settings: Settings) -> None:
    """Test that concrete providers must implement all abstract methods."""

    class IncompleteProvider(ExtractionProvider):
        def is_available(self) -> bool:
            return True

        # Missing: provider_name, get_name, test_connection, _extract

    with pytest.raises(TypeError, match="Can't instantiate abstract class"):
        IncompleteProvider(settings)  # type: ignore[abstract]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.85, 0.85),
        (1, 1.0),
        (1.7, 1.0),
        (-0.2, 0.0),
        ("0.9", 0.0),
        (None, 0.0),
        (True, 0.0),
        (math.nan, 0.0),
    ],
)
def test_validate_confidence(raw: object, expected: float) -> None:
    """Test that confidences are clamped and non-numbers become 0.0."""
    assert ExtractionProvider.validate_confidence(raw) == expected


def test_validate_field_malformed_inputs() -> None:
    """Test that malformed fields become null-valued entries."""
    assert ExtractionProvider.validate_field(None).value is None
    assert ExtractionProvider.validate_field("Acme").confidence == 0.0

    field = ExtractionProvider.validate_field({"value": "   ", "confidence": 0.9})
    assert field.value is None
    assert field.confidence == 0.9

    field = ExtractionProvider.validate_field({"value": {"nested": 1}, "confidence": 2})
    assert field.value is None
    assert field.confidence == 1.0


def test_validate_line_items_keeps_malformed_entries() -> None:
    """Test that malformed line items are kept as null fields, not dropped."""
    items = ExtractionProvider.validate_line_items(
        [{"value": "Paper", "confidence": 0.9}, "garbage", {"confidence": 0.5}]
    )

    assert len(items) == 3
    assert items[0].value == "Paper"
    assert items[1].value is None
    assert items[1].confidence == 0.0
    assert items[2].value is None

    assert ExtractionProvider.validate_line_items("not a list") == []


def test_create_standard_result_from_partial_payload() -> None:
    """Test that every core field is present even when the payload lacks it."""
    result = ExtractionProvider.create_standard_result(
        {"supplier_name": {"value": "Acme Corp", "confidence": 0.95}, "currency": {"value": "EUR"}}
    )

    assert result.supplier_name.value == "Acme Corp"
    assert result.invoice_number.value is None
    assert result.total_amount.confidence == 0.0
    assert result.line_items == []
    assert result.currency is not None
    assert result.currency.value == "EUR"
    assert result.document_type is None


def test_create_standard_result_from_non_dict() -> None:
    """Test that a non-dict payload yields an empty result."""
    result = ExtractionProvider.create_standard_result(["unexpected"])

    assert result.supplier_name.value is None
    assert result.accounting_fields is None


def test_parse_json_content_handles_code_fences() -> None:
    """Test that JSON is found inside markdown code blocks and prose."""
    fenced = 'Here you go:\n```json\n{"supplier_name": {"value": "Acme"}}\n```'
    prose = 'The result is {"total_amount": {"value": "10.00"}} as requested.'

    assert ExtractionProvider.parse_json_content(fenced)["supplier_name"]["value"] == "Acme"
    assert ExtractionProvider.parse_json_content(prose)["total_amount"]["value"] == "10.00"


def test_parse_json_content_invalid() -> None:
    """Test that unparseable content raises INVALID_RESPONSE."""
    with pytest.raises(ExtractionError) as exc_info:
        ExtractionProvider.parse_json_content("no json here")

    assert exc_info.value.type == ExtractionErrorType.INVALID_RESPONSE


@pytest.mark.parametrize("url", ["", "ftp://host/file.pdf", "not a url", "https://"])
def test_validate_url_rejects_invalid(url: str) -> None:
    """Test that empty and non-HTTP(S) URLs are rejected."""
    with pytest.raises(ExtractionError) as exc_info:
        ExtractionProvider.validate_url(url)

    assert exc_info.value.type == ExtractionErrorType.INVALID_RESPONSE


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (401, ExtractionErrorType.AUTHENTICATION_ERROR),
        (402, ExtractionErrorType.QUOTA_EXCEEDED),
        (413, ExtractionErrorType.FILE_TOO_LARGE),
        (415, ExtractionErrorType.UNSUPPORTED_FORMAT),
        (429, ExtractionErrorType.RATE_LIMIT_EXCEEDED),
        (500, ExtractionErrorType.API_ERROR),
    ],
)
def test_error_for_status(status: int, error_type: ExtractionErrorType) -> None:
    """Test the fixed HTTP status table."""
    error = error_for_status(status, "Reason", body="body")

    assert error.type == error_type
    assert error.original_error == "body"


def test_generic_status_message_includes_code() -> None:
    """Test that unmapped statuses name the status code."""
    assert error_for_status(503, "Service Unavailable").message == "API error: 503 Service Unavailable"


def test_retryable_error_kinds() -> None:
    """Test that only transient kinds are retryable."""
    assert ExtractionErrorType.RATE_LIMIT_EXCEEDED.retryable is True
    assert ExtractionErrorType.TIMEOUT.retryable is True
    assert ExtractionErrorType.AUTHENTICATION_ERROR.retryable is False
    assert ExtractionError(ExtractionErrorType.CONFIGURATION_ERROR, "x").retryable is False


def test_error_to_dict_expands_nested_errors() -> None:
    """Test that composite errors serialize both underlying failures."""
    first = ExtractionError(ExtractionErrorType.TIMEOUT, "timed out")
    second = ExtractionError(ExtractionErrorType.AUTHENTICATION_ERROR, "bad key")
    error = ExtractionError(ExtractionErrorType.API_ERROR, "Both failed", [first, second])

    data = error.to_dict()

    assert data["type"] == "API_ERROR"
    assert [e["type"] for e in data["original_error"]] == ["TIMEOUT", "AUTHENTICATION_ERROR"]


@pytest.mark.asyncio
async def test_extract_success_returns_attempt(settings: Settings) -> None:
    """Test that a successful extraction is reported with its cost."""
    rules = [VendorExtractionRule(id="r1", vendor_id="v1", rule_type="extraction_hint", instruction="x")]
    provider = StubProvider(settings, payload={"supplier_name": {"value": "Acme", "confidence": 0.9}})

    attempt = await provider.extract("https://files.example.com/a.pdf", vendor_rules=rules)

    assert attempt.success is True
    assert attempt.provider == "stub"
    assert attempt.result is not None
    assert attempt.result.supplier_name.value == "Acme"
    assert attempt.cost == 0.01
    assert provider.get_cost() == 0.01
    assert provider.seen_rules == rules


@pytest.mark.asyncio
async def test_extract_typed_error_returns_failed_attempt(settings: Settings) -> None:
    """Test that a typed error becomes a failed attempt instead of raising."""
    error = ExtractionError(ExtractionErrorType.QUOTA_EXCEEDED, "API quota exceeded")
    provider = StubProvider(settings, error=error)

    attempt = await provider.extract("https://files.example.com/a.pdf")

    assert attempt.success is False
    assert attempt.error is error
    assert attempt.result is None
    assert attempt.cost == 0.01


@pytest.mark.asyncio
async def test_extract_unexpected_error_is_wrapped(settings: Settings) -> None:
    """Test that unexpected exceptions are wrapped as NETWORK_ERROR."""
    provider = StubProvider(settings, error=RuntimeError("boom"))

    attempt = await provider.extract("https://files.example.com/a.pdf")

    assert attempt.success is False
    assert attempt.error is not None
    assert attempt.error.type == ExtractionErrorType.NETWORK_ERROR
    assert "boom" in attempt.error.message


@pytest.mark.asyncio
async def test_request_timeout_maps_to_timeout(settings: Settings) -> None:
    """Test that transport timeouts become TIMEOUT errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = StubProvider(settings, http_client=client)

    with pytest.raises(ExtractionError) as exc_info:
        await provider._request("GET", "https://files.example.com/a.pdf")

    assert exc_info.value.type == ExtractionErrorType.TIMEOUT
    await provider.aclose()


@pytest.mark.asyncio
async def test_download_inaccessible_file(settings: Settings) -> None:
    """Test that a non-success download is INVALID_RESPONSE."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    provider = StubProvider(settings, http_client=client)

    with pytest.raises(ExtractionError) as exc_info:
        await provider._download("https://files.example.com/missing.pdf")

    assert exc_info.value.type == ExtractionErrorType.INVALID_RESPONSE
    assert "404" in exc_info.value.message
    await provider.aclose()
