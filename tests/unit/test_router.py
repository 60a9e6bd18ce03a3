"""Unit tests for the extraction router.

Tests cover:
- Primary provider selection by file type and service mode
- Confidence-based fallback in auto mode only
- Composite error when both providers fail
- Cost accumulation, services used and the decision log
"""

import asyncio

import pytest

from ledgerflow.extraction.base import ExtractionProvider
from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType
from ledgerflow.extraction.registry import ProviderRegistry
from ledgerflow.extraction.router import (
    ExtractionRouter,
    RouterConfig,
    decide_fallback,
)
from ledgerflow.extraction.schema import (
    ExtractedField,
    ExtractionAttempt,
    ExtractionResult,
    VendorExtractionRule,
)
from ledgerflow.shared.config import Settings

PDF_URL = "https://files.example.com/invoice.pdf"
PNG_URL = "https://files.example.com/receipt.png"


def make_result(supplier: float = 0.95, total: float = 0.95, date: float = 0.9, **values) -> ExtractionResult:
    return ExtractionResult(
        supplier_name=ExtractedField(value=values.get("supplier_value", "Acme Corp"), confidence=supplier),
        invoice_number=ExtractedField(value="INV-1", confidence=0.9),
        invoice_date=ExtractedField(value="2024-01-15", confidence=date),
        total_amount=ExtractedField(value=values.get("total_value", "100.00"), confidence=total),
    )


class ScriptedProvider(ExtractionProvider):
    """Provider returning a scripted result or error."""

    def __init__(
        self,
        name: str,
        result: ExtractionResult | None = None,
        error: ExtractionError | None = None,
        cost: float = 0.0,
    ) -> None:
        super().__init__(Settings(_env_file=None))
        self._name = name
        self.result = result
        self.error = error
        self.call_cost = cost
        self.calls: list[tuple[str, list[VendorExtractionRule] | None]] = []

    @property
    def provider_name(self) -> str:
        return self._name

    def get_name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    async def test_connection(self) -> bool:
        return self.error is None

    async def _extract(self, file_url, vendor_rules=None) -> ExtractionResult:
        self.calls.append((file_url, vendor_rules))
        self._charge(self.call_cost)
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def failure(message: str = "boom") -> ExtractionError:
    return ExtractionError(ExtractionErrorType.API_ERROR, message)


def make_router(service: str = "auto", threshold: float = 0.7, simple: bool = False, **providers):
    registry = ProviderRegistry()
    for name in ("openai-vision", "openai-files", "openai-accounting", "mindee"):
        provider = providers.get(name.replace("-", "_")) or ScriptedProvider(name, result=make_result())
        registry.add(provider)
    config = RouterConfig(service=service, confidence_threshold=threshold, simple_mapping_mode=simple)
    return ExtractionRouter(registry, config), registry


class TestDecideFallback:
    """Tests for the fallback decision."""

    def test_explicit_mode_never_falls_back(self) -> None:
        attempt = ExtractionAttempt(provider="mindee", error=failure())

        decision = decide_fallback(attempt, "mindee", 0.7)

        assert decision.fallback is False

    def test_failed_primary_falls_back(self) -> None:
        attempt = ExtractionAttempt(provider="mindee", error=failure("quota"))

        decision = decide_fallback(attempt, "auto", 0.7)

        assert decision.fallback is True
        assert "Primary service mindee failed: quota" == decision.reason

    def test_low_confidence_key_field(self) -> None:
        attempt = ExtractionAttempt(provider="mindee", result=make_result(date=0.5))

        decision = decide_fallback(attempt, "auto", 0.7)

        assert decision.fallback is True
        assert "Low confidence detected in 1 key fields (threshold: 0.7)" == decision.reason

    def test_confidence_at_threshold_is_enough(self) -> None:
        attempt = ExtractionAttempt(provider="mindee", result=make_result(0.7, 0.7, 0.7))

        assert decide_fallback(attempt, "auto", 0.7).fallback is False

    def test_missing_critical_value(self) -> None:
        attempt = ExtractionAttempt(provider="mindee", result=make_result(total_value=None))

        decision = decide_fallback(attempt, "auto", 0.7)

        assert decision.fallback is True
        assert decision.reason == "Missing critical fields: 1"


class TestPrimarySelection:
    """Tests for routing by file type and mode."""

    @pytest.mark.asyncio
    async def test_auto_routes_images_to_openai_vision(self) -> None:
        router, registry = make_router()

        result = await router.extract(PNG_URL)

        assert result.services_used == ["openai-vision"]
        assert result.fallback_occurred is False
        assert any("routing to OpenAI" in line for line in result.decision_log)

    @pytest.mark.asyncio
    async def test_auto_routes_pdfs_to_mindee(self) -> None:
        router, _ = make_router()

        result = await router.extract(PDF_URL)

        assert result.services_used == ["mindee"]
        assert result.extraction_method == "mindee"

    @pytest.mark.asyncio
    async def test_explicit_openai_pdf_uses_files_provider(self) -> None:
        router, _ = make_router(service="openai")

        result = await router.extract(PDF_URL)

        assert result.services_used == ["openai-files"]

    @pytest.mark.asyncio
    async def test_simple_mode_pdf_uses_accounting_provider_with_rules(self) -> None:
        accounting = ScriptedProvider("openai-accounting", result=make_result())
        router, _ = make_router(service="openai", simple=True, openai_accounting=accounting)
        rules = [VendorExtractionRule(id="r", vendor_id="v", rule_type="extraction_hint", instruction="x")]

        result = await router.extract(PDF_URL, vendor_rules=rules)

        assert result.services_used == ["openai-accounting"]
        assert accounting.calls == [(PDF_URL, rules)]


class TestFallback:
    """Tests for the single fallback in auto mode."""

    @pytest.mark.asyncio
    async def test_low_confidence_triggers_fallback(self) -> None:
        mindee = ScriptedProvider("mindee", result=make_result(supplier=0.4), cost=0.035)
        files = ScriptedProvider("openai-files", result=make_result(), cost=0.02)
        router, _ = make_router(mindee=mindee, openai_files=files)

        result = await router.extract(PDF_URL)

        assert result.fallback_occurred is True
        assert result.services_used == ["mindee", "openai-files"]
        assert result.extraction_method == "mindee → openai-files"
        assert result.total_cost == pytest.approx(0.055)
        assert router.get_cost() == pytest.approx(0.055)
        assert any("Fallback triggered - using openai" in line for line in result.decision_log)

    @pytest.mark.asyncio
    async def test_fallback_result_is_returned_even_if_weak(self) -> None:
        """Exactly one fallback: a weak second result is still returned."""
        mindee = ScriptedProvider("mindee", result=make_result(total=0.2))
        files = ScriptedProvider("openai-files", result=make_result(total=0.3, supplier_value="Second"))
        router, _ = make_router(mindee=mindee, openai_files=files)

        result = await router.extract(PDF_URL)

        assert result.supplier_name.value == "Second"
        assert len(mindee.calls) == 1
        assert len(files.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_primary_falls_back(self) -> None:
        vision = ScriptedProvider("openai-vision", error=failure("vision down"))
        mindee = ScriptedProvider("mindee", result=make_result(supplier_value="From Mindee"), cost=0.035)
        router, _ = make_router(openai_vision=vision, mindee=mindee)

        result = await router.extract(PNG_URL)

        assert result.supplier_name.value == "From Mindee"
        assert result.services_used == ["openai-vision", "mindee"]

    @pytest.mark.asyncio
    async def test_both_failures_raise_composite_error(self) -> None:
        mindee_error = failure("mindee down")
        files_error = ExtractionError(ExtractionErrorType.TIMEOUT, "timed out")
        router, _ = make_router(
            mindee=ScriptedProvider("mindee", error=mindee_error),
            openai_files=ScriptedProvider("openai-files", error=files_error),
        )

        with pytest.raises(ExtractionError) as exc_info:
            await router.extract(PDF_URL)

        error = exc_info.value
        assert error.type == ExtractionErrorType.API_ERROR
        assert error.message == "Both mindee and openai services failed"
        assert error.original_error == [mindee_error, files_error]

    @pytest.mark.asyncio
    async def test_explicit_mode_reraises_primary_error(self) -> None:
        mindee_error = ExtractionError(ExtractionErrorType.AUTHENTICATION_ERROR, "bad key")
        files = ScriptedProvider("openai-files", result=make_result())
        router, _ = make_router(
            service="mindee", mindee=ScriptedProvider("mindee", error=mindee_error), openai_files=files
        )

        with pytest.raises(ExtractionError) as exc_info:
            await router.extract(PDF_URL)

        assert exc_info.value is mindee_error
        assert files.calls == []

    @pytest.mark.asyncio
    async def test_explicit_mode_keeps_low_confidence_result(self) -> None:
        router, _ = make_router(
            service="mindee", mindee=ScriptedProvider("mindee", result=make_result(supplier=0.1))
        )

        result = await router.extract(PDF_URL)

        assert result.fallback_occurred is False
        assert result.supplier_name.confidence == 0.1


class TestRouterState:
    """Tests for per-call state and introspection."""

    @pytest.mark.asyncio
    async def test_concurrent_documents_keep_separate_trails(self) -> None:
        router, _ = make_router()

        first, second = await asyncio.gather(router.extract(PDF_URL), router.extract(PNG_URL))

        assert first.services_used == ["mindee"]
        assert second.services_used == ["openai-vision"]
        assert not any("openai-vision" in line for line in first.decision_log)
        assert not any("mindee" in line for line in second.decision_log)

    @pytest.mark.asyncio
    async def test_connection_any_provider(self) -> None:
        router, _ = make_router(
            mindee=ScriptedProvider("mindee", error=failure()),
        )

        assert await router.test_connection() is True

    def test_configuration(self) -> None:
        router, _ = make_router(service="openai", threshold=0.8)

        config = router.get_configuration()

        assert config["service_config"] == "openai"
        assert config["confidence_threshold"] == 0.8
        assert set(config["available_services"]) == {
            "openai-vision",
            "openai-files",
            "openai-accounting",
            "mindee",
        }
        assert router.get_name() == "Extraction Router (openai)"
