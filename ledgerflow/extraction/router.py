"""Extraction router: provider selection, confidence-based fallback, cost and trail.

In ``auto`` mode the primary provider is chosen by file type (images to the
vision provider, everything else to Mindee) and a single fallback to the other
provider happens when the primary failed or returned weak key fields. Explicit
``openai`` or ``mindee`` mode never falls back. At most two provider attempts
run per document, strictly one after the other.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType
from ledgerflow.extraction.registry import (
    ProviderPreference,
    ProviderRegistry,
    file_extension,
    file_kind_for,
)
from ledgerflow.extraction.schema import (
    ExtractionAttempt,
    ExtractionResult,
    RouterResult,
    VendorExtractionRule,
)
from ledgerflow.shared import metrics
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)

ServiceMode = Literal["openai", "mindee", "auto"]


class RouterConfig(BaseModel):
    """Immutable router configuration."""

    model_config = ConfigDict(frozen=True)

    service: ServiceMode = "auto"
    confidence_threshold: float = Field(0.7, ge=0, le=1)
    simple_mapping_mode: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RouterConfig":
        return cls(
            service=settings.extraction_service,
            confidence_threshold=settings.extraction_confidence_threshold,
            simple_mapping_mode=settings.simple_mapping_mode,
        )


@dataclass(frozen=True)
class FallbackDecision:
    fallback: bool
    reason: str


def decide_fallback(
    attempt: ExtractionAttempt, mode: ServiceMode, threshold: float
) -> FallbackDecision:
    """Decide whether a primary attempt warrants trying the other provider.

    Only ``auto`` mode falls back. It does so when the attempt failed, when any
    of supplier name, total amount or invoice date is below the confidence
    threshold, or when supplier name or total amount has no value.
    """
    if mode != "auto":
        return FallbackDecision(False, f"Fallback disabled for explicit service '{mode}'")

    if not attempt.success or attempt.result is None:
        message = attempt.error.message if attempt.error else "no result"
        return FallbackDecision(True, f"Primary service {attempt.provider} failed: {message}")

    result = attempt.result
    key_fields = (result.supplier_name, result.total_amount, result.invoice_date)
    low_confidence = [f for f in key_fields if f.confidence < threshold]
    if low_confidence:
        return FallbackDecision(
            True,
            f"Low confidence detected in {len(low_confidence)} key fields (threshold: {threshold})",
        )

    missing = [f for f in (result.supplier_name, result.total_amount) if f.value is None]
    if missing:
        return FallbackDecision(True, f"Missing critical fields: {len(missing)}")

    return FallbackDecision(False, "Key fields meet confidence threshold")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class _Trail:
    """Per-call bookkeeping; one instance per extract() call."""

    decision_log: list[str] = field(default_factory=list)
    services_used: list[str] = field(default_factory=list)
    total_cost: float = 0.0

    def log(self, message: str) -> None:
        self.decision_log.append(f"[{_timestamp()}] {message}")
        logger.info(f"Extraction Router: {message}")


class ExtractionRouter:
    """Routes a document to a provider and falls back once when needed.

    Holds no per-document state, so one router can serve concurrent documents.
    """

    def __init__(self, registry: ProviderRegistry, config: RouterConfig | None = None) -> None:
        self.registry = registry
        self.config = config or RouterConfig()
        self._last_cost = 0.0
        logger.info(
            f"Extraction Router initialized with service='{self.config.service}', "
            f"threshold={self.config.confidence_threshold}"
        )

    def primary_preference(self, file_url: str, trail: _Trail | None = None) -> ProviderPreference:
        """Provider family tried first for a file."""
        if self.config.service != "auto":
            return self.config.service

        extension = file_extension(file_url)
        if file_kind_for(file_url) == "image":
            if trail:
                trail.log(
                    f"File type '{extension}' is supported by OpenAI Vision API - routing to OpenAI"
                )
            return "openai"
        if trail:
            trail.log(
                f"File type '{extension}' is not supported by OpenAI Vision API - routing to Mindee"
            )
        return "mindee"

    @staticmethod
    def fallback_preference(primary: ProviderPreference) -> ProviderPreference:
        return "mindee" if primary == "openai" else "openai"

    async def _attempt(
        self,
        preference: ProviderPreference,
        file_url: str,
        vendor_rules: list[VendorExtractionRule] | None,
        trail: _Trail,
    ) -> ExtractionAttempt:
        try:
            provider = self.registry.resolve(
                file_kind_for(file_url), preference, self.config.simple_mapping_mode
            )
        except ExtractionError as e:
            trail.log(f"{preference} extraction failed: {e.message}")
            return ExtractionAttempt(provider=preference, error=e)

        trail.log(f"Attempting extraction with {provider.provider_name}")
        attempt = await provider.extract(file_url, vendor_rules=vendor_rules)

        trail.services_used.append(attempt.provider)
        trail.total_cost += attempt.cost

        if attempt.success and attempt.result is not None:
            result = attempt.result
            trail.log(f"{attempt.provider} extraction successful - Cost: ${attempt.cost:.4f}")
            trail.log(
                f"Confidence scores - supplier: {result.supplier_name.confidence}, "
                f"total: {result.total_amount.confidence}, date: {result.invoice_date.confidence}"
            )
        else:
            message = attempt.error.message if attempt.error else "Unknown error"
            trail.log(f"{attempt.provider} extraction failed: {message}")
        return attempt

    async def extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> RouterResult:
        """Extract a document, falling back once in auto mode.

        Args:
            file_url: URL of the document to process
            vendor_rules: Vendor instructions forwarded to schema-aware providers

        Returns:
            RouterResult with the extraction and its routing metadata

        Raises:
            ExtractionError: The primary's error in explicit mode, or an
                API_ERROR naming both providers when the fallback also failed
        """
        trail = _Trail()
        trail.log(f"Starting extraction with service config: {self.config.service}")

        primary = self.primary_preference(file_url, trail)
        trail.log(f"Primary service determined: {primary}")

        attempt = await self._attempt(primary, file_url, vendor_rules, trail)
        decision = decide_fallback(attempt, self.config.service, self.config.confidence_threshold)
        fallback_occurred = False

        if decision.fallback:
            trail.log(decision.reason)
            fallback = self.fallback_preference(primary)
            trail.log(f"Fallback triggered - using {fallback}")
            metrics.extraction_fallbacks_total.labels(primary=primary, fallback=fallback).inc()
            fallback_occurred = True

            primary_attempt = attempt
            attempt = await self._attempt(fallback, file_url, vendor_rules, trail)
            if not attempt.success:
                trail.log(f"Fallback service {fallback} also failed")
                self._last_cost = trail.total_cost
                raise ExtractionError(
                    ExtractionErrorType.API_ERROR,
                    f"Both {primary} and {fallback} services failed",
                    [primary_attempt.error, attempt.error],
                )
        elif not attempt.success:
            self._last_cost = trail.total_cost
            if attempt.error is not None:
                raise attempt.error
            raise ExtractionError(ExtractionErrorType.API_ERROR, "Extraction router failed")

        self._last_cost = trail.total_cost
        return self._build_result(attempt.result, trail, fallback_occurred)

    @staticmethod
    def _build_result(
        result: ExtractionResult | None, trail: _Trail, fallback_occurred: bool
    ) -> RouterResult:
        base: dict[str, Any] = result.model_dump() if result is not None else {}
        router_result = RouterResult(
            **base,
            extraction_method=" → ".join(trail.services_used),
            total_cost=trail.total_cost,
            services_used=list(trail.services_used),
            fallback_occurred=fallback_occurred,
            decision_log=list(trail.decision_log),
        )
        logger.info(
            f"Extraction Router: completed with {router_result.extraction_method}, "
            f"total cost ${router_result.total_cost:.4f}"
        )
        return router_result

    def get_name(self) -> str:
        return f"Extraction Router ({self.config.service})"

    def get_cost(self) -> float:
        """Total spend of the most recently completed extract() call."""
        return self._last_cost

    async def test_connection(self) -> bool:
        """True when at least one provider is reachable."""
        results = {}
        for provider in self.registry.providers():
            try:
                results[provider.provider_name] = await provider.test_connection()
            except Exception:
                logger.exception(f"Connection test for {provider.provider_name} raised")
                results[provider.provider_name] = False

        logger.info(f"Extraction Router: connection status {results}")
        connected = any(results.values())
        if not connected:
            logger.error("Extraction Router: No services are available")
        return connected

    def get_configuration(self) -> dict[str, Any]:
        return {
            "service_config": self.config.service,
            "confidence_threshold": self.config.confidence_threshold,
            "simple_mapping_mode": self.config.simple_mapping_mode,
            "available_services": self.registry.available(),
        }
