"""Data models for accounting-field mapping.

Defines the scored field unit, the 21-field mapping result, audit entries,
the user-scoped lookup table rows, and the tagged union separating
schema-aware (direct) extractions from generic (derived) ones.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ledgerflow.extraction.schema import ACCOUNTING_FIELD_NAMES, ExtractedField
from ledgerflow.shared.config import Settings

Confidence = Annotated[float, Field(ge=0, le=1)]

# Fields holding numeric amounts; every other mapped field holds text
AMOUNT_FIELD_NAMES = frozenset({"invoice_gross_amount", "supplier_invoice_item_amount"})


class MappingSource(str, Enum):
    """Provenance of a mapped field value."""

    EXACT_MATCH = "exact_match"
    FUZZY_MATCH = "fuzzy_match"
    RULE_BASED = "rule_based"
    DEFAULT = "default"


class MappingField(BaseModel):
    """One mapped accounting value with its confidence, reasoning and provenance.

    A null value may carry a small nonzero confidence when it comes from a
    default; the reasoning string explains why. Amount fields hold numbers,
    every other field holds text.
    """

    value: str | float | None = None
    confidence: Confidence = 0.0
    reasoning: str = ""
    source: MappingSource = MappingSource.DEFAULT


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLogEntry(BaseModel):
    """Immutable record of one field decision.

    ``mapping_source`` is a MappingSource value or one of the augmentation
    markers ``vendor_rule`` and ``security_blocked``.
    """

    model_config = ConfigDict(frozen=True)

    field_name: str
    input_value: str | None = None
    output_value: str | None = None
    confidence_score: Confidence = 0.0
    reasoning: str = ""
    mapping_source: str
    timestamp: str = Field(default_factory=utc_now_iso)

    def to_record(self, document_id: str) -> dict[str, Any]:
        """Row shape persisted by the audit store."""
        return {"document_id": document_id, **self.model_dump()}


class AccountingMappingResult(BaseModel):
    """The 21 accounting fields plus review metadata."""

    company_code: MappingField = Field(default_factory=MappingField)
    supplier_invoice_transaction_type: MappingField = Field(default_factory=MappingField)
    invoicing_party: MappingField = Field(default_factory=MappingField)
    supplier_invoice_id_by_invcg_party: MappingField = Field(default_factory=MappingField)

    document_date: MappingField = Field(default_factory=MappingField)
    posting_date: MappingField = Field(default_factory=MappingField)

    accounting_document_type: MappingField = Field(default_factory=MappingField)
    accounting_document_header_text: MappingField = Field(default_factory=MappingField)
    document_currency: MappingField = Field(default_factory=MappingField)
    invoice_gross_amount: MappingField = Field(default_factory=MappingField)

    gl_account: MappingField = Field(default_factory=MappingField)
    supplier_invoice_item_text: MappingField = Field(default_factory=MappingField)
    debit_credit_code: MappingField = Field(default_factory=MappingField)
    supplier_invoice_item_amount: MappingField = Field(default_factory=MappingField)

    tax_code: MappingField = Field(default_factory=MappingField)
    tax_jurisdiction: MappingField = Field(default_factory=MappingField)

    assignment_reference: MappingField = Field(default_factory=MappingField)
    cost_center: MappingField = Field(default_factory=MappingField)
    profit_center: MappingField = Field(default_factory=MappingField)
    internal_order: MappingField = Field(default_factory=MappingField)
    wbs_element: MappingField = Field(default_factory=MappingField)

    overall_confidence: Confidence = 0.0
    requires_review: bool = True
    processing_notes: list[str] = Field(default_factory=list)
    audit_trail: list[AuditLogEntry] = Field(default_factory=list)

    def fields(self) -> dict[str, MappingField]:
        """The 21 mapped fields in export order."""
        return {name: getattr(self, name) for name in ACCOUNTING_FIELD_NAMES}


# Lookup tables (user-scoped, read-only for the engine)


class CompanyMapping(BaseModel):
    id: str
    user_id: str
    supplier_name: str
    company_code: str
    is_active: bool = True


class GLMapping(BaseModel):
    id: str
    user_id: str
    keywords: list[str]
    gl_account: str
    description: str | None = None
    department: str | None = None
    priority: int = 0
    is_active: bool = True


class CostCenterRule(BaseModel):
    id: str
    user_id: str
    rule_name: str
    supplier_pattern: str | None = None
    description_pattern: str | None = None
    cost_center: str
    priority: int = 0
    is_active: bool = True


class CompanyMatch(BaseModel):
    """Best company mapping candidate for a supplier name."""

    company_code: str
    matched_supplier: str
    confidence: Confidence


class GLMatch(BaseModel):
    """Best GL mapping candidate for a description."""

    gl_account: str
    matched_keywords: list[str]
    confidence: Confidence


class Vendor(BaseModel):
    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)


class MappingConfig(BaseModel):
    """Immutable mapping engine configuration."""

    model_config = ConfigDict(frozen=True)

    simple_mapping_mode: bool = False
    fuzzy_match_threshold: Confidence = 0.7
    default_currency: str = "USD"
    default_tax_code: str = "T1"
    confidence_threshold_for_auto_approve: Confidence = 0.8
    enable_audit_logging: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "MappingConfig":
        values: dict[str, Any] = {
            "simple_mapping_mode": settings.simple_mapping_mode,
            "fuzzy_match_threshold": settings.fuzzy_match_threshold,
            "default_currency": settings.default_currency,
            "default_tax_code": settings.default_tax_code,
            "confidence_threshold_for_auto_approve": settings.auto_approve_confidence_threshold,
            "enable_audit_logging": settings.audit_logging_enabled,
        }
        values.update(overrides)
        return cls(**values)


# Extraction variants


class RawExtraction(BaseModel):
    """Core fields as produced by a generic extractor, tolerant of gaps."""

    model_config = ConfigDict(extra="ignore")

    supplier_name: ExtractedField = Field(default_factory=ExtractedField)
    invoice_number: ExtractedField = Field(default_factory=ExtractedField)
    invoice_date: ExtractedField = Field(default_factory=ExtractedField)
    total_amount: ExtractedField = Field(default_factory=ExtractedField)
    line_items: list[ExtractedField] = Field(default_factory=list)
    currency: ExtractedField | None = None
    document_type: ExtractedField | None = None


class DirectExtraction(BaseModel):
    """Schema-aware extraction: the accounting fields come straight from the extractor."""

    kind: Literal["direct"] = "direct"
    accounting_fields: dict[str, ExtractedField]
    raw: RawExtraction = Field(default_factory=RawExtraction)
    reported_confidence: Confidence | None = None


class DerivedExtraction(BaseModel):
    """Generic extraction: accounting fields must be derived from the core values."""

    kind: Literal["derived"] = "derived"
    raw: RawExtraction = Field(default_factory=RawExtraction)


Extraction = Annotated[DirectExtraction | DerivedExtraction, Field(discriminator="kind")]


def _confidence(raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, int | float) or math.isnan(raw):
        return 0.0
    return max(0.0, min(1.0, float(raw)))


def _coerce_field(value: Any) -> ExtractedField:
    if isinstance(value, ExtractedField):
        return value
    if not isinstance(value, dict):
        return ExtractedField()
    raw_value = value.get("value")
    if isinstance(raw_value, bool) or not isinstance(raw_value, str | int | float):
        raw_value = None
    return ExtractedField(value=raw_value, confidence=_confidence(value.get("confidence")))


def _coerce_raw(data: dict[str, Any]) -> RawExtraction:
    items = data.get("line_items")
    return RawExtraction(
        supplier_name=_coerce_field(data.get("supplier_name")),
        invoice_number=_coerce_field(data.get("invoice_number")),
        invoice_date=_coerce_field(data.get("invoice_date")),
        total_amount=_coerce_field(data.get("total_amount")),
        line_items=[_coerce_field(item) for item in items] if isinstance(items, list) else [],
        currency=_coerce_field(data["currency"]) if data.get("currency") is not None else None,
        document_type=(
            _coerce_field(data["document_type"]) if data.get("document_type") is not None else None
        ),
    )


def classify_extraction(extracted_data: Any) -> DirectExtraction | DerivedExtraction:
    """Classify extractor output into the direct or derived variant.

    Accepts an ExtractionResult (or subclass), a plain dict, or anything else;
    malformed input yields an empty derived extraction rather than an error.
    """
    if isinstance(extracted_data, BaseModel):
        extracted_data = extracted_data.model_dump()
    if not isinstance(extracted_data, dict):
        return DerivedExtraction()

    raw = _coerce_raw(extracted_data)
    accounting_fields = extracted_data.get("accounting_fields")
    if not isinstance(accounting_fields, dict) or not accounting_fields:
        return DerivedExtraction(raw=raw)

    metadata = extracted_data.get("document_metadata")
    reported = metadata.get("overall_confidence") if isinstance(metadata, dict) else None
    return DirectExtraction(
        accounting_fields={
            name: _coerce_field(accounting_fields[name])
            for name in ACCOUNTING_FIELD_NAMES
            if accounting_fields.get(name) is not None
        },
        raw=raw,
        # A missing or zero report falls back to the recomputed mean
        reported_confidence=_confidence(reported) or None,
    )
