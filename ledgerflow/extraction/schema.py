"""Extraction data models shared by providers, the router and the mapping engine."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ledgerflow.extraction.errors import ExtractionError

FieldValue = str | int | float | None


class ExtractedField(BaseModel):
    """A single extracted value with the provider's confidence in it."""

    value: FieldValue = Field(None, description="Extracted value or None if not found")
    confidence: float = Field(0.0, ge=0, le=1, description="Provider confidence (0-1)")


class ExtractionResult(BaseModel):
    """Normalized output of any extraction provider.

    The five core fields are always present. Schema-aware providers also fill
    ``accounting_fields`` with the 21 accounting columns, which lets the mapping
    engine copy them through instead of deriving them.
    """

    supplier_name: ExtractedField = Field(default_factory=ExtractedField)
    invoice_number: ExtractedField = Field(default_factory=ExtractedField)
    invoice_date: ExtractedField = Field(default_factory=ExtractedField)
    total_amount: ExtractedField = Field(default_factory=ExtractedField)
    line_items: list[ExtractedField] = Field(default_factory=list)

    currency: ExtractedField | None = None
    document_type: ExtractedField | None = None

    # Schema-aware extraction
    accounting_fields: dict[str, ExtractedField] | None = None
    justification_report: str | None = None
    document_metadata: dict[str, Any] | None = None
    validation_flags: dict[str, Any] | None = None


class ExtractionAttempt(BaseModel):
    """Outcome of one provider call, successful or not.

    Attributes:
        provider: Registry name of the provider that was called
        result: Normalized extraction when the call succeeded
        error: Typed failure when the call did not succeed
        cost: Spend incurred by this attempt in USD
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider: str
    result: ExtractionResult | None = None
    error: ExtractionError | None = None
    cost: float = 0.0

    @property
    def success(self) -> bool:
        return self.result is not None and self.error is None


class RouterResult(ExtractionResult):
    """Extraction result annotated with how the router produced it."""

    extraction_method: str
    total_cost: float
    services_used: list[str]
    fallback_occurred: bool
    decision_log: list[str]


# The 21 accounting columns a mapped document carries, in export order
ACCOUNTING_FIELD_NAMES: tuple[str, ...] = (
    "company_code",
    "supplier_invoice_transaction_type",
    "invoicing_party",
    "supplier_invoice_id_by_invcg_party",
    "document_date",
    "posting_date",
    "accounting_document_type",
    "accounting_document_header_text",
    "document_currency",
    "invoice_gross_amount",
    "gl_account",
    "supplier_invoice_item_text",
    "debit_credit_code",
    "supplier_invoice_item_amount",
    "tax_code",
    "tax_jurisdiction",
    "assignment_reference",
    "cost_center",
    "profit_center",
    "internal_order",
    "wbs_element",
)


class VendorExtractionRule(BaseModel):
    """User-authored instruction attached to a known vendor."""

    id: str
    vendor_id: str
    rule_type: Literal["extraction_hint", "cost_center_hint", "validation_rule"]
    instruction: str
    is_active: bool = True
