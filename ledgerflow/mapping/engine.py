"""Business logic engine mapping extracted fields onto the 21 accounting fields.

Three processing paths:

- Direct: the extractor was schema-aware, so its accounting fields are copied
  through as exact matches.
- Legacy simple: simple mapping mode without accounting fields; fixed
  high-confidence defaults around the five core values.
- Derived: each field is resolved from lookup tables, heuristics and defaults.

Every field decision produces an audit entry. ``process_document`` never
raises: any failure becomes an all-null result flagged for review.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from ledgerflow.audit.store import AuditTrailStore
from ledgerflow.extraction.schema import ACCOUNTING_FIELD_NAMES, ExtractedField
from ledgerflow.mapping.repository import MappingRepository
from ledgerflow.mapping.schema import (
    AMOUNT_FIELD_NAMES,
    AccountingMappingResult,
    AuditLogEntry,
    DirectExtraction,
    MappingConfig,
    MappingField,
    MappingSource,
    RawExtraction,
    classify_extraction,
)
from ledgerflow.shared import metrics
from ledgerflow.shared.sanitizer import PromptSanitizer

logger = logging.getLogger(__name__)

# Amount bands for the GL fallback
LARGE_EXPENSE_THRESHOLD = 10000
SMALL_EXPENSE_THRESHOLD = 100
DEFAULT_GL_ACCOUNT = "6000"
LARGE_EXPENSE_GL_ACCOUNT = "7000"
SMALL_EXPENSE_GL_ACCOUNT = "6100"

DEFAULT_COST_CENTER = "CC-1000"
UNASSIGNED = "NEEDS_ASSIGNMENT"

COST_CENTER_HINT = re.compile(r"Cost Center\s*(\w+)", re.IGNORECASE)

# document type keyword -> (transaction type, confidence, reasoning)
TRANSACTION_TYPES: dict[str, tuple[str, float, str]] = {
    "invoice": ("RE", 0.95, "Standard vendor invoice transaction type"),
    "receipt": ("RE", 0.9, "Receipt mapped to vendor invoice transaction type"),
    "bill": ("RE", 0.9, "Bill mapped to vendor invoice transaction type"),
    "credit": ("KR", 0.95, "Credit note transaction type"),
    "debit": ("DR", 0.95, "Debit note transaction type"),
}


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _text(field: ExtractedField | None) -> str:
    if field is None or field.value is None:
        return ""
    return str(field.value).strip()


def parse_amount(value: Any) -> float | None:
    """Parse an extracted amount such as 1250, "1250.00" or "$1,250.00"."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int | float):
        return float(value)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _direct_value(name: str, value: Any) -> str | float | None:
    """Normalize a directly extracted value: numbers for amounts, text otherwise."""
    if value is None:
        return None
    if name in AMOUNT_FIELD_NAMES:
        amount = parse_amount(value)
        return amount if amount is not None else str(value)
    return str(value)


def _audit_value(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def create_audit_entry(field_name: str, input_value: Any, field: MappingField) -> AuditLogEntry:
    return AuditLogEntry(
        field_name=field_name,
        input_value=_audit_value(input_value),
        output_value=_audit_value(field.value),
        confidence_score=field.confidence,
        reasoning=field.reasoning,
        mapping_source=field.source.value,
    )


class BusinessLogicEngine:
    """Maps extraction results onto scored accounting fields.

    Args:
        repository: Lookup tables (company, GL, cost center, vendors)
        config: Immutable engine configuration
        audit_store: Optional persistence for audit trails
        sanitizer: Validator for values taken from vendor rules
    """

    def __init__(
        self,
        repository: MappingRepository,
        config: MappingConfig | None = None,
        audit_store: AuditTrailStore | None = None,
        sanitizer: PromptSanitizer | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or MappingConfig()
        self.audit_store = audit_store
        self.sanitizer = sanitizer or PromptSanitizer()
        if self.config.simple_mapping_mode:
            logger.info("Business Logic Engine: simple mapping mode enabled")

    # Field resolvers

    async def map_company_code(self, supplier_name: str, user_id: str) -> MappingField:
        """Resolve a supplier name to a company code through the company mapping table."""
        try:
            match = await self.repository.find_company_mapping(supplier_name, user_id)
        except Exception as e:
            logger.error(f"Error in map_company_code: {e}")
            return MappingField(
                value=None,
                confidence=0.0,
                reasoning=f"Error mapping company code: {e}",
                source=MappingSource.DEFAULT,
            )

        if match is None:
            return MappingField(
                value=None,
                confidence=0.0,
                reasoning=(
                    f'No company mapping found for supplier "{supplier_name}". '
                    "Consider adding a mapping rule."
                ),
                source=MappingSource.DEFAULT,
            )

        return MappingField(
            value=match.company_code,
            confidence=match.confidence,
            reasoning=(
                f'Fuzzy matched "{supplier_name}" to "{match.matched_supplier}" '
                f"with {round(match.confidence * 100)}% confidence"
            ),
            source=MappingSource.EXACT_MATCH if match.confidence >= 0.9 else MappingSource.FUZZY_MATCH,
        )

    async def assign_gl_account(
        self, description: str, amount: float, user_id: str
    ) -> MappingField:
        """Assign a GL account by keyword mapping, falling back to amount bands."""
        try:
            match = await self.repository.find_gl_mapping(description, user_id)
        except Exception as e:
            logger.error(f"Error in assign_gl_account: {e}")
            return MappingField(
                value=DEFAULT_GL_ACCOUNT,
                confidence=0.1,
                reasoning=f"Error assigning GL account, used default: {e}",
                source=MappingSource.DEFAULT,
            )

        if match is not None:
            return MappingField(
                value=match.gl_account,
                confidence=match.confidence,
                reasoning=(
                    f"Matched keywords [{', '.join(match.matched_keywords)}] in description "
                    f'"{description}" to GL account {match.gl_account}'
                ),
                source=MappingSource.RULE_BASED,
            )

        if amount > LARGE_EXPENSE_THRESHOLD:
            value, reasoning = LARGE_EXPENSE_GL_ACCOUNT, "Applied GL account for large expenses (>$10,000)"
        elif amount < SMALL_EXPENSE_THRESHOLD:
            value, reasoning = SMALL_EXPENSE_GL_ACCOUNT, "Applied GL account for small expenses (<$100)"
        else:
            value, reasoning = DEFAULT_GL_ACCOUNT, "Applied default GL account for unmatched expense"
        return MappingField(value=value, confidence=0.3, reasoning=reasoning, source=MappingSource.DEFAULT)

    async def determine_cost_center(
        self, supplier_name: str, description: str, user_id: str
    ) -> MappingField:
        """Pick a cost center from prioritized rules, then keyword heuristics."""
        try:
            rules = await self.repository.get_cost_center_rules(user_id)
        except Exception as e:
            logger.error(f"Error in determine_cost_center: {e}")
            return MappingField(
                value=DEFAULT_COST_CENTER,
                confidence=0.1,
                reasoning=f"Error determining cost center, used default: {e}",
                source=MappingSource.DEFAULT,
            )

        for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
            checks = [
                (rule.supplier_pattern, supplier_name, "supplier"),
                (rule.description_pattern, description, "description"),
            ]
            reasons = []
            matched = True
            for pattern, text, label in checks:
                if not pattern:
                    continue
                try:
                    found = re.search(pattern, text, re.IGNORECASE)
                except re.error as e:
                    logger.warning(f"Skipping cost center rule '{rule.rule_name}': invalid pattern ({e})")
                    found = None
                if not found:
                    matched = False
                    break
                reasons.append(f'{label} pattern "{pattern}"')

            if matched and reasons:
                return MappingField(
                    value=rule.cost_center,
                    confidence=0.9,
                    reasoning=f'Matched rule "{rule.rule_name}" based on {" and ".join(reasons)}',
                    source=MappingSource.RULE_BASED,
                )

        supplier = supplier_name.lower()
        text = description.lower()
        if "office" in supplier or "office" in text:
            value, reasoning = "CC-1100", "Applied Office cost center based on supplier/description keywords"
        elif "travel" in text or "hotel" in text:
            value, reasoning = "CC-1200", "Applied Travel cost center based on description keywords"
        elif "software" in text or "subscription" in text:
            value, reasoning = "CC-1300", "Applied IT cost center based on description keywords"
        else:
            value, reasoning = DEFAULT_COST_CENTER, "Applied default cost center (General/Admin)"
        return MappingField(value=value, confidence=0.4, reasoning=reasoning, source=MappingSource.DEFAULT)

    def set_transaction_type(self, document_type: str) -> MappingField:
        """Map document-type text onto an accounting transaction type."""
        text = (document_type or "").lower()
        for keyword, (value, confidence, reasoning) in TRANSACTION_TYPES.items():
            if keyword in text:
                return MappingField(
                    value=value, confidence=confidence, reasoning=reasoning, source=MappingSource.RULE_BASED
                )
        return MappingField(
            value="RE",
            confidence=0.6,
            reasoning="Default vendor invoice transaction type applied",
            source=MappingSource.DEFAULT,
        )

    # Entry point

    async def process_document(
        self, extracted_data: Any, user_id: str, document_id: str | None = None
    ) -> AccountingMappingResult:
        """Map an extraction result onto the 21 accounting fields.

        Args:
            extracted_data: ExtractionResult, RouterResult or an equivalent dict
            user_id: Owner of the lookup tables to consult
            document_id: Document id for audit persistence

        Returns:
            A structurally complete AccountingMappingResult, also on failure
        """
        mode = "derived"
        try:
            extraction = classify_extraction(extracted_data)
            if self.config.simple_mapping_mode and isinstance(extraction, DirectExtraction):
                mode = "direct"
                result = await self._process_direct(extraction, user_id)
            elif self.config.simple_mapping_mode:
                mode = "simple"
                result = self._process_simple_legacy(extraction.raw)
            else:
                result = await self._process_derived(extraction.raw, user_id)
        except Exception as e:
            logger.exception("Error in process_document")
            metrics.mapping_documents_total.labels(mode=mode, outcome="error").inc()
            return self.create_error_result(str(e))

        if self.config.enable_audit_logging and document_id:
            await self._save_audit_trail(document_id, result.audit_trail)

        metrics.mapping_documents_total.labels(
            mode=mode, outcome="requires_review" if result.requires_review else "auto_approved"
        ).inc()
        metrics.mapping_overall_confidence.labels(mode=mode).observe(result.overall_confidence)
        return result

    # Processing paths

    async def _process_direct(
        self, extraction: DirectExtraction, user_id: str
    ) -> AccountingMappingResult:
        audit_trail: list[AuditLogEntry] = []
        notes = ["Using direct AI-extracted accounting fields"]
        fields: dict[str, MappingField] = {}

        for name in ACCOUNTING_FIELD_NAMES:
            extracted = extraction.accounting_fields.get(name)
            if extracted is None:
                fields[name] = MappingField(
                    value=None,
                    confidence=0.0,
                    reasoning="Field not returned by the extractor",
                    source=MappingSource.DEFAULT,
                )
                continue
            fields[name] = MappingField(
                value=_direct_value(name, extracted.value),
                confidence=extracted.confidence,
                reasoning=f"Direct AI extraction with {round(extracted.confidence * 100)}% confidence",
                source=MappingSource.EXACT_MATCH,
            )
            audit_trail.append(create_audit_entry(name, extracted.value, fields[name]))

        supplier_name = _text(extraction.raw.supplier_name) or _text(
            extraction.accounting_fields.get("invoicing_party")
        )
        if supplier_name and await self._apply_vendor_rules(fields, supplier_name, user_id, audit_trail):
            notes.append("Applied vendor-specific rules for enhanced field mapping")

        present = [fields[name] for name in ACCOUNTING_FIELD_NAMES if name in extraction.accounting_fields]
        mean = sum(f.confidence for f in present) / len(present) if present else 0.0
        # The extractor's own document-level score wins over the recomputed mean
        overall = extraction.reported_confidence or mean
        logger.debug(f"Direct mode confidence: reported={extraction.reported_confidence}, mean={mean:.3f}")

        requires_review = overall < self.config.confidence_threshold_for_auto_approve
        if not requires_review:
            notes.append("Document ready for export - high confidence from direct AI extraction")

        return AccountingMappingResult(
            **fields,
            overall_confidence=overall,
            requires_review=requires_review,
            processing_notes=notes,
            audit_trail=audit_trail,
        )

    def _process_simple_legacy(self, raw: RawExtraction) -> AccountingMappingResult:
        supplier_name = _text(raw.supplier_name)
        invoice_number = _text(raw.invoice_number)
        invoice_date = _text(raw.invoice_date) or _today()
        total_amount = parse_amount(raw.total_amount.value) or 0.0
        description = "; ".join(_text(item) for item in raw.line_items) or "No description available"
        extracted_currency = _text(raw.currency)
        today = _today()

        def field(value: Any, confidence: float, reasoning: str, source: MappingSource) -> MappingField:
            return MappingField(value=value, confidence=confidence, reasoning=reasoning, source=source)

        exact, default = MappingSource.EXACT_MATCH, MappingSource.DEFAULT
        resolved: list[tuple[str, Any, MappingField]] = [
            ("invoicing_party", supplier_name,
             field(supplier_name, 0.95, "Direct mapping from extracted supplier name", exact)),
            ("supplier_invoice_id_by_invcg_party", invoice_number,
             field(invoice_number, 0.95, "Direct mapping from extracted invoice number", exact)),
            ("invoice_gross_amount", total_amount,
             field(total_amount, 0.95, "Direct mapping from extracted total amount", exact)),
            ("supplier_invoice_item_amount", total_amount,
             field(total_amount, 0.95, "Direct mapping from extracted total amount", exact)),
            ("document_date", invoice_date,
             field(invoice_date, 0.95, "Direct mapping from extracted invoice date", exact)),
            ("document_currency", extracted_currency or self.config.default_currency,
             field(
                 (extracted_currency or self.config.default_currency).upper(),
                 0.9,
                 "Direct mapping from extracted currency"
                 if extracted_currency
                 else f"Default {self.config.default_currency} currency applied",
                 exact,
             )),
            ("supplier_invoice_item_text", description,
             field(description, 0.9, "Direct mapping from extracted line items", exact)),
            ("supplier_invoice_transaction_type", "invoice",
             field("INVOICE", 0.85, "Standard invoice transaction type applied", default)),
            ("accounting_document_type", "vendor_invoice",
             field("RE", 0.85, "Standard vendor invoice document type applied", default)),
            ("debit_credit_code", "credit",
             field("H", 0.85, "Standard credit code for vendor invoices", default)),
            ("posting_date", "current_date",
             field(today, 0.85, "Current date applied as posting date", default)),
            ("accounting_document_header_text", f"{supplier_name}-{invoice_number}",
             field(f"Invoice from {supplier_name} - {invoice_number}", 0.8,
                   "Generated header text from supplier and invoice number", default)),
            ("company_code", supplier_name,
             field(supplier_name.split(" ")[0].upper()[:6] + "001", 0.8,
                   "Generated company code from supplier name", default)),
            ("gl_account", "default",
             field(DEFAULT_GL_ACCOUNT, 0.8, "Default general expense account applied", default)),
            ("tax_code", "standard",
             field(self.config.default_tax_code, 0.8, "Standard tax code applied", default)),
            ("tax_jurisdiction", "default",
             field("US", 0.8, "Default US tax jurisdiction applied", default)),
            ("assignment_reference", invoice_number,
             field(invoice_number, 0.8, "Invoice number used as assignment reference", default)),
            ("cost_center", "default",
             field("ADMIN", 0.7, "Default administrative cost center applied", default)),
            ("profit_center", None, field(None, 0.6, "Optional field - not specified", default)),
            ("internal_order", None, field(None, 0.6, "Optional field - not specified", default)),
            ("wbs_element", None, field(None, 0.6, "Optional field - not specified", default)),
        ]

        fields = {name: mapped for name, _, mapped in resolved}
        audit_trail = [create_audit_entry(name, source, mapped) for name, source, mapped in resolved]
        overall = sum(f.confidence for f in fields.values()) / len(fields)
        requires_review = overall < self.config.confidence_threshold_for_auto_approve

        notes = ["Using simple direct mapping mode"]
        if not requires_review:
            notes.append("Document ready for export - high confidence in simple mapping")

        return AccountingMappingResult(
            **fields,
            overall_confidence=overall,
            requires_review=requires_review,
            processing_notes=notes,
            audit_trail=audit_trail,
        )

    async def _process_derived(self, raw: RawExtraction, user_id: str) -> AccountingMappingResult:
        supplier_name = _text(raw.supplier_name)
        invoice_number = _text(raw.invoice_number)
        invoice_date = _text(raw.invoice_date)
        total_amount = parse_amount(raw.total_amount.value)
        description = "; ".join(text for text in (_text(item) for item in raw.line_items) if text)
        document_type = _text(raw.document_type) or "invoice"
        currency = _text(raw.currency).upper()
        today = _today()

        exact, rule, default = MappingSource.EXACT_MATCH, MappingSource.RULE_BASED, MappingSource.DEFAULT

        def extracted(value: Any, present_reason: str, missing_reason: str, confidence: float = 0.9,
                      source: MappingSource = exact) -> MappingField:
            if value:
                return MappingField(value=value, confidence=confidence, reasoning=present_reason, source=source)
            return MappingField(value=None, confidence=0.0, reasoning=missing_reason, source=default)

        company_code = await self.map_company_code(supplier_name, user_id)
        transaction_type = self.set_transaction_type(document_type)
        gl_account = await self.assign_gl_account(description, total_amount or 0.0, user_id)
        cost_center = await self.determine_cost_center(supplier_name, description, user_id)

        resolved: list[tuple[str, Any, MappingField]] = [
            ("company_code", supplier_name, company_code),
            ("supplier_invoice_transaction_type", document_type, transaction_type),
            ("invoicing_party", supplier_name,
             extracted(supplier_name, "Extracted from document", "No supplier name found")),
            ("supplier_invoice_id_by_invcg_party", invoice_number,
             extracted(invoice_number, "Extracted from document", "No invoice number found")),
            ("document_date", invoice_date,
             MappingField(value=invoice_date, confidence=0.9, reasoning="Extracted from document", source=exact)
             if invoice_date
             else MappingField(value=today, confidence=0.3, reasoning="Used current date as fallback",
                               source=default)),
            ("posting_date", today,
             MappingField(value=today, confidence=1.0, reasoning="Set to current date for posting",
                          source=default)),
            ("accounting_document_type", document_type,
             MappingField(value="RE", confidence=0.8, reasoning="Standard invoice document type",
                          source=default)),
            ("accounting_document_header_text", f"{supplier_name}|{invoice_number}",
             MappingField(value=f"Invoice from {supplier_name} - {invoice_number}", confidence=0.8,
                          reasoning="Generated header text from supplier and invoice number", source=rule)),
            ("document_currency", currency,
             MappingField(value=currency, confidence=0.9, reasoning="Extracted from document", source=exact)
             if currency
             else MappingField(value=self.config.default_currency, confidence=0.7,
                               reasoning=f"Applied default currency: {self.config.default_currency}",
                               source=default)),
            ("invoice_gross_amount", raw.total_amount.value,
             extracted(total_amount, "Extracted from document", "No amount found")),
            ("gl_account", description, gl_account),
            ("supplier_invoice_item_text", description,
             extracted(description, "Extracted line items description", "No description available",
                       confidence=0.8)),
            ("debit_credit_code", "credit",
             MappingField(value="H", confidence=1.0, reasoning="Vendor invoices are always credit entries",
                          source=rule)),
            ("supplier_invoice_item_amount", raw.total_amount.value,
             extracted(total_amount, "Same as gross amount for single line item", "No amount found")),
            ("tax_code", None,
             MappingField(value=self.config.default_tax_code, confidence=0.7,
                          reasoning=f"Applied default tax code: {self.config.default_tax_code}",
                          source=default)),
            ("tax_jurisdiction", None,
             MappingField(value="US", confidence=0.6, reasoning="Default tax jurisdiction", source=default)),
            ("assignment_reference", invoice_number,
             extracted(invoice_number, "Using invoice number as reference", "No reference available",
                       confidence=0.8, source=rule)),
            ("cost_center", f"{supplier_name}|{description}", cost_center),
            ("profit_center", None,
             MappingField(reasoning="Profit center not determined - requires business rule configuration")),
            ("internal_order", None,
             MappingField(reasoning="Internal order not determined - requires business rule configuration")),
            ("wbs_element", None,
             MappingField(reasoning="WBS element not determined - requires business rule configuration")),
        ]

        fields = {name: mapped for name, _, mapped in resolved}
        audit_trail = [create_audit_entry(name, source, mapped) for name, source, mapped in resolved]
        notes: list[str] = []

        if supplier_name and await self._apply_vendor_rules(fields, supplier_name, user_id, audit_trail):
            notes.append("Applied vendor-specific rules for enhanced field mapping")

        overall = sum(f.confidence for f in fields.values()) / len(fields)
        requires_review = overall < self.config.confidence_threshold_for_auto_approve
        if company_code.value is None:
            notes.append(company_code.reasoning)
        if requires_review:
            notes.append("Document requires manual review due to low confidence scores or missing mappings")
        else:
            notes.append("Document ready for export")

        return AccountingMappingResult(
            **fields,
            overall_confidence=overall,
            requires_review=requires_review,
            processing_notes=notes,
            audit_trail=audit_trail,
        )

    # Vendor rules

    async def _apply_vendor_rules(
        self,
        fields: dict[str, MappingField],
        supplier_name: str,
        user_id: str,
        audit_trail: list[AuditLogEntry],
    ) -> bool:
        """Apply cost-center hints from the matched vendor's rules.

        A hint only fills a cost center that is still unresolved, and only
        after its code passes validation. Rejected codes are audited as
        ``security_blocked``. Failures here never affect the rest of the mapping.

        Returns:
            True if the supplier matched a vendor with configured rules
        """
        try:
            vendor = await self.repository.find_vendor(supplier_name, user_id)
            if vendor is None:
                logger.debug(f"No vendor match found for '{supplier_name}'")
                return False

            rules = await self.repository.get_vendor_rules(vendor.id)
            if not rules:
                logger.debug(f"No rules configured for vendor {vendor.name}")
                return False

            logger.info(f"Applying {len(rules)} vendor-specific rules for {vendor.name}")
            for hint in (r for r in rules if r.rule_type == "cost_center_hint"):
                current = fields["cost_center"]
                if not self._cost_center_unresolved(current):
                    break
                match = COST_CENTER_HINT.search(hint.instruction)
                if not match:
                    continue

                previous = _audit_value(current.value) or UNASSIGNED
                validation = self.sanitizer.validate_extracted_value(match.group(1), "cost_center")
                if validation.valid and validation.sanitized:
                    reasoning = f"Applied vendor cost center hint: {hint.instruction}"
                    fields["cost_center"] = MappingField(
                        value=validation.sanitized,
                        confidence=0.85,
                        reasoning=reasoning,
                        source=MappingSource.RULE_BASED,
                    )
                    audit_trail.append(
                        AuditLogEntry(
                            field_name="cost_center",
                            input_value=previous,
                            output_value=validation.sanitized,
                            confidence_score=0.85,
                            reasoning=reasoning,
                            mapping_source="vendor_rule",
                        )
                    )
                else:
                    logger.warning(f"Invalid cost center from vendor rule: {match.group(1)}")
                    audit_trail.append(
                        AuditLogEntry(
                            field_name="cost_center",
                            input_value=previous,
                            output_value=None,
                            confidence_score=0.0,
                            reasoning=f"Vendor cost center hint rejected for security: {hint.instruction}",
                            mapping_source="security_blocked",
                        )
                    )
            return True
        except Exception as e:
            logger.warning(f"Failed to apply vendor rules: {e}")
            return False

    @staticmethod
    def _cost_center_unresolved(field: MappingField) -> bool:
        return field.value in (None, "", UNASSIGNED) or field.source == MappingSource.DEFAULT

    # Persistence and failure

    async def _save_audit_trail(self, document_id: str, audit_trail: list[AuditLogEntry]) -> None:
        if self.audit_store is None or not self.audit_store.is_available():
            return
        try:
            result = await asyncio.to_thread(self.audit_store.save, document_id, audit_trail)
        except Exception as e:
            logger.error(f"Error saving audit trail for {document_id}: {e}")
            return
        if not result.success:
            logger.error(f"Audit trail for {document_id} not saved: {result.error}")

    @staticmethod
    def create_error_result(error_message: str) -> AccountingMappingResult:
        """All-null result flagged for review, carrying the error as its only note."""
        reasoning = f"Processing error: {error_message}"
        return AccountingMappingResult(
            **{
                name: MappingField(value=None, confidence=0.0, reasoning=reasoning, source=MappingSource.DEFAULT)
                for name in ACCOUNTING_FIELD_NAMES
            },
            overall_confidence=0.0,
            requires_review=True,
            processing_notes=[f"Fatal error during processing: {error_message}"],
            audit_trail=[],
        )

    async def test_connection(self) -> dict[str, str]:
        """Report lookup table health."""
        try:
            healthy = await self.repository.health_check()
        except Exception as e:
            logger.error(f"Business logic health check failed: {e}")
            return {"service": "inactive", "mappings": "not_configured", "confidence": "disabled"}
        if not healthy:
            return {"service": "error", "mappings": "database_error", "confidence": "disabled"}
        return {"service": "active", "mappings": "configured", "confidence": "enabled"}
