"""Schema-aware OpenAI provider that extracts the 21 accounting fields directly.

Used for PDFs when simple mapping mode is on. The response carries the full
accounting record, so the mapping engine copies it through instead of deriving
fields from the five core values.
"""

import logging
import re
from collections import defaultdict
from typing import Any

import httpx

from ledgerflow.extraction.openai_base import OpenAIProviderBase
from ledgerflow.extraction.schema import (
    ACCOUNTING_FIELD_NAMES,
    ExtractedField,
    ExtractionResult,
    VendorExtractionRule,
)
from ledgerflow.shared.config import Settings
from ledgerflow.shared.sanitizer import PromptSanitizer

logger = logging.getLogger(__name__)

ACCOUNTING_PROMPT = """You are a specialized invoice data extraction assistant for \
accounting systems. Your confidence scores and justification explanations must align: \
if you assign low confidence, explain why in the justification.
{vendor_context}
Return your response in TWO parts.

## PART 1: JSON DATA

{{
  "document_metadata": {{"document_type": "invoice", "overall_confidence": 0.85}},
  "accounting_fields": {{
    "invoicing_party": {{"value": "Company Name as written", "confidence": 0.95}},
    "supplier_invoice_id_by_invcg_party": {{"value": "Invoice number", "confidence": 0.90}},
    "company_code": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "supplier_invoice_transaction_type": {{"value": "INVOICE", "confidence": 0.90}},
    "document_date": {{"value": "2024-01-15", "confidence": 0.85}},
    "posting_date": {{"value": "2024-01-15", "confidence": 0.80}},
    "accounting_document_type": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "accounting_document_header_text": {{"value": "Invoice from Company - INV123", "confidence": 0.75}},
    "document_currency": {{"value": "USD", "confidence": 0.90}},
    "invoice_gross_amount": {{"value": 1250.00, "confidence": 0.95}},
    "gl_account": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "supplier_invoice_item_text": {{"value": "Description as written", "confidence": 0.85}},
    "debit_credit_code": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "supplier_invoice_item_amount": {{"value": 1250.00, "confidence": 0.95}},
    "tax_code": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "tax_jurisdiction": {{"value": "US", "confidence": 0.80}},
    "assignment_reference": {{"value": "Reference if visible", "confidence": 0.80}},
    "cost_center": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "profit_center": {{"value": "NEEDS_ASSIGNMENT", "confidence": 0.60}},
    "internal_order": {{"value": "NOT_APPLICABLE", "confidence": 0.90}},
    "wbs_element": {{"value": "NOT_APPLICABLE", "confidence": 0.90}}
  }},
  "validation_flags": {{
    "total_amount_verified": true,
    "date_format_valid": true,
    "required_fields_present": true,
    "currency_identified": true
  }}
}}

## PART 2: JUSTIFICATION REPORT

For each field give its source location on the document, text quality, the
interpretation required and the reasoning behind its confidence score.

Rules:
- Extract ONLY information visible on the document
- Use "NEEDS_ASSIGNMENT" for missing business codes (confidence 0.6)
- Use "NOT_APPLICABLE" for fields that do not apply (confidence 0.9)
- Format dates as YYYY-MM-DD"""

REPORT_START = re.compile(
    r"##\s*PART\s*2|2\.\s*\*\*JUSTIFICATION\s*REPORT|##\s*JUSTIFICATION\s*REPORT|###\s*Field\s*Extraction",
    re.I,
)

RULE_SECTIONS = (
    ("extraction_hint", "Document Layout Hints"),
    ("cost_center_hint", "Cost Center Hints"),
    ("validation_rule", "Validation Rules"),
)


class OpenAIAccountingProvider(OpenAIProviderBase):
    """Direct accounting-field extraction from PDFs (60s timeout)."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        sanitizer: PromptSanitizer | None = None,
    ) -> None:
        super().__init__(
            settings,
            http_client=http_client,
            timeout=timeout if timeout is not None else settings.file_upload_timeout_seconds,
        )
        self.sanitizer = sanitizer or PromptSanitizer()

    @property
    def provider_name(self) -> str:
        return "openai-accounting"

    def get_name(self) -> str:
        return "OpenAI GPT-4o Direct Accounting"

    async def _extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionResult:
        self._get_client()
        prompt = ACCOUNTING_PROMPT.format(vendor_context=self.build_vendor_rules_context(vendor_rules))

        file_id = await self._upload_document(file_url)
        try:
            content = await self._complete(
                [
                    {"type": "text", "text": prompt},
                    {"type": "file", "file": {"file_id": file_id}},
                ],
                max_tokens=1500,
            )
        finally:
            await self._delete_document(file_id)

        return self.create_accounting_result(
            self.parse_json_content(content), self.extract_justification_report(content)
        )

    def build_vendor_rules_context(self, vendor_rules: list[VendorExtractionRule] | None) -> str:
        """Render active, sanitized vendor rules as a prompt section grouped by rule type."""
        if not vendor_rules:
            return ""

        active = [rule for rule in vendor_rules if rule.is_active]
        safe = self.sanitizer.sanitize_vendor_rules(active)
        if len(safe) != len(active):
            logger.warning(
                f"{self.provider_name}: {len(active) - len(safe)} vendor rules filtered for security"
            )
        if not safe:
            return ""

        grouped: dict[str, list[str]] = defaultdict(list)
        for rule in safe:
            grouped[rule.rule_type].append(rule.instruction)

        lines = ["", "VENDOR-SPECIFIC INSTRUCTIONS:"]
        for rule_type, title in RULE_SECTIONS:
            if grouped[rule_type]:
                lines.append(f"{title}:")
                lines.extend(f"- {instruction}" for instruction in grouped[rule_type])
        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def extract_justification_report(content: str) -> str:
        """Return the free-text report following the JSON part of a response."""
        match = REPORT_START.search(content)
        if match:
            return content[match.start() :].strip()
        last_brace = content.rfind("}")
        remainder = content[last_brace + 1 :].strip().strip("`").strip() if last_brace != -1 else ""
        return remainder or "No structured justification report provided."

    @classmethod
    def create_accounting_result(cls, data: Any, justification_report: str) -> ExtractionResult:
        """Normalize a schema-aware payload into an ExtractionResult.

        Accepts the fields under ``accounting_fields`` or ``sap_invoice_fields``.
        Every one of the 21 accounting fields is present in the result, and the
        five core fields are taken from their accounting counterparts.
        """
        if not isinstance(data, dict):
            data = {}
        raw_fields = data.get("accounting_fields") or data.get("sap_invoice_fields") or data
        if not isinstance(raw_fields, dict):
            raw_fields = {}

        fields: dict[str, ExtractedField] = {
            name: cls.validate_field(raw_fields.get(name)) for name in ACCOUNTING_FIELD_NAMES
        }

        metadata = data.get("document_metadata")
        metadata = dict(metadata) if isinstance(metadata, dict) else {}
        if "overall_confidence" in metadata:
            metadata["overall_confidence"] = cls.validate_confidence(metadata["overall_confidence"])

        flags = data.get("validation_flags")

        return ExtractionResult(
            supplier_name=fields["invoicing_party"],
            invoice_number=fields["supplier_invoice_id_by_invcg_party"],
            invoice_date=fields["document_date"],
            total_amount=fields["invoice_gross_amount"],
            line_items=[fields["supplier_invoice_item_text"]],
            currency=fields["document_currency"],
            accounting_fields=fields,
            justification_report=justification_report,
            document_metadata=metadata,
            validation_flags=flags if isinstance(flags, dict) else {},
        )
