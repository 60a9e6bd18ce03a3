"""Injection-safety checks for user-authored vendor rules and values derived from them.

Vendor rules are free text written by users. They end up in two dangerous
places: LLM prompts (schema-aware extraction) and accounting fields (cost
center hints). Both paths go through this module first.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from ledgerflow.extraction.schema import VendorExtractionRule

logger = logging.getLogger(__name__)

REMOVED_FOR_SECURITY = "[INSTRUCTION REMOVED FOR SECURITY]"
REMOVED_SENSITIVE = "[INSTRUCTION REMOVED - SENSITIVE DATA]"

DANGEROUS_PATTERNS = [
    re.compile(r"ignore\s+(previous|all|above)\s+(instructions?|prompts?|rules?)", re.I),
    re.compile(r"forget\s+(everything|all|previous)", re.I),
    re.compile(r"disregard\s+(previous|all|above)", re.I),
    re.compile(r"new\s+instructions?\s*:", re.I),
    re.compile(r"system\s*:\s*", re.I),
    re.compile(r"admin\s*:\s*", re.I),
    re.compile(r"execute\s+(code|command|script)", re.I),
    re.compile(r"eval\s*\(", re.I),
    re.compile(r"import\s+\{", re.I),
    re.compile(r"require\s*\(", re.I),
    re.compile(r"\$\{.*\}"),
    re.compile(r"`.*`"),
    re.compile(r"<script", re.I),
    re.compile(r"javascript:", re.I),
    re.compile(r"onclick=", re.I),
    re.compile(r"onerror=", re.I),
]

SENSITIVE_DATA_PATTERNS = [
    re.compile(r"\b(ssn|social\s*security)\b", re.I),
    re.compile(r"\b(credit\s*card|cc\s*number)\b", re.I),
    re.compile(r"\b(bank\s*account|routing\s*number)\b", re.I),
    re.compile(r"\b(password|pwd|passwd)\b", re.I),
    re.compile(r"\b(api\s*key|secret\s*key|private\s*key)\b", re.I),
    re.compile(r"\b(access\s*token|bearer\s*token)\b", re.I),
    re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),  # SSN
    re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\s?\d{4}\b"),  # card number
]

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
GL_ACCOUNT_PATTERN = re.compile(r"^\d{4,6}$")
COST_CENTER_PATTERN = re.compile(r"^[A-Z0-9\-_]{1,20}$", re.I)
MAX_COST_CENTER_LENGTH = 20


@dataclass
class ValueValidation:
    valid: bool
    sanitized: str | None = None


@dataclass
class RuleValidation:
    valid: bool
    error: str | None = None


class PromptSanitizer:
    """Validates vendor rule text and the values extracted from it."""

    def __init__(self, max_instruction_length: int = 200) -> None:
        self.max_instruction_length = max_instruction_length

    def sanitize_for_llm_prompt(self, instruction: str) -> str:
        """Clean an instruction for inclusion in an LLM prompt.

        Returns:
            The cleaned instruction, or a removal marker when it looks like an
            injection attempt or references sensitive data
        """
        if not instruction or not isinstance(instruction, str):
            return ""

        sanitized = instruction.strip()[: self.max_instruction_length]
        sanitized = CONTROL_CHARS.sub("", sanitized)
        sanitized = re.sub(r"\s+", " ", sanitized)
        sanitized = re.sub(r"[<>{}\\]", "", sanitized)

        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(sanitized):
                logger.warning(f"Dangerous pattern detected in instruction: {pattern.pattern}")
                return REMOVED_FOR_SECURITY

        for pattern in SENSITIVE_DATA_PATTERNS:
            if pattern.search(sanitized):
                logger.warning(f"Sensitive data pattern detected in instruction: {pattern.pattern}")
                return REMOVED_SENSITIVE

        return sanitized

    def validate_rule_content(self, instruction: str, rule_type: str) -> RuleValidation:
        """Validate a vendor rule before it is saved."""
        if not instruction or not isinstance(instruction, str):
            return RuleValidation(False, "Instruction must be a non-empty string")

        if len(instruction) > self.max_instruction_length:
            return RuleValidation(
                False,
                f"Instruction exceeds maximum length of {self.max_instruction_length} characters",
            )

        if any(pattern.search(instruction) for pattern in DANGEROUS_PATTERNS):
            return RuleValidation(False, "Instruction contains potentially dangerous content")

        if any(pattern.search(instruction) for pattern in SENSITIVE_DATA_PATTERNS):
            return RuleValidation(False, "Instruction appears to reference sensitive data")

        if rule_type == "cost_center_hint":
            match = re.search(r"Cost\s*Center\s*([A-Z0-9\-_]+)", instruction, re.I)
            if match and not COST_CENTER_PATTERN.match(match.group(1)):
                return RuleValidation(
                    False, "Cost center must be alphanumeric with hyphens/underscores only"
                )

        return RuleValidation(True)

    def validate_extracted_value(
        self, value: str, value_type: Literal["gl_account", "cost_center"]
    ) -> ValueValidation:
        """Validate a code pulled out of a vendor rule before it is applied."""
        if not value or not isinstance(value, str):
            return ValueValidation(False)

        trimmed = value.strip()

        if value_type == "gl_account":
            numeric = re.sub(r"\D", "", trimmed)
            if not GL_ACCOUNT_PATTERN.match(numeric):
                return ValueValidation(False)
            if not 1000 <= int(numeric) <= 999999:
                return ValueValidation(False)
            return ValueValidation(True, numeric)

        if value_type == "cost_center":
            sanitized = re.sub(r"[^A-Z0-9\-_]", "", trimmed.upper())
            if not COST_CENTER_PATTERN.match(sanitized) or len(sanitized) > MAX_COST_CENTER_LENGTH:
                return ValueValidation(False)
            if "--" in sanitized:
                return ValueValidation(False)
            return ValueValidation(True, sanitized)

        return ValueValidation(False)

    def sanitize_vendor_rules(
        self, rules: Iterable[VendorExtractionRule]
    ) -> list[VendorExtractionRule]:
        """Sanitize rule instructions, dropping rules removed for security."""
        sanitized = [
            rule.model_copy(update={"instruction": self.sanitize_for_llm_prompt(rule.instruction)})
            for rule in rules
        ]
        return [
            rule
            for rule in sanitized
            if rule.instruction and rule.instruction not in (REMOVED_FOR_SECURITY, REMOVED_SENSITIVE)
        ]
