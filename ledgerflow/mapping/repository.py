"""Lookup-table access for the mapping engine.

The engine reads three user-scoped tables (company mappings, GL keyword
mappings, cost-center rules) plus vendors and their extraction rules. Storage
is an external concern; ``MappingRepository`` is the seam and
``InMemoryMappingRepository`` serves tests, the CLI and small deployments.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from difflib import SequenceMatcher

from ledgerflow.extraction.schema import VendorExtractionRule
from ledgerflow.mapping.schema import (
    CompanyMapping,
    CompanyMatch,
    CostCenterRule,
    GLMapping,
    GLMatch,
    Vendor,
)

logger = logging.getLogger(__name__)

# GL keyword confidence grows from 0.7 to 0.95 with the share of rule keywords found
GL_MATCH_BASE_CONFIDENCE = 0.7
GL_MATCH_CONFIDENCE_SPAN = 0.25


def normalize_name(name: str) -> str:
    """Normalize a supplier name for matching: lowercase, no punctuation, single spaces."""
    if not name:
        return ""
    normalized = re.sub(r"[.,;:!@#$%^&*()\[\]{}|\\/<>\"']", " ", name.lower())
    return re.sub(r"\s+", " ", normalized).strip()


def name_similarity(a: str, b: str) -> float:
    """Similarity between two supplier names (0.0 - 1.0)."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return SequenceMatcher(None, na, nb).ratio()


class MappingRepository(ABC):
    """Read-only lookups used while mapping one document."""

    @abstractmethod
    async def find_company_mapping(self, supplier_name: str, user_id: str) -> CompanyMatch | None:
        """Best company mapping at or above the fuzzy threshold, if any."""

    @abstractmethod
    async def find_gl_mapping(self, description: str, user_id: str) -> GLMatch | None:
        """Highest-priority GL mapping with a keyword present in the description."""

    @abstractmethod
    async def get_cost_center_rules(self, user_id: str) -> list[CostCenterRule]:
        """Active cost-center rules ordered by priority, highest first."""

    @abstractmethod
    async def find_vendor(self, supplier_name: str, user_id: str) -> Vendor | None:
        """Known vendor whose name or alias contains the supplier name."""

    @abstractmethod
    async def get_vendor_rules(self, vendor_id: str) -> list[VendorExtractionRule]:
        """Active extraction rules configured for a vendor."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Whether the lookup tables are reachable."""


class InMemoryMappingRepository(MappingRepository):
    """Mapping tables held in process memory."""

    def __init__(
        self,
        company_mappings: Iterable[CompanyMapping] = (),
        gl_mappings: Iterable[GLMapping] = (),
        cost_center_rules: Iterable[CostCenterRule] = (),
        vendors: Iterable[Vendor] = (),
        vendor_rules: Iterable[VendorExtractionRule] = (),
        fuzzy_match_threshold: float = 0.7,
    ) -> None:
        self.company_mappings = list(company_mappings)
        self.gl_mappings = list(gl_mappings)
        self.cost_center_rules = list(cost_center_rules)
        self.vendors = list(vendors)
        self.vendor_rules = list(vendor_rules)
        self.fuzzy_match_threshold = fuzzy_match_threshold

    async def find_company_mapping(self, supplier_name: str, user_id: str) -> CompanyMatch | None:
        best: CompanyMatch | None = None
        for mapping in self.company_mappings:
            if mapping.user_id != user_id or not mapping.is_active:
                continue
            score = name_similarity(supplier_name, mapping.supplier_name)
            if score < self.fuzzy_match_threshold:
                continue
            if best is None or score > best.confidence:
                best = CompanyMatch(
                    company_code=mapping.company_code,
                    matched_supplier=mapping.supplier_name,
                    confidence=score,
                )
        if best:
            logger.debug(
                f"Company mapping for '{supplier_name}': {best.company_code} ({best.confidence:.2f})"
            )
        return best

    async def find_gl_mapping(self, description: str, user_id: str) -> GLMatch | None:
        text = description.lower()
        candidates = []
        for mapping in self.gl_mappings:
            if mapping.user_id != user_id or not mapping.is_active or not mapping.keywords:
                continue
            matched = [kw for kw in mapping.keywords if kw and kw.lower() in text]
            if matched:
                candidates.append((mapping, matched))

        if not candidates:
            return None

        mapping, matched = max(candidates, key=lambda c: (c[0].priority, len(c[1])))
        share = len(matched) / len(mapping.keywords)
        return GLMatch(
            gl_account=mapping.gl_account,
            matched_keywords=matched,
            confidence=round(GL_MATCH_BASE_CONFIDENCE + GL_MATCH_CONFIDENCE_SPAN * share, 4),
        )

    async def get_cost_center_rules(self, user_id: str) -> list[CostCenterRule]:
        rules = [r for r in self.cost_center_rules if r.user_id == user_id and r.is_active]
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    async def find_vendor(self, supplier_name: str, user_id: str) -> Vendor | None:
        needle = supplier_name.lower().strip()
        if not needle:
            return None
        for vendor in self.vendors:
            if needle in vendor.name.lower() or any(needle in a.lower() for a in vendor.aliases):
                return vendor
        return None

    async def get_vendor_rules(self, vendor_id: str) -> list[VendorExtractionRule]:
        return [r for r in self.vendor_rules if r.vendor_id == vendor_id and r.is_active]

    async def health_check(self) -> bool:
        return True
