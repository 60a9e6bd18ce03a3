#!/usr/bin/env python3
"""Route one document through extraction and map it onto accounting fields.

Prints the mapping result (and routing metadata) as JSON. Lookup tables can be
supplied as a JSON file with any of the keys ``company_mappings``,
``gl_mappings``, ``cost_center_rules``, ``vendors`` and ``vendor_rules``.

Usage:
    python scripts/process_document.py https://example.com/invoice.pdf --user-id u1
    python scripts/process_document.py <url> --user-id u1 --tables tables.json --document-id d1
    python scripts/process_document.py <url> --user-id u1 --metrics metrics.prom

Requirements:
    - APP_OPENAI_API_KEY and/or APP_MINDEE_API_KEY set for the chosen service
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ledgerflow.audit.store import AuditTrailStore
from ledgerflow.extraction.errors import ExtractionError
from ledgerflow.extraction.registry import create_providers
from ledgerflow.extraction.router import ExtractionRouter, RouterConfig
from ledgerflow.extraction.schema import VendorExtractionRule
from ledgerflow.mapping.engine import BusinessLogicEngine
from ledgerflow.mapping.repository import InMemoryMappingRepository
from ledgerflow.mapping.schema import (
    CompanyMapping,
    CostCenterRule,
    GLMapping,
    MappingConfig,
    Vendor,
)
from ledgerflow.shared.config import Settings, get_settings
from ledgerflow.shared.metrics import get_metrics
from ledgerflow.shared.log_setup import configure_logging

logger = logging.getLogger(__name__)


def load_repository(path: Path | None, settings: Settings) -> InMemoryMappingRepository:
    """Build an in-memory repository from a lookup-table JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    tables: dict[str, list[dict[str, Any]]] = {}
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Lookup table file not found: {path}")
        tables = json.loads(path.read_text(encoding="utf-8"))

    repository = InMemoryMappingRepository(
        company_mappings=[CompanyMapping(**row) for row in tables.get("company_mappings", [])],
        gl_mappings=[GLMapping(**row) for row in tables.get("gl_mappings", [])],
        cost_center_rules=[CostCenterRule(**row) for row in tables.get("cost_center_rules", [])],
        vendors=[Vendor(**row) for row in tables.get("vendors", [])],
        vendor_rules=[VendorExtractionRule(**row) for row in tables.get("vendor_rules", [])],
        fuzzy_match_threshold=settings.fuzzy_match_threshold,
    )
    logger.info(
        f"Loaded lookup tables: {len(repository.company_mappings)} company, "
        f"{len(repository.gl_mappings)} GL, {len(repository.cost_center_rules)} cost center"
    )
    return repository


async def process_document(
    file_url: str,
    user_id: str,
    document_id: str | None,
    vendor_id: str | None,
    repository: InMemoryMappingRepository,
    settings: Settings,
) -> dict[str, Any]:
    """Extract and map one document.

    Raises:
        ExtractionError: If extraction failed on every attempted provider
    """
    registry = create_providers(settings)
    router = ExtractionRouter(registry, RouterConfig.from_settings(settings))
    vendor_rules = await repository.get_vendor_rules(vendor_id) if vendor_id else None

    try:
        extraction = await router.extract(file_url, vendor_rules=vendor_rules)
    finally:
        await registry.aclose()

    audit_store = AuditTrailStore(settings) if settings.storage_enabled else None
    engine = BusinessLogicEngine(repository, MappingConfig.from_settings(settings), audit_store=audit_store)
    mapping = await engine.process_document(extraction, user_id, document_id=document_id)

    return {
        "extraction": {
            "method": extraction.extraction_method,
            "total_cost": extraction.total_cost,
            "fallback_occurred": extraction.fallback_occurred,
            "decision_log": extraction.decision_log,
        },
        "mapping": mapping.model_dump(mode="json"),
    }


def main(argv: list[str] | None = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Extract and map one invoice document")
    parser.add_argument("file_url", help="HTTP(S) URL of the document")
    parser.add_argument("--user-id", required=True, help="Owner of the lookup tables")
    parser.add_argument("--document-id", default=None, help="Document id for audit persistence")
    parser.add_argument("--vendor-id", default=None, help="Vendor whose extraction rules apply")
    parser.add_argument(
        "--tables",
        type=Path,
        default=None,
        help="JSON file with lookup tables (company, GL, cost center, vendors)",
    )
    parser.add_argument(
        "--metrics",
        type=Path,
        default=None,
        help="Write Prometheus metrics for this run to the given file",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)
    repository = load_repository(args.tables, settings)

    try:
        output = asyncio.run(
            process_document(
                args.file_url, args.user_id, args.document_id, args.vendor_id, repository, settings
            )
        )
    except ExtractionError as e:
        logger.error(f"Extraction failed: {e}")
        print(json.dumps({"error": e.to_dict()}, indent=2))
        return 1
    finally:
        if args.metrics is not None:
            args.metrics.write_bytes(get_metrics())
            logger.info(f"Wrote metrics to {args.metrics}")

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
