"""Capability-tagged registry of extraction providers.

Implements Factory Pattern for provider creation with a registry of provider
classes, plus a routing table from (file kind, provider preference) to the
provider able to handle it.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

The routing table is the one place that knows the vision API cannot accept
PDFs. The router only asks for a provider by preference and never inspects
provider types.
"""

import logging
from collections.abc import Iterable
from typing import Literal
from urllib.parse import urlparse

import httpx

from ledgerflow.extraction.base import ExtractionProvider
from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType
from ledgerflow.extraction.file_validation import IMAGE_EXTENSIONS
from ledgerflow.extraction.mindee import MindeeProvider
from ledgerflow.extraction.openai_accounting import OpenAIAccountingProvider
from ledgerflow.extraction.openai_files import OpenAIFilesProvider
from ledgerflow.extraction.openai_vision import OpenAIVisionProvider
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)

FileKind = Literal["image", "pdf", "other"]
ProviderPreference = Literal["openai", "mindee"]


def file_extension(file_url: str) -> str:
    """Lower-cased extension of the URL path, ignoring query strings."""
    path = urlparse(file_url).path if file_url else ""
    name = path.rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def file_kind_for(file_url: str) -> FileKind:
    extension = file_extension(file_url)
    if extension in IMAGE_EXTENSIONS:
        return "image"
    if extension == "pdf":
        return "pdf"
    return "other"


class ProviderRegistry:
    """Registry of extraction providers.

    Provider classes are registered by name at class level; an instance holds
    the configured provider objects the router draws from.
    """

    _provider_classes: dict[str, type[ExtractionProvider]] = {
        "openai-vision": OpenAIVisionProvider,
        "openai-files": OpenAIFilesProvider,
        "openai-accounting": OpenAIAccountingProvider,
        "mindee": MindeeProvider,
    }

    def __init__(self, providers: Iterable[ExtractionProvider] = ()) -> None:
        self._providers: dict[str, ExtractionProvider] = {}
        for provider in providers:
            self.add(provider)

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider class.

        Args:
            name: Provider identifier (must match the provider's provider_name)
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._provider_classes[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._provider_classes:
            available = ", ".join(cls._provider_classes.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. Available providers: {available}"
            )
        return cls._provider_classes[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._provider_classes.keys())

    def add(self, provider: ExtractionProvider) -> None:
        self._providers[provider.provider_name] = provider

    def get(self, name: str) -> ExtractionProvider:
        """Get a configured provider instance.

        Raises:
            ExtractionError: CONFIGURATION_ERROR if no instance is registered under name
        """
        try:
            return self._providers[name]
        except KeyError:
            raise ExtractionError(
                ExtractionErrorType.CONFIGURATION_ERROR,
                f"Extraction provider '{name}' is not configured",
            ) from None

    def providers(self) -> list[ExtractionProvider]:
        return list(self._providers.values())

    def available(self) -> list[str]:
        """Names of configured providers whose credentials are present."""
        return [name for name, provider in self._providers.items() if provider.is_available()]

    @staticmethod
    def route(file_kind: FileKind, preference: ProviderPreference, simple_mapping: bool) -> str:
        """Name of the provider handling a file kind for a provider preference.

        OpenAI is split by capability: PDFs go to the files API (or the
        schema-aware accounting provider in simple mapping mode), everything
        else to the vision API. Mindee handles every kind.
        """
        if preference == "mindee":
            return "mindee"
        if file_kind == "pdf":
            return "openai-accounting" if simple_mapping else "openai-files"
        return "openai-vision"

    def resolve(
        self, file_kind: FileKind, preference: ProviderPreference, simple_mapping: bool = False
    ) -> ExtractionProvider:
        return self.get(self.route(file_kind, preference, simple_mapping))

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def create_providers(
    settings: Settings, http_client: httpx.AsyncClient | None = None
) -> ProviderRegistry:
    """Factory function to build a registry holding every known provider.

    Providers without credentials are still created so routing stays
    deterministic; they fail with CONFIGURATION_ERROR when used, and a warning
    is logged here.

    Args:
        settings: Application settings
        http_client: Optional shared async HTTP client

    Returns:
        ProviderRegistry with one instance per registered provider class
    """
    registry = ProviderRegistry()
    for name in ProviderRegistry.list_providers():
        provider = ProviderRegistry.get_provider_class(name)(settings, http_client=http_client)
        if not provider.is_available():
            logger.warning(
                f"Extraction provider '{name}' is not fully available. "
                f"Check configuration (e.g., API keys)."
            )
        registry.add(provider)
        logger.info(f"Created extraction provider: {name}")
    return registry
