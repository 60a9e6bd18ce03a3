"""OpenAI files provider for PDF documents.

Uploads the document to the Files API, references it from a chat completion,
and deletes the upload afterwards.
"""

import httpx

from ledgerflow.extraction.openai_base import CORE_FIELDS_PROMPT, OpenAIProviderBase
from ledgerflow.extraction.schema import ExtractionResult, VendorExtractionRule
from ledgerflow.shared.config import Settings


class OpenAIFilesProvider(OpenAIProviderBase):
    """PDF extraction through the OpenAI Files API (60s timeout)."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            settings,
            http_client=http_client,
            timeout=timeout if timeout is not None else settings.file_upload_timeout_seconds,
        )

    @property
    def provider_name(self) -> str:
        return "openai-files"

    def get_name(self) -> str:
        return "OpenAI GPT-4o Files"

    async def _extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionResult:
        self._get_client()
        file_id = await self._upload_document(file_url)
        try:
            content = await self._complete(
                [
                    {"type": "text", "text": CORE_FIELDS_PROMPT},
                    {"type": "file", "file": {"file_id": file_id}},
                ]
            )
        finally:
            await self._delete_document(file_id)
        return self.create_standard_result(self.parse_json_content(content))
