"""OpenAI vision provider for image documents.

Sends the image inline as a base64 data URL. The vision API does not accept
PDFs, so the router never sends PDFs here in auto mode.

Downloaded bytes are validated before transmission: size limit, magic bytes
matching the claimed type, and a scan of the first 1KB for script-injection and
executable signatures.
"""

import base64
import logging

from ledgerflow.extraction.errors import ExtractionError, ExtractionErrorType
from ledgerflow.extraction.file_validation import MAX_FILE_SIZE, validate_file_content
from ledgerflow.extraction.openai_base import CORE_FIELDS_PROMPT, OpenAIProviderBase
from ledgerflow.extraction.schema import ExtractionResult, VendorExtractionRule

logger = logging.getLogger(__name__)


class OpenAIVisionProvider(OpenAIProviderBase):
    """Image extraction through the OpenAI vision API (30s timeout)."""

    @property
    def provider_name(self) -> str:
        return "openai-vision"

    def get_name(self) -> str:
        return "OpenAI GPT-4o Vision"

    async def _extract(
        self, file_url: str, vendor_rules: list[VendorExtractionRule] | None = None
    ) -> ExtractionResult:
        self._get_client()
        data_url = await self._prepare_file_for_vision(file_url)

        content = await self._complete(
            [
                {"type": "text", "text": CORE_FIELDS_PROMPT},
                {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
            ]
        )
        return self.create_standard_result(self.parse_json_content(content))

    async def _prepare_file_for_vision(self, file_url: str) -> str:
        """Download, validate and encode a document as a data URL.

        Raises:
            ExtractionError: FILE_TOO_LARGE or UNSUPPORTED_FORMAT on rejection
        """
        response = await self._download(file_url)

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_FILE_SIZE:
            raise ExtractionError(
                ExtractionErrorType.FILE_TOO_LARGE,
                f"File too large: {int(content_length) / 1024 / 1024:.2f}MB (max: 50MB)",
            )

        buffer = response.content
        if len(buffer) > MAX_FILE_SIZE:
            raise ExtractionError(
                ExtractionErrorType.FILE_TOO_LARGE,
                f"File too large: {len(buffer) / 1024 / 1024:.2f}MB (max: 50MB)",
            )

        content_type = response.headers.get("content-type", "application/octet-stream")
        validation = validate_file_content(buffer, content_type, file_url)
        if not validation.is_valid:
            raise ExtractionError(
                ExtractionErrorType.UNSUPPORTED_FORMAT,
                validation.error or "File validation failed",
            )

        encoded = base64.b64encode(buffer).decode("ascii")
        logger.info(
            f"Prepared {validation.file_type} for vision API: {len(buffer) / 1024:.2f}KB"
        )
        return f"data:{validation.mime_type};base64,{encoded}"
