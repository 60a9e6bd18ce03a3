"""Content validation for documents sent to the vision provider.

Files are checked before any bytes leave the process:
- size limit (50MB)
- executable headers and script-injection signatures in the first 1KB
- magic bytes matching the claimed type (PDF header and trailer, image signatures)
"""

import re
from dataclasses import dataclass
from typing import Literal

MAX_FILE_SIZE = 50 * 1024 * 1024
SCAN_WINDOW = 1024

IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "webp")

MALICIOUS_PATTERNS = [
    re.compile(rb"<script", re.IGNORECASE),
    re.compile(rb"javascript:", re.IGNORECASE),
    re.compile(rb"vbscript:", re.IGNORECASE),
    re.compile(rb"^MZ"),  # Windows PE
    re.compile(rb"^\x7fELF"),  # Linux ELF
    re.compile(rb"^\xca\xfe\xba\xbe"),  # Java class
    re.compile(rb"eval\s*\(", re.IGNORECASE),
    re.compile(rb"document\.write", re.IGNORECASE),
]

IMAGE_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF", "image/gif"),
]


@dataclass
class FileValidation:
    """Outcome of validating a downloaded document."""

    is_valid: bool
    mime_type: str
    file_type: Literal["PDF", "image"]
    error: str | None = None


def contains_malicious_content(buffer: bytes) -> bool:
    """Scan the first 1KB for script-injection and executable signatures."""
    head = buffer[:SCAN_WINDOW]
    return any(pattern.search(head) for pattern in MALICIOUS_PATTERNS)


def detect_image_type(buffer: bytes) -> str | None:
    """Return the image MIME type matching the buffer's magic bytes, if any."""
    for signature, mime_type in IMAGE_SIGNATURES:
        if buffer.startswith(signature):
            return mime_type
    if len(buffer) >= 12 and buffer[:4] == b"RIFF" and buffer[8:12] == b"WEBP":
        return "image/webp"
    return None


def validate_file_content(buffer: bytes, content_type: str, file_url: str) -> FileValidation:
    """Validate document bytes against their claimed type.

    Args:
        buffer: Downloaded file content
        content_type: Content-Type reported by the file host
        file_url: Source URL (its extension is part of the claimed type)

    Returns:
        FileValidation with the verified MIME type, or the rejection reason
    """
    url = file_url.lower().split("?", 1)[0]

    if len(buffer) > MAX_FILE_SIZE:
        return FileValidation(
            False,
            content_type,
            "PDF" if url.endswith(".pdf") else "image",
            f"File too large: {len(buffer) / 1024 / 1024:.2f}MB (max: 50MB)",
        )

    if contains_malicious_content(buffer):
        return FileValidation(False, content_type, "image", "File contains potentially malicious content")

    if "pdf" in content_type or url.endswith(".pdf"):
        if not buffer.startswith(b"%PDF"):
            return FileValidation(False, content_type, "PDF", "Invalid PDF file: missing PDF header")
        if b"%%EOF" not in buffer[-SCAN_WINDOW:]:
            return FileValidation(False, content_type, "PDF", "Invalid PDF file: missing EOF marker")
        return FileValidation(True, "application/pdf", "PDF")

    claims_image = url.endswith(tuple(f".{ext}" for ext in IMAGE_EXTENSIONS)) or (
        "image/" in content_type
    )
    if claims_image:
        image_type = detect_image_type(buffer)
        if image_type is None:
            return FileValidation(
                False,
                content_type,
                "image",
                "Invalid image file: unrecognized or corrupted image format",
            )
        return FileValidation(True, image_type, "image")

    return FileValidation(False, content_type, "image", f"Unsupported file type: {content_type}")
