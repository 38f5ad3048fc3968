"""
Document intake and encoding service.

Provides the acceptance gates and transport encoding for uploaded exam
documents:
- File size limit (4MB per document)
- Content type detection (images and PDF only)
- Filename sanitization for display
- Base64 encoding with bounded parallelism
"""

import asyncio
import base64
import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import magic

from edugrade.errors import (
    DocumentRejected,
    DocumentTooLarge,
    EmptyDocument,
    UnsupportedDocumentType,
)
from edugrade.models.documents import DocumentGroup, EncodedDocument, UploadedDocument

logger = logging.getLogger(__name__)

# Constants
MAX_DOCUMENT_SIZE = 4 * 1024 * 1024  # 4MB in bytes
PDF_MIME_TYPE = "application/pdf"
IMAGE_MIME_PREFIX = "image/"
DEFAULT_CONCURRENCY = 4


def detect_mime_type(content: bytes) -> str:
    """Detect the content type from the bytes themselves using libmagic."""
    return magic.from_buffer(content, mime=True)


def is_supported_mime_type(mime_type: str) -> bool:
    return mime_type == PDF_MIME_TYPE or mime_type.startswith(IMAGE_MIME_PREFIX)


def sanitize_display_name(filename: Optional[str]) -> str:
    """
    Sanitize an uploaded filename for display and error messages.

    Args:
        filename: Original filename from the upload or path

    Returns:
        Filename without directory parts or unsafe characters

    Security:
        - Removes directory separators (/, \\)
        - Removes parent directory references (..)
        - Removes null bytes
        - Limits to alphanumeric, dash, underscore, dot, space
    """
    if not filename:
        return "document"

    # Get base filename (remove any path components, either separator style)
    filename = Path(filename.replace("\\", "/")).name

    # Remove any path traversal attempts and null bytes
    filename = filename.replace("..", "").replace("/", "").replace("\0", "")

    # Keep only safe characters
    filename = re.sub(r'[^a-zA-Z0-9._ -]', '_', filename).strip()

    if not filename or filename == ".":
        return "document"

    # Limit length (max 255 chars for most filesystems), keep the extension
    if len(filename) > 255:
        stem, dot, ext = filename.rpartition(".")
        if dot and len(ext) <= 10:
            filename = stem[:254 - len(ext)] + "." + ext
        else:
            filename = filename[:255]

    return filename


def load_document(content: bytes, filename: Optional[str]) -> UploadedDocument:
    """Build an UploadedDocument from raw bytes, detecting its content type."""
    mime_type = detect_mime_type(content) if content else "application/x-empty"
    return UploadedDocument(
        raw_bytes=content,
        mime_type=mime_type,
        display_name=sanitize_display_name(filename),
    )


async def read_document(path: Union[str, Path]) -> UploadedDocument:
    """Read a document from disk without blocking the event loop."""
    path = Path(path)
    content = await asyncio.to_thread(path.read_bytes)
    return load_document(content, path.name)


class DocumentEncoder:
    """Applies the acceptance gates and base64-encodes documents.

    Encoding is independent per document. A rejected document is reported
    but never stops its siblings from being encoded.
    """

    def __init__(
        self,
        max_bytes: int = MAX_DOCUMENT_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.max_bytes = max_bytes
        self.concurrency = concurrency

    def check(self, document: UploadedDocument) -> None:
        """
        Validate a document against the acceptance gates.

        Raises:
            EmptyDocument: Document has no bytes
            DocumentTooLarge: Document is larger than ``max_bytes``
            UnsupportedDocumentType: Content is not an image or PDF
        """
        if document.byte_size == 0:
            raise EmptyDocument(document.display_name)

        if document.byte_size > self.max_bytes:
            raise DocumentTooLarge(document.display_name, document.byte_size, self.max_bytes)

        if not is_supported_mime_type(document.mime_type):
            raise UnsupportedDocumentType(document.display_name, document.mime_type)

    def partition(
        self, documents: Sequence[UploadedDocument]
    ) -> Tuple[List[UploadedDocument], List[DocumentRejected]]:
        """Split documents into accepted ones and rejections, preserving order."""
        accepted: List[UploadedDocument] = []
        rejected: List[DocumentRejected] = []
        for document in documents:
            try:
                self.check(document)
            except DocumentRejected as e:
                rejected.append(e)
            else:
                accepted.append(document)
        return accepted, rejected

    async def encode(self, document: UploadedDocument) -> EncodedDocument:
        """Gate and encode one document."""
        self.check(document)
        encoded = await asyncio.to_thread(base64.b64encode, document.raw_bytes)
        return EncodedDocument(
            mime_type=document.mime_type,
            base64_payload=encoded.decode("ascii"),
            display_name=document.display_name,
        )

    async def encode_batch(
        self,
        documents: Sequence[UploadedDocument],
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> Tuple[List[EncodedDocument], List[DocumentRejected]]:
        """
        Encode documents concurrently.

        Args:
            documents: Documents in upload order
            semaphore: Shared concurrency bound (one per call when omitted)

        Returns:
            Tuple of (encoded documents in upload order, rejections)
        """
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.concurrency)

        async def _encode_one(document: UploadedDocument) -> EncodedDocument:
            async with semaphore:
                return await self.encode(document)

        results = await asyncio.gather(
            *(_encode_one(d) for d in documents),
            return_exceptions=True,
        )

        encoded: List[EncodedDocument] = []
        rejected: List[DocumentRejected] = []
        for result in results:
            if isinstance(result, DocumentRejected):
                rejected.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                encoded.append(result)

        if rejected:
            logger.warning(
                f"Rejected {len(rejected)} of {len(documents)} documents: "
                + "; ".join(r.message for r in rejected)
            )
        return encoded, rejected

    async def encode_groups(
        self, groups: Mapping[DocumentGroup, Sequence[UploadedDocument]]
    ) -> Tuple[Dict[DocumentGroup, List[EncodedDocument]], List[DocumentRejected]]:
        """Encode every group, collecting rejections across all of them.

        All groups share one semaphore, so at most ``concurrency`` documents
        are encoded at a time for the whole submission.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        group_list = list(groups.items())
        batches = await asyncio.gather(
            *(self.encode_batch(documents, semaphore) for _, documents in group_list)
        )

        encoded: Dict[DocumentGroup, List[EncodedDocument]] = {}
        rejected: List[DocumentRejected] = []
        for (group, _), (group_encoded, group_rejected) in zip(group_list, batches):
            encoded[group] = group_encoded
            rejected.extend(group_rejected)
        return encoded, rejected
