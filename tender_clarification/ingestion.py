"""
ingestion.py — PDF upload handling and text extraction.

Turns uploaded PDF bytes into one string with explicit page markers:

    \\n--- Page 1 ---\\n<page text>\\n\\n--- Page 2 ---\\n<page text>\\n ...

The markers let the model cite "Page 4" in an issue's location, and they're
what tests count to check nothing was skipped.

If any page fails to decode we reject the whole document. Half a tender
with no hint that pages are missing produces confident "missing
information" issues about things that were on the pages we lost.

pdfplumber pulls in pdfminer, which is slow to import, so the extractor
loads it lazily through bootstrap() and tracks that in an explicit
LOADING / READY / FAILED state. Uploads are rejected until READY.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from tender_clarification.config import Config, config
from tender_clarification.errors import ExtractionError
from tender_clarification.schemas import Document
from tender_clarification.store import SessionStore

logger = logging.getLogger(__name__)

LIBRARY_LOADING_MESSAGE = "PDF library is still loading. Please wait a moment and try again."


class ExtractorState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class UploadFailure:
    filename: str
    message: str


class PdfTextExtractor:
    """
    Usage:
        extractor = PdfTextExtractor()
        extractor.bootstrap()
        text, pages = extractor.extract_text(pdf_bytes)
    """

    def __init__(self):
        self.state = ExtractorState.LOADING
        self._pdfplumber = None

    @property
    def ready(self) -> bool:
        return self.state is ExtractorState.READY

    def bootstrap(self) -> ExtractorState:
        """Import pdfplumber once. Safe to call repeatedly."""
        if self.state is ExtractorState.READY:
            return self.state
        try:
            import pdfplumber

            self._pdfplumber = pdfplumber
            self.state = ExtractorState.READY
            logger.info("PDF extractor ready")
        except ImportError as exc:
            self.state = ExtractorState.FAILED
            logger.error("Could not load pdfplumber: %s", exc)
        return self.state

    async def bootstrap_async(self) -> ExtractorState:
        return await asyncio.to_thread(self.bootstrap)

    def extract_text(self, data: bytes) -> Tuple[str, int]:
        """
        Extract the full paginated text of a PDF.

        Returns (text, page_count).

        Raises:
            ExtractionError: extractor not ready, bytes aren't a PDF, no
                pages, or any page failed to decode.
        """
        if self.state is ExtractorState.LOADING:
            raise ExtractionError(LIBRARY_LOADING_MESSAGE)
        if self.state is ExtractorState.FAILED:
            raise ExtractionError("PDF library failed to load")

        # Readers accept the header anywhere in the first 1024 bytes.
        if not data or b"%PDF-" not in data[:1024]:
            raise ExtractionError("File is not a valid PDF")

        try:
            pdf = self._pdfplumber.open(io.BytesIO(data))
        except Exception as exc:
            # pdfminer raises a zoo of exception types for corrupt input
            # (PDFSyntaxError, PSEOF, KeyError, ...). All mean the same here.
            raise ExtractionError(f"File is not a valid PDF: {exc}") from exc

        parts: List[str] = []
        with pdf:
            try:
                pages = pdf.pages
            except Exception as exc:
                raise ExtractionError(f"Could not read PDF page tree: {exc}") from exc
            if not pages:
                raise ExtractionError("PDF has no pages")

            for idx, page in enumerate(pages, start=1):
                try:
                    page_text = page.extract_text() or ""
                except Exception as exc:
                    raise ExtractionError(
                        f"Failed to decode page {idx} of {len(pages)}: {exc}"
                    ) from exc
                parts.append(f"\n--- Page {idx} ---\n{_flatten(page_text)}\n")

        logger.info("Extracted %d pages, %d chars", len(parts), sum(len(p) for p in parts))
        return "".join(parts), len(parts)

    async def extract_text_async(self, data: bytes) -> Tuple[str, int]:
        """Decode in a worker thread so the event loop keeps serving requests."""
        return await asyncio.to_thread(self.extract_text, data)


def _flatten(text: str) -> str:
    """Join a page's lines and runs of whitespace into single spaces."""
    return re.sub(r"\s+", " ", text).strip()


def format_size(num_bytes: int) -> str:
    return f"{num_bytes / 1024:.2f} KB"


def _is_pdf_upload(filename: str, mime_type: Optional[str]) -> bool:
    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in config.accepted_mime_types:
        return True
    # Some clients send every file as octet-stream; fall back to the suffix.
    return mime in ("", "application/octet-stream") and filename.lower().endswith(".pdf")


async def ingest_upload(
    extractor: PdfTextExtractor,
    store: SessionStore,
    filename: str,
    data: bytes,
    mime_type: Optional[str] = "application/pdf",
    settings: Optional[Config] = None,
) -> Document:
    """
    Validate, extract and register one uploaded file.

    Nothing is added to the store unless extraction succeeds.
    """
    settings = settings or config
    if not _is_pdf_upload(filename, mime_type):
        raise ExtractionError("Please upload PDF files only")

    size_mb = len(data) / (1024 * 1024)
    if size_mb > settings.max_file_size_mb:
        raise ExtractionError(
            f"File too large ({size_mb:.1f} MB). Max: {settings.max_file_size_mb} MB"
        )

    text, page_count = await extractor.extract_text_async(data)
    return store.add_document(
        name=filename,
        text=text,
        size_label=format_size(len(data)),
        mime_type="application/pdf",
        page_count=page_count,
    )


async def ingest_batch(
    extractor: PdfTextExtractor,
    store: SessionStore,
    files: Iterable[Tuple[str, bytes, Optional[str]]],
    settings: Optional[Config] = None,
) -> Tuple[List[Document], List[UploadFailure]]:
    """
    Ingest several files. A bad file is reported and skipped; it never
    stops the rest of the batch.

    `files` yields (filename, data, mime_type).
    """
    if not extractor.ready:
        raise ExtractionError(
            LIBRARY_LOADING_MESSAGE
            if extractor.state is ExtractorState.LOADING
            else "PDF library failed to load"
        )

    documents: List[Document] = []
    failures: List[UploadFailure] = []
    for filename, data, mime_type in files:
        try:
            documents.append(
                await ingest_upload(extractor, store, filename, data, mime_type, settings)
            )
        except ExtractionError as exc:
            logger.warning("Failed to process %s: %s", filename, exc)
            failures.append(UploadFailure(filename, f"Failed to process {filename}: {exc}"))

    logger.info("Upload batch: %d ingested, %d rejected", len(documents), len(failures))
    return documents, failures
