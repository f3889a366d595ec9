"""
Batch extraction pipeline.

Each uploaded document is dispatched by kind to the spreadsheet or text
heuristics, optionally escalated to the external extraction service, and
reduced to a raw fragment. Fragments are merged in upload order, cleaned and
normalized into the canonical payload.
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import logging

from invoice_recon import decoders
from invoice_recon.adapter import ExtractionAdapter
from invoice_recon.cleaner import clean_fragment
from invoice_recon.column_mapper import extract_from_rows
from invoice_recon.config import Settings
from invoice_recon.llm_client import GeminiClient
from invoice_recon.models import Fragment, empty_fragment, merge_fragments
from invoice_recon.normalizer import normalize
from invoice_recon.quality import needs_enhancement
from invoice_recon.text_extractor import extract_from_text

logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = "No products, customers or invoices could be extracted from the uploaded files."

XLSX_MIME = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
SPREADSHEET_MIME = {'.csv': 'text/csv', '.xls': 'application/vnd.ms-excel'}

SPREADSHEET_EXTENSIONS = {'.xls', '.xlsx', '.xlsm', '.csv'}
TEXT_EXTENSIONS = {'.txt', '.text'}
IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.webp', '.gif', '.bmp', '.tif', '.tiff', '.heic'}


class EmptyBatchError(ValueError):
    """Raised when a batch contains no documents."""


class DocumentKind(Enum):
    SPREADSHEET = 'spreadsheet'
    PDF = 'pdf'
    TEXT = 'text'
    IMAGE = 'image'
    OTHER = 'other'


class UploadedDocument(NamedTuple):
    filename: str
    media_type: str
    content: bytes


def classify_document(filename: str, media_type: str = '') -> DocumentKind:
    """Pick the extraction path from the file extension, falling back to the media type."""
    suffix = Path(filename or '').suffix.lower()
    media_type = (media_type or '').lower()
    if suffix in SPREADSHEET_EXTENSIONS or 'spreadsheet' in media_type or 'excel' in media_type \
            or media_type == 'text/csv':
        return DocumentKind.SPREADSHEET
    if suffix == '.pdf' or media_type == 'application/pdf':
        return DocumentKind.PDF
    if suffix in TEXT_EXTENSIONS or media_type == 'text/plain':
        return DocumentKind.TEXT
    if suffix in IMAGE_EXTENSIONS or media_type.startswith('image/'):
        return DocumentKind.IMAGE
    return DocumentKind.OTHER


class InvoicePipeline:
    """
    Orchestrates extraction for a batch of documents.

    Args:
        adapter: Escalation path to the external service; None disables it.
        workers: Documents processed concurrently (1 = sequential).
        pdf_reader: PDF text decoder returning (page_count, text).
    """

    def __init__(self, adapter: Optional[ExtractionAdapter] = None, workers: int = 1,
                 pdf_reader: Callable[[bytes], Tuple[int, str]] = decoders.read_pdf_text):
        self.adapter = adapter
        self.workers = max(1, workers)
        self.pdf_reader = pdf_reader

    @property
    def escalation_enabled(self) -> bool:
        return self.adapter is not None and self.adapter.available

    # -- per-document paths -------------------------------------------------

    def _from_spreadsheet(self, doc: UploadedDocument, steps: list) -> Fragment:
        try:
            sheets = decoders.read_sheets(doc.content, doc.filename)
        except Exception as e:
            logger.warning(f"Spreadsheet decoding failed for {doc.filename}: {e}")
            steps.append({'step': 'excel-decode-failed', 'name': doc.filename, 'error': str(e)})
            sheets = None
        rows = sheets[0] if sheets else []
        fragment = extract_from_rows(rows, debug_steps=steps)
        if not fragment.is_empty() or not self.escalation_enabled:
            return fragment

        if sheets is not None:
            csv_text = decoders.sheet_to_csv(doc.content, doc.filename)
            if csv_text.strip():
                steps.append({'step': 'excel-csv-fallback', 'note': 'Try AI from CSV text', 'chars': len(csv_text)})
                fragment = self.adapter.extract_csv_text(csv_text, doc.filename, trail=steps)
        if fragment.is_empty():
            steps.append({'step': 'excel-binary-fallback', 'note': 'Try AI from binary spreadsheet'})
            media_type = SPREADSHEET_MIME.get(Path(doc.filename).suffix.lower(), XLSX_MIME)
            fragment = self.adapter.extract_document(doc.content, media_type, doc.filename, trail=steps)
        return fragment

    def _escalate_if_needed(self, heuristic: Fragment, escalate: Callable[[], Fragment], steps: list) -> Fragment:
        if not needs_enhancement(heuristic):
            steps.append({'step': 'heuristic-accepted'})
            return heuristic
        if not self.escalation_enabled:
            steps.append({'step': 'heuristic-weak', 'note': 'External extraction not configured'})
            return heuristic
        steps.append({'step': 'escalate', 'note': 'Heuristic result needs enhancement'})
        enhanced = escalate()
        return heuristic if enhanced.is_empty() else enhanced

    def _from_pdf(self, doc: UploadedDocument, steps: list) -> Fragment:
        try:
            pages, text = self.pdf_reader(doc.content)
        except Exception as e:
            logger.warning(f"PDF text decoding failed for {doc.filename}: {e}")
            steps.append({'step': 'pdf-decode-failed', 'error': str(e)})
            pages, text = 0, ''
        steps.append({'step': 'pdf-text', 'pages': pages, 'chars': len(text)})
        if len(text.strip()) < 10:
            logger.warning(f"PDF text extraction returned very little or no text for {doc.filename}. "
                           f"This might be a scanned/image-based PDF.")
        heuristic = extract_from_text(text)
        return self._escalate_if_needed(
            heuristic,
            lambda: self.adapter.extract_document(doc.content, 'application/pdf', doc.filename, trail=steps),
            steps,
        )

    def _from_text(self, doc: UploadedDocument, steps: list) -> Fragment:
        text = doc.content.decode('utf-8', errors='replace').replace('\r', '')
        heuristic = extract_from_text(text)
        return self._escalate_if_needed(
            heuristic,
            lambda: self.adapter.extract_text(text, doc.filename, trail=steps),
            steps,
        )

    def _from_binary(self, doc: UploadedDocument, steps: list) -> Fragment:
        if not self.escalation_enabled:
            steps.append({'step': 'unsupported-without-ai', 'note': 'External extraction not configured'})
            return empty_fragment()
        steps.append({'step': 'non-excel-file', 'note': 'Use external extraction'})
        media_type = doc.media_type or 'application/octet-stream'
        return self.adapter.extract_document(doc.content, media_type, doc.filename, trail=steps)

    def extract_document(self, doc: UploadedDocument) -> Tuple[Fragment, List[Dict[str, Any]]]:
        """
        Run one document through its extraction path.

        Returns:
            The document's raw fragment and its debug steps. Never raises: any
            failure degrades to an empty fragment for this document only.
        """
        kind = classify_document(doc.filename, doc.media_type)
        steps: List[Dict[str, Any]] = [{
            'step': 'file-received', 'name': doc.filename, 'mimetype': doc.media_type,
            'kind': kind.value, 'size': len(doc.content),
        }]
        handlers = {
            DocumentKind.SPREADSHEET: self._from_spreadsheet,
            DocumentKind.PDF: self._from_pdf,
            DocumentKind.TEXT: self._from_text,
        }
        handler = handlers.get(kind, self._from_binary)
        try:
            fragment = handler(doc, steps)
        except Exception as e:
            logger.exception(f"Extraction failed for {doc.filename}")
            steps.append({'step': 'document-failed', 'name': doc.filename, 'error': str(e)})
            fragment = empty_fragment()
        steps.append({
            'step': 'file-done', 'name': doc.filename, 'products': len(fragment.products),
            'customers': len(fragment.customers), 'invoices': len(fragment.invoices),
        })
        return fragment, steps

    # -- batch ----------------------------------------------------------------

    def extract_from_files(self, documents: Sequence[UploadedDocument], debug: bool = False) -> Dict[str, Any]:
        """
        Extract and reconcile a batch of documents.

        Args:
            documents: Uploaded documents, in upload order.
            debug: Attach a `_debug` object with steps and entity counts.

        Returns:
            Dictionary with `products`, `customers` and `invoices`; plus
            `message` when nothing was extracted.

        Raises:
            EmptyBatchError: If `documents` is empty.
        """
        if not documents:
            raise EmptyBatchError("No files uploaded")

        if self.workers > 1 and len(documents) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(self.extract_document, documents))
        else:
            results = [self.extract_document(doc) for doc in documents]

        merged = merge_fragments(*(fragment for fragment, _ in results))
        result: Dict[str, Any] = normalize(clean_fragment(merged))

        if not (result['products'] or result['customers'] or result['invoices']):
            result['message'] = EMPTY_RESULT_MESSAGE

        if debug:
            result['_debug'] = {
                'steps': [step for _, steps in results for step in steps],
                'counts': {
                    'products': len(result['products']),
                    'customers': len(result['customers']),
                    'invoices': len(result['invoices']),
                },
            }

        logger.info(
            f"Extracted {len(result['products'])} product(s), {len(result['customers'])} customer(s), "
            f"{len(result['invoices'])} invoice(s) from {len(documents)} file(s)"
        )
        return result


def build_pipeline(settings: Settings) -> InvoicePipeline:
    """Construct the pipeline and its service client once per process."""
    client = GeminiClient(settings.api_key, base_url=settings.base_url, timeout=settings.llm_timeout)
    adapter = ExtractionAdapter(client, settings.models, settings.api_versions, timeout=settings.llm_timeout)
    if not client.configured:
        logger.warning("GOOGLE_API_KEY is not set; external extraction is disabled")
    return InvoicePipeline(adapter=adapter, workers=settings.workers)
