"""
External extraction adapter.

Sends a document (or its CSV rendering) to the generative extraction
service under a fixed JSON contract and turns the answer into a fragment.
Candidates are (model, API revision) pairs tried in order: a missing model
advances to the next candidate, any other failure stops the call. The
adapter never raises to its caller; failures degrade to an empty fragment.
"""

import re
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import logging

from invoice_recon.llm_client import ErrorKind, GeminiClient, ServiceError
from invoice_recon.models import Fragment, empty_fragment, fragment_from_dict
from invoice_recon.response_parser import parse_model_output

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 1000

EXTRACTION_CONTRACT = """
You are an information extraction engine. Extract ONLY structured fields and return JSON that matches EXACTLY this schema. Do not include any explanations or markdown.
{
  "products": [
    {"name": "string", "unitPrice": 0, "taxRate": 0, "priceWithTax": 0, "quantity": 0, "discount": 0}
  ],
  "customers": [
    {"name": "string", "phone": "string", "totalPurchase": 0}
  ],
  "invoices": [
    {
      "serialNumber": "string",
      "customerName": "string",
      "date": "string",
      "items": [{"productName": "string", "qty": 0, "unitPrice": 0, "taxRate": 0}],
      "tax": 0,
      "totalAmount": 0
    }
  ]
}
Rules:
- Use 0 or an empty string when a value is missing; never invent plausible values.
- taxRate is a fraction (e.g., 0.18 for 18%).
- priceWithTax = unitPrice * (1 + taxRate) if not explicitly present.
- Return ONLY JSON. No additional text.
""".strip()

DOCUMENT_INSTRUCTIONS = (
    "Analyze the attached file (it may be an invoice PDF/image or a spreadsheet).\n"
    "- If spreadsheet: detect header synonyms (item/description, qty, rate/price, gst/cgst/sgst/igst, "
    "customer/party, invoice no, date).\n"
    "- If PDF/image: read tables and key-value blocks.\n"
    "- Return arrays even if only one item is found.\n"
    "Return only valid JSON as specified."
)

CSV_INSTRUCTIONS = (
    "The following text is a CSV export of an invoice spreadsheet named {filename}.\n"
    "- Infer headers (e.g., item/description, qty, rate/price, gst/cgst/sgst/igst, customer/party, "
    "invoice no, date, total).\n"
    "- Parse rows into products, customers, and invoices as per the schema.\n"
    "CSV Content (begin):\n\n{csv}\n\nCSV Content (end).\n"
    "Return only valid JSON conforming to the schema."
)

TEXT_INSTRUCTIONS = (
    "The following text was extracted from the invoice document {filename}.\n"
    "- Read the header block, the customer block, the line item table and the totals.\n"
    "Document text (begin):\n\n{text}\n\nDocument text (end).\n"
    "Return only valid JSON conforming to the schema."
)


class Candidate(NamedTuple):
    model: str
    api_version: str


def iter_candidates(models: Sequence[str], api_versions: Sequence[str]) -> Iterator[Candidate]:
    """Yield unique (model, revision) pairs, most specific model first."""
    seen = set()
    for model in models:
        if not model:
            continue
        for api_version in api_versions:
            candidate = Candidate(model, api_version)
            if api_version and candidate not in seen:
                seen.add(candidate)
                yield candidate


class ExtractionFailed(Exception):
    """Every attempted candidate failed; `errors` lists them in order."""

    def __init__(self, errors: List[Tuple[Candidate, ServiceError]]):
        last = errors[-1][1] if errors else None
        super().__init__(str(last) if last else "No extraction candidates configured")
        self.errors = errors


def _record(trail: Optional[list], step: str, **fields: Any) -> None:
    if trail is not None:
        trail.append(dict(step=step, **fields))


class ExtractionAdapter:
    """
    Escalation path to the generative extraction service.

    Args:
        client: Injected service client.
        models: Candidate model identifiers, most specific first.
        api_versions: API revisions to try for each model.
        timeout: Per-call timeout in seconds.
    """

    def __init__(self, client: GeminiClient, models: Sequence[str], api_versions: Sequence[str] = ("v1", "v1beta"),
                 timeout: Optional[float] = None):
        self.client = client
        self.models = list(models)
        self.api_versions = list(api_versions)
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.client.configured and bool(self.models)

    def generate(self, prompt: str, data: Optional[bytes] = None, mime_type: Optional[str] = None,
                 trail: Optional[list] = None) -> Tuple[Candidate, str]:
        """
        Return the text from the first candidate that answers.

        Raises:
            ExtractionFailed: When a terminal error occurs or every candidate
                reports a missing model.
        """
        errors: List[Tuple[Candidate, ServiceError]] = []
        for candidate in iter_candidates(self.models, self.api_versions):
            try:
                text = self.client.generate_content(
                    candidate.model, prompt, data=data, mime_type=mime_type,
                    api_version=candidate.api_version, timeout=self.timeout,
                )
            except ServiceError as e:
                errors.append((candidate, e))
                _record(trail, 'llm-candidate-failed', model=candidate.model, apiVersion=candidate.api_version,
                        kind=e.kind.value, error=str(e))
                if not e.kind.retryable:
                    break
                continue
            _record(trail, 'llm-candidate-used', model=candidate.model, apiVersion=candidate.api_version)
            return candidate, text
        raise ExtractionFailed(errors)

    def _extract(self, prompt: str, data: Optional[bytes], mime_type: Optional[str], label: str,
                 trail: Optional[list]) -> Fragment:
        if not self.available:
            _record(trail, 'llm-skipped', reason='no API key or candidate models', source=label)
            return empty_fragment()
        try:
            candidate, text = self.generate(prompt, data=data, mime_type=mime_type, trail=trail)
        except ExtractionFailed as e:
            logger.warning(f"External extraction failed for {label}: {e}")
            _record(trail, 'llm-failed', source=label, error=str(e))
            return empty_fragment()

        _record(trail, 'llm-response', source=label, model=candidate.model, length=len(text or ''),
                preview=(text or '')[:PREVIEW_CHARS])
        parsed = parse_model_output(text)
        if parsed is None:
            _record(trail, 'llm-unparseable', source=label)
            return empty_fragment()
        return fragment_from_dict(parsed)

    def extract_document(self, data: bytes, mime_type: str, filename: str = 'document',
                         trail: Optional[list] = None) -> Fragment:
        """Extract from raw document bytes sent inline with their media type."""
        prompt = f"{EXTRACTION_CONTRACT}\n{DOCUMENT_INSTRUCTIONS}"
        return self._extract(prompt, data, mime_type, filename, trail)

    def extract_csv_text(self, csv_text: str, filename: str = 'sheet.csv', trail: Optional[list] = None) -> Fragment:
        """Extract from the CSV rendering of a spreadsheet."""
        prompt = f"{EXTRACTION_CONTRACT}\n{CSV_INSTRUCTIONS.format(filename=filename, csv=csv_text)}"
        return self._extract(prompt, None, None, filename, trail)

    def extract_text(self, text: str, filename: str = 'document.txt', trail: Optional[list] = None) -> Fragment:
        """Extract from already-decoded document text."""
        prompt = f"{EXTRACTION_CONTRACT}\n{TEXT_INSTRUCTIONS.format(filename=filename, text=text)}"
        return self._extract(prompt, None, None, filename, trail)


# Google API keys are 39 characters: "AIza" followed by 35 URL-safe characters.
API_KEY_PATTERN = re.compile(r'^AIza[0-9A-Za-z_\-]{35}$')

HEALTH_PROMPT = '{"ping":"ok"}'


def check_connectivity(client: GeminiClient, models: Sequence[str], api_versions: Sequence[str],
                       timeout: float = 4.0) -> Dict[str, Any]:
    """
    Probe the extraction service with a tiny prompt.

    Returns:
        Dictionary with `ok`, `keyPlausible`, and either the responding
        `model`/`apiVersion` or the last `error`.
    """
    key_plausible = bool(API_KEY_PATTERN.match(client.api_key or ''))
    if not client.configured:
        return {'ok': False, 'keyPlausible': False, 'error': 'NO_API_KEY'}

    last_error = 'UNKNOWN'
    for candidate in iter_candidates(models, api_versions):
        try:
            client.generate_content(candidate.model, HEALTH_PROMPT, api_version=candidate.api_version,
                                    timeout=timeout, temperature=0)
        except ServiceError as e:
            last_error = f"{e.kind.value}: {e}"
            if e.kind in (ErrorKind.AUTH, ErrorKind.TRANSPORT):
                break
            continue
        return {'ok': True, 'keyPlausible': key_plausible, 'model': candidate.model,
                'apiVersion': candidate.api_version}
    return {'ok': False, 'keyPlausible': key_plausible, 'error': last_error}
