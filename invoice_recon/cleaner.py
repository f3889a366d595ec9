"""
Filter obviously-invalid entries out of a merged raw fragment.

Heuristic extraction picks up addresses, bank details and footer text as
"products". These are dropped before normalization. Customers are left
untouched.
"""

import re
from typing import Any, Dict

import logging

from invoice_recon.models import Fragment
from invoice_recon.utils import to_number, to_text

logger = logging.getLogger(__name__)

LONG_NAME_LENGTH = 40

BOILERPLATE_KEYWORDS = (
    # addresses
    'address', 'street', 'nagar', 'colony', 'district', 'dist\\.',
    'pin code', 'pincode', 'zip code', 'post box', 'p\\.o\\. box',
    # bank details
    'bank', 'a/c', 'account no', 'account number', 'ifsc', 'swift', 'iban', 'branch', 'upi',
    # tax authority jargon
    'gstin', 'gst no', 'gst number', 'pan no', 'cin', 'hsn', 'sac', 'state code',
    'place of supply', 'reverse charge', 'cgst', 'sgst', 'igst', 'utgst',
    # footer and metadata text
    'terms and conditions', 'terms & conditions', 'terms of payment', 'authorized signatory',
    'authorised signatory', 'declaration', 'e\\. ?& ?o\\.e', 'subject to', 'jurisdiction',
    'amount in words', 'rupees', 'thank you', 'invoice no', 'invoice number', 'invoice date', 'due date',
    'sub total', 'subtotal', 'grand total', 'total amount', 'round off',
    'website', 'computer generated',
)

BOILERPLATE_PATTERN = re.compile(r'(?<![a-z])(?:' + '|'.join(BOILERPLATE_KEYWORDS) + r')(?![a-z])', re.IGNORECASE)

NOISE_TOKENS = {
    'n/a', 'na', 'nil', 'none', 'null', '-', '--', '.', 'x', 'xx', 'xxx', 'test', 'dummy', 'sample',
    'sample item', 'sample product', 'item', 'product', 'description', 'survey', 'questionnaire',
    'feedback', 'lorem ipsum',
}

NOISE_PATTERN = re.compile(r'lorem ipsum|\bsurvey\b|\bsample (?:invoice|data|only)\b', re.IGNORECASE)


def looks_like_boilerplate(name: Any) -> bool:
    """True for names that read like address, bank or tax-jargon lines."""
    text = to_text(name)
    if BOILERPLATE_PATTERN.search(text):
        return True
    return len(text) > LONG_NAME_LENGTH and ',' in text


def is_noise_name(name: Any) -> bool:
    """True for product names that should never become products."""
    text = to_text(name)
    if not text:
        return True
    if looks_like_boilerplate(text):
        return True
    if text.endswith(',') and not re.search(r'\d', text):
        return True
    if ',' in text and text.isupper():
        return True
    lowered = text.lower()
    return lowered in NOISE_TOKENS or bool(NOISE_PATTERN.search(lowered))


def _keep_item(item: Dict[str, Any]) -> bool:
    if is_noise_name(item.get('productName')):
        return False
    return to_number(item.get('unitPrice')) > 0 or to_number(item.get('qty')) > 0


def clean_fragment(fragment: Fragment) -> Fragment:
    """
    Drop noise products and invoice items.

    Args:
        fragment: Merged raw fragment across all documents.

    Returns:
        A new fragment of the same shape. Invoices are kept even when all of
        their items were dropped.
    """
    products = tuple(p for p in fragment.products if not is_noise_name(p.get('name')))
    invoices = tuple(
        dict(inv, items=[it for it in inv.get('items') or [] if _keep_item(it)])
        for inv in fragment.invoices
    )

    dropped_products = len(fragment.products) - len(products)
    dropped_items = fragment.item_count() - sum(len(inv['items']) for inv in invoices)
    if dropped_products or dropped_items:
        logger.info(f"Cleaner dropped {dropped_products} product(s) and {dropped_items} invoice item(s)")

    return Fragment(products=products, customers=fragment.customers, invoices=invoices)
