"""
Decide whether a heuristic extraction is good enough to keep.

A result that fails any check is escalated to the external extraction
service.
"""

import logging

from invoice_recon.cleaner import looks_like_boilerplate
from invoice_recon.models import Fragment
from invoice_recon.utils import to_number

logger = logging.getLogger(__name__)

# Share of boilerplate-looking product names that marks the result as junk.
BOILERPLATE_SHARE = 0.5


def needs_enhancement(fragment: Fragment) -> bool:
    """
    Score a heuristic extraction result.

    Args:
        fragment: Result of the text/heuristic extraction path.

    Returns:
        True when the result should be escalated, False when it is accepted.
    """
    if fragment.item_count() == 0 and not fragment.products:
        logger.debug("Escalating: no line items and no products")
        return True

    names = [p.get('name') for p in fragment.products]
    if names:
        junk = sum(1 for name in names if looks_like_boilerplate(name))
        if junk / len(names) >= BOILERPLATE_SHARE:
            logger.debug(f"Escalating: {junk}/{len(names)} product names look like boilerplate")
            return True
        if all(to_number(p.get('unitPrice')) == 0 for p in fragment.products):
            logger.debug("Escalating: every product has a zero unit price")
            return True

    if len(fragment.invoices) == 1:
        invoice = fragment.invoices[0]
        if not invoice.get('date') or not invoice.get('items'):
            logger.debug("Escalating: invoice is missing its date or items")
            return True

    return False
