"""
Spreadsheet extraction by fuzzy header matching.

Each canonical role (serial, customer, product, ...) claims the first header
whose lowercased text contains one of the role's synonyms. Roles are matched
in a fixed priority order and a header can be claimed by one role only.
A generic "name" header goes to the customer only when nothing more
specific matched.
"""

from typing import Any, Dict, List, Optional, Sequence

import logging

from invoice_recon.models import Fragment, empty_fragment
from invoice_recon.utils import normalize_tax_rate, to_number, to_text

logger = logging.getLogger(__name__)


# Ordered by claim priority.
ROLE_SYNONYMS = (
    ('serial', ('serial', 'invoice', 'inv', 'bill no', 'bill', 'sno', 'sr no')),
    ('customer', ('customer', 'party', 'client', 'buyer')),
    ('phone', ('phone', 'mobile', 'contact')),
    ('product', ('product', 'item', 'description')),
    ('quantity', ('qty', 'quantity', 'pcs', 'pieces', 'units')),
    ('unit_price', ('unit price', 'unit', 'price', 'rate', 'amount')),
    ('tax', ('tax', 'gst', 'cgst', 'sgst', 'igst', 'vat')),
    ('total', ('grand total', 'invoice total', 'total amount', 'total', 'amount')),
    ('date', ('invoice date', 'bill date', 'date', 'dt')),
)

# Tried after every role has had its pick, on headers no role's synonyms match.
FALLBACK_SYNONYMS = {'customer': ('name',)}


def map_columns(headers: Sequence[str]) -> Dict[str, Optional[str]]:
    """
    Assign spreadsheet headers to canonical roles.

    Args:
        headers: Column headers in sheet order.

    Returns:
        Mapping of role name to the claimed header, or None when no unclaimed
        header matches the role.
    """
    claimed = set()
    picks: Dict[str, Optional[str]] = {}
    for role, synonyms in ROLE_SYNONYMS:
        picks[role] = None
        for header in headers:
            if header in claimed:
                continue
            lowered = str(header).lower()
            if any(synonym in lowered for synonym in synonyms):
                picks[role] = header
                claimed.add(header)
                break

    # A bare "Name" column is the customer, but "Product Name" is not.
    for role, synonyms in FALLBACK_SYNONYMS.items():
        if picks[role] is not None:
            continue
        for header in headers:
            if header in claimed or _matches_any_role(header):
                continue
            if any(synonym in str(header).lower() for synonym in synonyms):
                picks[role] = header
                claimed.add(header)
                break
    return picks


def _matches_any_role(header: str) -> bool:
    lowered = str(header).lower()
    return any(synonym in lowered for _, synonyms in ROLE_SYNONYMS for synonym in synonyms)


def _cell(row: Dict[str, Any], header: Optional[str]) -> Any:
    return row.get(header, '') if header is not None else ''


def extract_from_rows(rows: List[Dict[str, Any]], debug_steps: Optional[list] = None) -> Fragment:
    """
    Build a raw fragment from spreadsheet rows.

    Args:
        rows: Row records keyed by header; missing cells are empty strings.
        debug_steps: Optional list receiving a record of the header picks.

    Returns:
        Fragment with one invoice per data row. An empty table yields an
        empty fragment, which callers treat as a cue to escalate.
    """
    if not rows:
        return empty_fragment()

    headers = list(rows[0].keys())
    picks = map_columns(headers)
    if debug_steps is not None:
        debug_steps.append({'step': 'excel-headers', 'header': headers, 'picks': picks, 'rows': len(rows)})

    products = []
    customers = []
    invoices = []
    skipped = 0

    for row in rows:
        name = to_text(_cell(row, picks['product']))
        customer = to_text(_cell(row, picks['customer']))
        phone = to_text(_cell(row, picks['phone']))
        unit_price = to_number(_cell(row, picks['unit_price']))
        qty = to_number(_cell(row, picks['quantity']))
        tax_rate = normalize_tax_rate(_cell(row, picks['tax']))
        row_total = to_number(_cell(row, picks['total']))
        date = to_text(_cell(row, picks['date']))
        serial = to_text(_cell(row, picks['serial']))

        if not (name or customer or unit_price or qty or row_total):
            skipped += 1
            continue

        if name:
            products.append({
                'name': name,
                'unitPrice': unit_price,
                'taxRate': tax_rate,
                'priceWithTax': unit_price * (1 + tax_rate),
                'quantity': qty,
            })
        if customer:
            customers.append({'name': customer, 'phone': phone, 'totalPurchase': row_total})
        invoices.append({
            'serialNumber': serial,
            'customerName': customer,
            'date': date,
            'items': [{'productName': name, 'qty': qty, 'unitPrice': unit_price, 'taxRate': tax_rate}] if name else [],
            'tax': unit_price * qty * tax_rate,
            'totalAmount': row_total or unit_price * qty * (1 + tax_rate),
        })

    if skipped:
        logger.debug(f"Skipped {skipped} empty spreadsheet row(s)")

    return Fragment(products=tuple(products), customers=tuple(customers), invoices=tuple(invoices))
