"""
Heuristic invoice extraction from decoded document text.

Each field is recovered independently by its own finder so the heuristics
can be tested in isolation. Line items come from an ordered strategy table:
the first strategy that yields items wins.

Limitations: works on text-based documents only. Scanned images produce no
text and are left to the external extraction service.
"""

import re
from collections import namedtuple
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import logging

from invoice_recon.models import Fragment, empty_fragment
from invoice_recon.utils import CURRENCY, parse_amount

logger = logging.getLogger(__name__)

HEADER_SCAN_LINES = 20
TOTAL_SCAN_LINES = 40
BLOCK_LOOKAHEAD = 3
AMOUNT_TOLERANCE = 0.3

_AMOUNT = r'[\d,]+(?:\.\d+)?'
_CURRENCY = CURRENCY


# 1. CUSTOMER NAME
# Handles: "Bill To: Acme", "Billed To", "Sold To", "Customer:", block labels
# followed by the name on the next line(s).
CUSTOMER_LABEL_PATTERN = re.compile(
    r'^\s*(?:bill(?:ed)?\s+to|sold\s+to|ship(?:ped)?\s+to|invoice\s+to|customer(?:\s+name)?|buyer(?:\s+name)?|'
    r'client(?:\s+name)?|consignee|party(?:\s+name)?|recipient)\b\s*[:\-]?\s*(?P<rest>.*)$',
    re.IGNORECASE
)

CUSTOMER_INLINE_PATTERN = re.compile(
    r'(?:customer|buyer|client|party)\s*name\s*[:\-]\s*(?P<name>[A-Za-z][A-Za-z0-9 &.,\'()\-]{1,80})',
    re.IGNORECASE
)

# Lines below a "Bill To" label that hold metadata rather than the name.
METADATA_LINE_PATTERN = re.compile(
    r'^\s*(?:(?:invoice|inv|bill\s+no|id|no|code|date|due|gstin|gst|pan|cin|vat|tax|phone|ph|mobile|mob|tel|contact|'
    r'e-?mail|address|state|place\s+of\s+supply|po|order|ship(?:ped)?\s+to|terms|page)\b|p\.o\.|www\.|http)',
    re.IGNORECASE
)


def _clean_name(value: str) -> str:
    name = re.sub(r'\s+', ' ', value).strip()
    name = re.sub(r'\s*[,;:\-]\s*$', '', name)
    return name


def _acceptable_name(value: str) -> bool:
    if not value or len(value) < 2 or len(value) > 120:
        return False
    if not re.search(r'[A-Za-z]', value):
        return False
    return not METADATA_LINE_PATTERN.match(value)


def find_customer_name(lines: Sequence[str]) -> str:
    """Find the customer name from a labeled block, else an inline key/value pair."""
    for i, line in enumerate(lines):
        match = CUSTOMER_LABEL_PATTERN.match(line)
        if not match:
            continue
        rest = _clean_name(match.group('rest'))
        if _acceptable_name(rest):
            return rest
        for follower in lines[i + 1:i + 1 + BLOCK_LOOKAHEAD]:
            candidate = _clean_name(follower)
            if not candidate:
                continue
            if _acceptable_name(candidate):
                return candidate

    for line in lines:
        match = CUSTOMER_INLINE_PATTERN.search(line)
        if match:
            name = _clean_name(match.group('name'))
            if _acceptable_name(name):
                return name
    return ''


# 2. PHONE
# Handles: "Phone: +91 98765 43210", "Mob. No. 9876543210", "Tel (022) 2345-6789"
PHONE_LABEL_PATTERN = re.compile(
    r'\b(?:phone|mobile|mob|tel|telephone|contact|cell|ph)\.?\s*(?:no\.?|number|#)?\s*[:\-]?\s*(?P<phone>\+?[\d\s\-().]{7,24})',
    re.IGNORECASE
)
PHONE_BARE_PATTERN = re.compile(r'(?<![\w.,/:-])(?P<phone>\+?\(?\d[\d\s\-()]{5,20}\d)(?![\w.,/])')
PHONE_BARE_SKIP = re.compile(r'total|amount|date|invoice|inv\b|gst|vat|tax|qty|price|rate|a/c|account|ifsc|pin', re.IGNORECASE)


def _phone_digits(raw: str) -> Optional[str]:
    digits = re.sub(r'\D', '', raw)
    if not 7 <= len(digits) <= 15:
        return None
    return ('+' if raw.strip().startswith('+') else '') + digits


def find_phone(lines: Sequence[str]) -> str:
    """Find a phone number: labeled first, then bare digit groups."""
    for line in lines:
        for match in PHONE_LABEL_PATTERN.finditer(line):
            phone = _phone_digits(match.group('phone'))
            if phone:
                return phone

    for line in lines:
        if PHONE_BARE_SKIP.search(line):
            continue
        for match in PHONE_BARE_PATTERN.finditer(line):
            phone = _phone_digits(match.group('phone'))
            if phone:
                return phone
    return ''


# 3. SERIAL NUMBER
# Handles: "Invoice No: INV-001", "Invoice # 42", "Bill No. A/12", "Receipt Number 7788"
SERIAL_LABEL_PATTERN = re.compile(
    r'\b(?:invoice|inv|bill|receipt)\s*(?:no\.?|number|num\.?|#)\s*[:\-]?\s*(?P<serial>[A-Z0-9][A-Z0-9\-/]*)?',
    re.IGNORECASE
)
SERIAL_TOKEN_PATTERN = re.compile(r'^\s*[:#\-]?\s*(?P<serial>[A-Z0-9][A-Z0-9\-/]*)', re.IGNORECASE)


def find_serial_number(lines: Sequence[str]) -> str:
    """Find a labeled invoice number containing at least one digit."""
    for i, line in enumerate(lines):
        for match in SERIAL_LABEL_PATTERN.finditer(line):
            serial = match.group('serial')
            if serial and re.search(r'\d', serial):
                return serial
            # Label at the end of the line: the number sits on the next line.
            if not line[match.end():].strip() and i + 1 < len(lines):
                following = SERIAL_TOKEN_PATTERN.match(lines[i + 1])
                if following and re.search(r'\d', following.group('serial')):
                    return following.group('serial')
    return ''


# 4. DATE
# Handles: "2024-03-15", "15/03/2024", "15-03-2024", "15.03.2024", "March 15, 2024"
ISO_DATE_PATTERN = re.compile(r'\b(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})\b')
DMY_DATE_PATTERN = re.compile(r'\b(?P<first>\d{1,2})[/\-.](?P<second>\d{1,2})[/\-.](?P<year>\d{4})\b')
LITERAL_DATE_PATTERN = re.compile(
    r'\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|'
    r'sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+\d{1,2},\s*\d{4}\b',
    re.IGNORECASE
)
DATE_LABEL_PATTERN = re.compile(r'\bdate\b\s*[:\-]?\s*(?P<rest>.*)$', re.IGNORECASE)


def _format_date(year: int, month: int, day: int) -> Optional[str]:
    if not 1900 <= year <= 2100:
        return None
    try:
        return datetime(year, month, day).strftime('%Y-%m-%d')
    except ValueError:
        return None


def parse_date_token(text: str) -> Optional[str]:
    """
    Find the first date in `text` and normalize it to YYYY-MM-DD.

    Literal "Month DD, YYYY" dates are returned as written.
    """
    match = ISO_DATE_PATTERN.search(text)
    if match:
        normalized = _format_date(int(match.group('year')), int(match.group('month')), int(match.group('day')))
        if normalized:
            return normalized

    for match in DMY_DATE_PATTERN.finditer(text):
        first, second, year = int(match.group('first')), int(match.group('second')), int(match.group('year'))
        # dd/mm/yyyy, or mm/dd/yyyy when the second field can only be a day
        normalized = _format_date(year, second, first)
        if not normalized and second > 12 and first <= 12:
            normalized = _format_date(year, first, second)
        if normalized:
            return normalized

    match = LITERAL_DATE_PATTERN.search(text)
    if match:
        return match.group(0)
    return None


def find_date(lines: Sequence[str]) -> str:
    """Find the invoice date: labeled lines first, then the document header."""
    for line in lines:
        match = DATE_LABEL_PATTERN.search(line)
        if match and not re.search(r'\bdue\s+date\b', line, re.IGNORECASE):
            found = parse_date_token(match.group('rest'))
            if found:
                return found

    for line in lines[:HEADER_SCAN_LINES]:
        found = parse_date_token(line)
        if found:
            return found
    return ''


# 5. GRAND TOTAL
# Synonyms in priority order; bare "total" last and never "sub total".
TOTAL_SYNONYMS = (
    r'grand\s+total',
    r'total\s+amount',
    r'invoice\s+total',
    r'amount\s+payable',
    r'net\s+payable',
    r'balance\s+due',
    r'amount\s+due',
    r'total\s+due',
    r'(?<!sub)(?<!sub\s)(?<!sub-)\btotal',
)
TOTAL_PATTERNS = [
    re.compile(
        rf'{synonym}\b[^\d\n]{{0,20}}?[:\-]?\s*{_CURRENCY}?\s*(?P<amount>{_AMOUNT})',
        re.IGNORECASE
    )
    for synonym in TOTAL_SYNONYMS
]


def find_grand_total(lines: Sequence[str]) -> float:
    """Find the grand total near the end of the document."""
    tail = list(lines[-TOTAL_SCAN_LINES:])
    for pattern in TOTAL_PATTERNS:
        for line in reversed(tail):
            match = pattern.search(line)
            if match:
                amount = parse_amount(match.group('amount'))
                if amount:
                    return amount
    return 0.0


# 6. TAX RATE
# Handles: "GST @ 18%", "IGST 12%", "CGST 9% ... SGST 9%", "VAT (20%)"
TAX_RATE_PATTERN = re.compile(
    r'\b(?P<kind>cgst|sgst|utgst|igst|gst|vat|tax)\b[^%\d\n]{0,12}(?P<rate>\d{1,2}(?:\.\d+)?)\s*%',
    re.IGNORECASE
)


def find_tax_rate(lines: Sequence[str]) -> float:
    """Document-level tax rate as a fraction; split CGST/SGST rates are summed."""
    split_rates: Dict[str, float] = {}
    whole_rate = 0.0
    for line in lines:
        for match in TAX_RATE_PATTERN.finditer(line):
            kind = match.group('kind').lower()
            rate = float(match.group('rate')) / 100
            if kind in ('cgst', 'sgst', 'utgst'):
                split_rates.setdefault(kind, rate)
            elif not whole_rate:
                whole_rate = rate
    if split_rates:
        return sum(split_rates.values())
    return whole_rate


# 7. LINE ITEMS
ITEM_HEADER_DESCRIPTION = re.compile(r'\b(?:description|item|product|particulars|goods|services?|details)\b', re.IGNORECASE)
ITEM_HEADER_QUANTITY = re.compile(r'\b(?:qty|quantity|pcs|units?|nos|hrs|hours)\b', re.IGNORECASE)
ITEM_HEADER_PRICE = re.compile(r'\b(?:price|rate|amount|cost|mrp|total)\b', re.IGNORECASE)

ITEM_BOUNDARY_PATTERN = re.compile(
    r'^\s*(?:(?:sub\s*-?\s*total|total|grand\s+total|net\s+amount|amount\s+(?:due|payable|in\s+words)|balance|'
    r'tax(?:able)?|cgst|sgst|igst|vat|round(?:ing)?\s+off|terms|notes?|thank|bank|declaration)\b|authori[sz]ed)',
    re.IGNORECASE
)

NON_PRODUCT_PATTERN = re.compile(
    r'^\s*(?:sub\s*-?\s*total|total|grand|net|tax|gst|cgst|sgst|igst|vat|invoice|inv|bill|date|due|phone|mobile|'
    r'tel|email|balance|amount|discount|shipping|freight|round|paid|payment|bank|a/c|account|ifsc|gstin|pan|'
    r'page|qty|quantity|rate|price|cash|change|card|customer|order|po|hsn|sac|pin|zip)\b',
    re.IGNORECASE
)

INLINE_ITEM_PATTERN = re.compile(
    rf'^\s*(?:\d{{1,3}}[.)]?\s+)?(?P<name>.+?)\s+[xX×*]\s*(?P<qty>\d+(?:\.\d+)?)\s*@\s*{_CURRENCY}?\s*(?P<price>{_AMOUNT})',
    re.IGNORECASE
)

FIELD_SPLIT = re.compile(r'\t+|\s{2,}|\s*\|\s*')

LinePattern = namedtuple('LinePattern', ['name', 'pattern', 'accept'])


def _number_token(token: str) -> Optional[float]:
    token = token.strip()
    if not re.fullmatch(rf'{_CURRENCY}?\s*-?{_AMOUNT}', token, re.IGNORECASE):
        return None
    return parse_amount(token)


def _item(name: str, qty: float, price: float, tax_rate: float = 0.0) -> Dict[str, Any]:
    return {'productName': _clean_name(name), 'qty': qty, 'unitPrice': price, 'taxRate': tax_rate}


def _item_from_fields(line: str) -> Optional[Dict[str, Any]]:
    """Parse a delimited table row: name fields, then quantity and prices."""
    fields = [f for f in FIELD_SPLIT.split(line.strip()) if f]
    if len(fields) < 3:
        fields = line.split()
    if len(fields) < 3:
        return None

    # A leading row number ("1", "2.") is not part of the name.
    if re.fullmatch(r'\d{1,3}[.)]?', fields[0]) and len(fields) > 3 and _number_token(fields[1]) is None:
        fields = fields[1:]

    name_parts: List[str] = []
    numbers: List[float] = []
    tax_rate = 0.0
    for field_text in fields:
        percent = re.fullmatch(r'(\d{1,2}(?:\.\d+)?)\s*%', field_text.strip())
        if percent:
            tax_rate = float(percent.group(1)) / 100
            continue
        value = _number_token(field_text)
        if value is None:
            if not numbers:
                name_parts.append(field_text)
            continue
        if not name_parts:
            return None
        numbers.append(value)

    name = _clean_name(' '.join(name_parts))
    if not name or not numbers or not re.search(r'[A-Za-z]', name):
        return None

    qty_index = next((i for i, value in enumerate(numbers) if 0 < value <= 1000 and value == int(value)), None)
    if qty_index is None or qty_index == len(numbers) - 1:
        qty = 1.0
        trailing = numbers[qty_index + 1:] if qty_index is not None and qty_index < len(numbers) - 1 else numbers
    else:
        qty = numbers[qty_index]
        trailing = numbers[qty_index + 1:]

    if len(trailing) >= 2:
        price, amount = trailing[-2], trailing[-1]
        if amount and abs(qty * price - amount) > AMOUNT_TOLERANCE * amount:
            price = max(trailing[:-1])
    else:
        price = trailing[-1]
    return _item(name, qty, price, tax_rate)


def _items_from_header_table(lines: Sequence[str]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    header_index = None
    for i, line in enumerate(lines):
        if (ITEM_HEADER_DESCRIPTION.search(line) and ITEM_HEADER_QUANTITY.search(line)
                and ITEM_HEADER_PRICE.search(line)):
            header_index = i
            break
    if header_index is None:
        return items

    for line in lines[header_index + 1:]:
        if not line.strip():
            continue
        if ITEM_BOUNDARY_PATTERN.match(line):
            break
        inline = INLINE_ITEM_PATTERN.match(line)
        if inline:
            items.append(_item(inline.group('name'), float(inline.group('qty')), parse_amount(inline.group('price')) or 0.0))
            continue
        item = _item_from_fields(line)
        if item:
            items.append(item)
    return items


def _amount_consistent(match) -> bool:
    qty = float(match.group('qty'))
    price = parse_amount(match.group('price')) or 0.0
    amount = parse_amount(match.group('amount')) or 0.0
    return amount > 0 and abs(qty * price - amount) <= AMOUNT_TOLERANCE * amount


def _not_keyword_line(match) -> bool:
    return not NON_PRODUCT_PATTERN.match(match.group('name'))


NUMBERED_ROW = LinePattern(
    'numbered-row',
    re.compile(
        rf'^\s*\d{{1,3}}[.)]?\s+(?P<name>.*?[A-Za-z].*?)\s+(?P<qty>\d+(?:\.\d+)?)\s+(?:[A-Za-z]{{1,5}}\.?\s+)?'
        rf'{_CURRENCY}?\s*(?P<price>{_AMOUNT})\s+{_CURRENCY}?\s*(?P<amount>{_AMOUNT})\s*$',
        re.IGNORECASE
    ),
    _amount_consistent,
)

LOOSE_ROW_PATTERNS = (
    LinePattern(
        'name-qty-price-amount',
        re.compile(
            rf'^\s*(?P<name>[A-Za-z][A-Za-z0-9 &()./\'\-]*?)\s+(?P<qty>\d+(?:\.\d+)?)\s+{_CURRENCY}?\s*(?P<price>{_AMOUNT})'
            rf'\s+{_CURRENCY}?\s*(?P<amount>{_AMOUNT})\s*$',
            re.IGNORECASE
        ),
        _not_keyword_line,
    ),
    LinePattern(
        'name-price',
        re.compile(
            rf'^\s*(?P<name>[A-Za-z][A-Za-z0-9 &()./\'\-]*?)\s+{_CURRENCY}?\s*(?P<price>\d[\d,]*\.\d{{2}})\s*$',
            re.IGNORECASE
        ),
        _not_keyword_line,
    ),
)


def _match_rows(lines: Sequence[str], patterns: Sequence[LinePattern]) -> List[Dict[str, Any]]:
    items = []
    for line in lines:
        for row in patterns:
            match = row.pattern.match(line)
            if match and row.accept(match):
                groups = match.groupdict()
                qty = float(groups['qty']) if groups.get('qty') else 1.0
                items.append(_item(groups['name'], qty, parse_amount(groups['price']) or 0.0))
                break
    return items


def _items_from_numbered_rows(lines: Sequence[str]) -> List[Dict[str, Any]]:
    return _match_rows(lines, (NUMBERED_ROW,))


def _items_from_loose_lines(lines: Sequence[str]) -> List[Dict[str, Any]]:
    return _match_rows(lines, LOOSE_ROW_PATTERNS)


ITEM_STRATEGIES: Tuple[Tuple[str, Callable[[Sequence[str]], List[Dict[str, Any]]]], ...] = (
    ('header-table', _items_from_header_table),
    ('numbered-rows', _items_from_numbered_rows),
    ('loose-lines', _items_from_loose_lines),
)


def find_line_items(lines: Sequence[str]) -> List[Dict[str, Any]]:
    """Run the item strategies in order and return the first non-empty result."""
    for name, strategy in ITEM_STRATEGIES:
        items = strategy(lines)
        if items:
            logger.debug(f"Line items recovered by '{name}' strategy: {len(items)}")
            return items
    return []


def split_lines(text: str) -> List[str]:
    return [re.sub(r'[ \t]+$', '', line) for line in text.replace('\r', '').split('\n')]


def extract_from_text(text: str) -> Fragment:
    """
    Extract a raw fragment from plain document text.

    Args:
        text: Decoded document text.

    Returns:
        Fragment with at most one invoice. Never raises: empty or unreadable
        text yields an empty fragment.
    """
    try:
        if not text or not text.strip():
            return empty_fragment()
        return _extract(split_lines(text))
    except Exception:
        logger.exception("Heuristic text extraction failed; returning empty fragment")
        return empty_fragment()


def _extract(lines: List[str]) -> Fragment:
    customer_name = find_customer_name(lines)
    phone = find_phone(lines)
    serial = find_serial_number(lines)
    date = find_date(lines)
    grand_total = find_grand_total(lines)
    document_rate = find_tax_rate(lines)
    items = find_line_items(lines)

    for item in items:
        if not item['taxRate'] and document_rate:
            item['taxRate'] = document_rate

    if not (items or customer_name or serial or grand_total):
        logger.debug("No invoice fields recognised in document text")
        return empty_fragment()

    products = tuple(
        {
            'name': item['productName'],
            'unitPrice': item['unitPrice'],
            'taxRate': item['taxRate'],
            'priceWithTax': item['unitPrice'] * (1 + item['taxRate']),
            'quantity': item['qty'],
        }
        for item in items
    )
    customers = ()
    if customer_name:
        customers = ({'name': customer_name, 'phone': phone, 'totalPurchase': grand_total},)

    invoice = {
        'serialNumber': serial,
        'customerName': customer_name,
        'date': date,
        'items': items,
        'tax': sum(it['unitPrice'] * it['qty'] * it['taxRate'] for it in items),
        'totalAmount': grand_total,
    }
    return Fragment(products=products, customers=customers, invoices=(invoice,))
