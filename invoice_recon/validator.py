"""
Validation of the normalized payload with deterministic error tokens.

Flags canonical entities the user still has to complete (missing names,
serial numbers, customers) plus broken references and inconsistent totals.
"""

from typing import Any, Dict, List, Optional, Set, Tuple

from dateutil import parser as date_parser

# Numeric tolerance factor: 0.5%
TOLERANCE_FACTOR = 0.005


def _parse_date(date_str: Any) -> Optional[Any]:
    """Parse date string using dateutil.parser, return None if unparsable."""
    if not date_str:
        return None

    try:
        return date_parser.parse(str(date_str), fuzzy=False)
    except (ValueError, TypeError, OverflowError):
        return None


def _is_within_tolerance(value1: float, value2: float, tolerance: float = TOLERANCE_FACTOR) -> bool:
    """
    Check if two numeric values are within tolerance.

    Uses relative tolerance: |value1 - value2| <= max(|value1|, |value2|) * tolerance
    """
    diff = abs(value1 - value2)
    max_val = max(abs(value1), abs(value2))

    if max_val == 0:
        return diff == 0

    return diff <= max_val * tolerance


def _is_non_negative_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


def validate_product(product: Dict[str, Any]) -> List[str]:
    errors = []
    if not product.get('name'):
        errors.append('missing_field:name')
    if not _is_non_negative_number(product.get('unitPrice')):
        errors.append('missing_field:unitPrice')
    if not _is_non_negative_number(product.get('taxRate')):
        errors.append('missing_field:taxRate')
    return errors


def validate_customer(customer: Dict[str, Any]) -> List[str]:
    errors = []
    if not customer.get('name'):
        errors.append('missing_field:name')
    return errors


def validate_invoice(invoice: Dict[str, Any], product_ids: Optional[Set[str]] = None,
                     customer_ids: Optional[Set[str]] = None) -> List[str]:
    """
    Validate a single canonical invoice.

    Args:
        invoice: Canonical invoice dictionary.
        product_ids: Known product ids; when given, item references are checked.
        customer_ids: Known customer ids; when given, the customer reference is checked.

    Returns:
        List of error tokens (empty when valid).
    """
    errors = []

    if not invoice.get('serialNumber'):
        errors.append('missing_field:serialNumber')
    if not invoice.get('customerId'):
        errors.append('missing_field:customerId')
    elif customer_ids is not None and invoice['customerId'] not in customer_ids:
        errors.append('dangling_reference:customerId')
    items = invoice.get('items') or []
    if not items:
        errors.append('missing_field:items')

    date = invoice.get('date')
    if date and _parse_date(date) is None:
        errors.append('invalid_format:date')

    if product_ids is not None and any(item.get('productId') not in product_ids for item in items):
        errors.append('dangling_reference:productId')

    # Rule: totals_mismatch (subtotal + tax ≈ total), only meaningful with items
    if items:
        subtotal = sum(float(item.get('unitPrice') or 0) * float(item.get('qty') or 0) for item in items)
        expected = subtotal + float(invoice.get('tax') or 0)
        if not _is_within_tolerance(float(invoice.get('totalAmount') or 0), expected):
            errors.append('business_rule:totals_mismatch')

    return errors


def _detect_duplicates(invoices: List[Dict[str, Any]]) -> Dict[Tuple[str, str, str], List[int]]:
    """
    Detect invoices sharing (serialNumber, customerId, date).

    Returns dict mapping the key -> list of indices, for keys seen more than once.
    """
    seen: Dict[Tuple[str, str, str], int] = {}
    duplicates: Dict[Tuple[str, str, str], List[int]] = {}

    for idx, invoice in enumerate(invoices):
        serial = invoice.get('serialNumber')
        if not serial:
            continue
        key = (str(serial), str(invoice.get('customerId') or ''), str(invoice.get('date') or ''))
        if key in seen:
            duplicates.setdefault(key, [seen[key]]).append(idx)
        else:
            seen[key] = idx

    return duplicates


def validate_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a normalized payload.

    Args:
        payload: Dictionary with `products`, `customers` and `invoices`.

    Returns:
        Dictionary with keys:
        - per_entity: List of {entity, id, is_valid, errors}
        - summary: Aggregate statistics
    """
    products = payload.get('products') or []
    customers = payload.get('customers') or []
    invoices = payload.get('invoices') or []
    product_ids = {p.get('id') for p in products}
    customer_ids = {c.get('id') for c in customers}

    per_entity = []
    for product in products:
        per_entity.append(('product', product.get('id'), validate_product(product)))
    for customer in customers:
        per_entity.append(('customer', customer.get('id'), validate_customer(customer)))

    duplicate_map = _detect_duplicates(invoices)
    duplicate_indices = {idx for indices in duplicate_map.values() for idx in indices}
    for idx, invoice in enumerate(invoices):
        errors = validate_invoice(invoice, product_ids, customer_ids)
        if idx in duplicate_indices:
            errors.append('anomaly:duplicate_invoice')
        per_entity.append(('invoice', invoice.get('id'), errors))

    results = [
        {'entity': entity, 'id': entity_id, 'is_valid': not errors, 'errors': errors}
        for entity, entity_id, errors in per_entity
    ]

    error_counts: Dict[str, int] = {}
    for result in results:
        for error in result['errors']:
            key = f"{result['entity']}:{error}"
            error_counts[key] = error_counts.get(key, 0) + 1

    valid_count = sum(1 for r in results if r['is_valid'])
    summary = {
        'total_entities': len(results),
        'valid_count': valid_count,
        'invalid_count': len(results) - valid_count,
        'error_counts': error_counts,
        'duplicate_groups': len(duplicate_map),
    }

    return {
        'per_entity': results,
        'summary': summary
    }
