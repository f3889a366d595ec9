"""
Reconcile a cleaned fragment into canonical Products, Customers and Invoices.

Products and customers are deduplicated by lowercased, trimmed name and get
synthetic ids (`prod_<n>`, `cust_<n>`) in first-seen order. The name -> id
maps live for a single call only, so ids are stable within one extraction
request and not across requests.
"""

from typing import Any, Dict, List, Optional

import logging

from invoice_recon.models import Fragment
from invoice_recon.utils import name_key, to_number, to_text

logger = logging.getLogger(__name__)


class _Registry:
    """Ordered name -> id map for one entity type."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.ids: Dict[str, str] = {}
        self.entities: List[Dict[str, Any]] = []

    def resolve(self, name: Any, build) -> Optional[str]:
        key = name_key(name)
        if not key:
            return None
        if key not in self.ids:
            entity_id = f"{self.prefix}_{len(self.entities) + 1}"
            self.ids[key] = entity_id
            entity = {'id': entity_id, 'name': to_text(name)}
            entity.update(build())
            self.entities.append(entity)
        return self.ids[key]


def _product_fields(raw: Dict[str, Any]):
    def build() -> Dict[str, Any]:
        unit_price = to_number(raw.get('unitPrice'))
        tax_rate = to_number(raw.get('taxRate'))
        product = {
            'unitPrice': unit_price,
            'taxRate': tax_rate,
            'priceWithTax': to_number(raw.get('priceWithTax')) or unit_price * (1 + tax_rate),
        }
        quantity = to_number(raw.get('quantity'))
        if quantity:
            product['quantity'] = quantity
        discount = to_number(raw.get('discount'))
        if discount:
            product['discount'] = discount
        return product
    return build


def _customer_fields(raw: Dict[str, Any]):
    def build() -> Dict[str, Any]:
        return {
            'phone': to_text(raw.get('phone')),
            'totalPurchase': to_number(raw.get('totalPurchase')),
        }
    return build


def normalize(fragment: Fragment) -> Dict[str, List[Dict[str, Any]]]:
    """
    Build the canonical payload from a cleaned fragment.

    Args:
        fragment: Cleaned, merged raw fragment.

    Returns:
        Dictionary with `products`, `customers` and `invoices` lists. Every
        item `productId` and every non-empty invoice `customerId` refers to
        an entry in the returned collections.
    """
    products = _Registry('prod')
    customers = _Registry('cust')

    # Entities listed directly in the fragment win over ones implied by invoices.
    for raw in fragment.products:
        products.resolve(raw.get('name'), _product_fields(raw))
    for raw in fragment.customers:
        customers.resolve(raw.get('name'), _customer_fields(raw))

    invoices = []
    for raw_invoice in fragment.invoices:
        customer_id = customers.resolve(raw_invoice.get('customerName'), _customer_fields({}))

        items = []
        for raw_item in raw_invoice.get('items') or []:
            product_id = products.resolve(raw_item.get('productName'), _product_fields({
                'unitPrice': raw_item.get('unitPrice'),
                'taxRate': raw_item.get('taxRate'),
                'quantity': raw_item.get('qty'),
            }))
            if product_id is None:
                logger.debug("Dropping invoice item without a product name")
                continue
            items.append({
                'productId': product_id,
                'qty': to_number(raw_item.get('qty')),
                'unitPrice': to_number(raw_item.get('unitPrice')),
                'taxRate': to_number(raw_item.get('taxRate')),
            })

        subtotal = sum(it['unitPrice'] * it['qty'] for it in items)
        tax = to_number(raw_invoice.get('tax')) or sum(it['unitPrice'] * it['qty'] * it['taxRate'] for it in items)
        total = to_number(raw_invoice.get('totalAmount')) or subtotal + tax

        invoices.append({
            'id': f"inv_{len(invoices) + 1}",
            'serialNumber': to_text(raw_invoice.get('serialNumber')),
            'customerId': customer_id or '',
            'items': items,
            'tax': tax,
            'totalAmount': total,
            'date': to_text(raw_invoice.get('date')),
        })

    totals: Dict[str, float] = {}
    for invoice in invoices:
        if invoice['customerId']:
            totals[invoice['customerId']] = totals.get(invoice['customerId'], 0.0) + invoice['totalAmount']
    for customer in customers.entities:
        if customer['id'] in totals:
            customer['totalPurchase'] = totals[customer['id']]

    logger.debug(
        f"Normalized {len(products.entities)} product(s), {len(customers.entities)} customer(s), "
        f"{len(invoices)} invoice(s)"
    )
    return {'products': products.entities, 'customers': customers.entities, 'invoices': invoices}
