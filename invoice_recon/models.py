"""
Raw extraction fragments.

A fragment is one unreconciled extraction result: the products, customers
and invoices recovered from a single document (or a single model call),
before deduplication. Entries are plain dicts using the camelCase keys of
the JSON contract shared with the extraction service and the client.

Fragments are immutable; `merge_fragments` builds a new one.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fragment:
    products: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    customers: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    invoices: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)

    def is_empty(self) -> bool:
        return not (self.products or self.customers or self.invoices)

    def item_count(self) -> int:
        return sum(len(inv.get('items') or []) for inv in self.invoices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'products': [dict(p) for p in self.products],
            'customers': [dict(c) for c in self.customers],
            'invoices': [dict(inv, items=[dict(it) for it in inv.get('items') or []]) for inv in self.invoices],
        }


def empty_fragment() -> Fragment:
    return Fragment()


def _dict_entries(value: Any) -> Tuple[Dict[str, Any], ...]:
    if not isinstance(value, list):
        return ()
    return tuple(entry for entry in value if isinstance(entry, dict))


def fragment_from_dict(obj: Any) -> Fragment:
    """
    Build a fragment from a loosely-shaped object (e.g. parsed model output).

    Missing keys, non-list values and non-dict entries are ignored, so this
    never raises on odd input. Invoice `items` that are not a list become [].
    """
    if not isinstance(obj, dict):
        if obj is not None:
            logger.debug(f"Ignoring non-object extraction result of type {type(obj).__name__}")
        return empty_fragment()

    invoices = []
    for inv in _dict_entries(obj.get('invoices')):
        items = [it for it in (inv.get('items') or []) if isinstance(it, dict)] if isinstance(inv.get('items'), list) else []
        invoices.append(dict(inv, items=items))

    return Fragment(
        products=_dict_entries(obj.get('products')),
        customers=_dict_entries(obj.get('customers')),
        invoices=tuple(invoices),
    )


def merge_fragments(*fragments: Fragment) -> Fragment:
    """Concatenate fragments in argument order."""
    return Fragment(
        products=tuple(p for frag in fragments for p in frag.products),
        customers=tuple(c for frag in fragments for c in frag.customers),
        invoices=tuple(inv for frag in fragments for inv in frag.invoices),
    )
