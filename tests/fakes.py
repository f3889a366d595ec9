"""Shared test doubles and sample documents."""

import json

from invoice_recon.llm_client import ServiceError

VALID_KEY = 'AIza' + 'x' * 35

RESPONSE = json.dumps({
    'products': [{'name': 'Widget', 'unitPrice': 10, 'taxRate': 0.18}],
    'customers': [{'name': 'Acme', 'phone': '', 'totalPurchase': 11.8}],
    'invoices': [{'serialNumber': 'INV-9', 'customerName': 'Acme', 'date': '2024-01-01',
                  'items': [{'productName': 'Widget', 'qty': 1, 'unitPrice': 10, 'taxRate': 0.18}],
                  'tax': 1.8, 'totalAmount': 11.8}],
})

TABLE_INVOICE = """TAX INVOICE
Invoice No: INV-2024-017
Date: 15/03/2024
Bill To:
Acme Traders
Phone: +91 98765 43210

Description   Qty   Rate   Amount
Widget A   2   100.00   200.00
Gadget B   1   50.00   50.00
Sub Total   250.00
GST 18%   45.00
Grand Total   295.00
"""


class FakeClient:
    """Stands in for GeminiClient; `failures` maps model name to the ErrorKind it raises."""

    def __init__(self, failures=None, text=RESPONSE, api_key=VALID_KEY):
        self.failures = failures or {}
        self.text = text
        self.api_key = api_key
        self.calls = []
        self.mime_types = []

    @property
    def configured(self):
        return bool(self.api_key)

    def generate_content(self, model, prompt, data=None, mime_type=None, api_version='v1', timeout=None,
                         temperature=0.2):
        self.calls.append((model, api_version))
        self.mime_types.append(mime_type)
        kind = self.failures.get(model)
        if kind is not None:
            raise ServiceError(kind, f"{model} failed")
        return self.text
