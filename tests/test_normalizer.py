import pytest

from invoice_recon.models import Fragment
from invoice_recon.normalizer import normalize


def test_products_deduplicated_by_case_insensitive_name():
    fragment = Fragment(
        products=({'name': 'Widget', 'unitPrice': 10, 'taxRate': 0.1},),
        invoices=({
            'serialNumber': 'A1',
            'customerName': 'Acme',
            'items': [
                {'productName': ' widget ', 'qty': 2, 'unitPrice': 10, 'taxRate': 0.1},
                {'productName': 'Gadget', 'qty': 1, 'unitPrice': 5, 'taxRate': 0},
            ],
        },),
    )
    payload = normalize(fragment)

    assert [(p['id'], p['name']) for p in payload['products']] == [('prod_1', 'Widget'), ('prod_2', 'Gadget')]
    assert [it['productId'] for it in payload['invoices'][0]['items']] == ['prod_1', 'prod_2']


def test_every_reference_resolves():
    fragment = Fragment(invoices=(
        {'customerName': 'Acme', 'items': [{'productName': 'Widget', 'qty': 1, 'unitPrice': 3}]},
        {'customerName': 'Beta', 'items': [{'productName': 'Gadget', 'qty': 1, 'unitPrice': 4}]},
        {'customerName': '', 'items': [{'productName': '', 'qty': 1, 'unitPrice': 4}]},
    ))
    payload = normalize(fragment)

    product_ids = {p['id'] for p in payload['products']}
    customer_ids = {c['id'] for c in payload['customers']}
    for invoice in payload['invoices']:
        assert all(item['productId'] in product_ids for item in invoice['items'])
        assert invoice['customerId'] == '' or invoice['customerId'] in customer_ids
    assert payload['invoices'][2] == {
        'id': 'inv_3', 'serialNumber': '', 'customerId': '', 'items': [], 'tax': 0.0, 'totalAmount': 0.0, 'date': '',
    }


def test_invoice_totals_computed_when_missing():
    fragment = Fragment(invoices=({
        'customerName': 'Acme',
        'items': [{'productName': 'Widget', 'qty': 2, 'unitPrice': 50, 'taxRate': 0.1}],
    },))
    invoice = normalize(fragment)['invoices'][0]
    assert invoice['tax'] == pytest.approx(10.0)
    assert invoice['totalAmount'] == pytest.approx(110.0)


def test_supplied_invoice_totals_win():
    fragment = Fragment(invoices=({
        'customerName': 'Acme',
        'items': [{'productName': 'Widget', 'qty': 2, 'unitPrice': 50, 'taxRate': 0.1}],
        'tax': 12.5,
        'totalAmount': '₹ 112.50',
    },))
    invoice = normalize(fragment)['invoices'][0]
    assert invoice['tax'] == 12.5
    assert invoice['totalAmount'] == 112.5


def test_customer_total_is_sum_of_invoice_totals():
    fragment = Fragment(
        customers=({'name': 'Acme', 'phone': '555-0100', 'totalPurchase': 999},
                   {'name': 'Idle Co', 'totalPurchase': 42}),
        invoices=(
            {'customerName': 'ACME', 'items': [], 'totalAmount': 100},
            {'customerName': 'acme', 'items': [], 'totalAmount': 50.5},
        ),
    )
    customers = normalize(fragment)['customers']

    assert customers[0] == {'id': 'cust_1', 'name': 'Acme', 'phone': '555-0100', 'totalPurchase': 150.5}
    # customers without invoices keep their extracted value
    assert customers[1]['totalPurchase'] == 42.0


def test_price_with_tax_derived_or_kept():
    fragment = Fragment(products=(
        {'name': 'Widget', 'unitPrice': 100, 'taxRate': 0.05},
        {'name': 'Gadget', 'unitPrice': 100, 'taxRate': 0.05, 'priceWithTax': 104, 'quantity': 3, 'discount': 2},
    ))
    widget, gadget = normalize(fragment)['products']

    assert widget['priceWithTax'] == pytest.approx(105.0)
    assert 'quantity' not in widget and 'discount' not in widget
    assert gadget['priceWithTax'] == 104.0
    assert gadget['quantity'] == 3.0
    assert gadget['discount'] == 2.0


def test_empty_fragment_normalizes_to_empty_payload():
    assert normalize(Fragment()) == {'products': [], 'customers': [], 'invoices': []}
