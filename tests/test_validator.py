import pytest

from invoice_recon import validator


def _payload(**overrides):
    payload = {
        'products': [{'id': 'prod_1', 'name': 'Widget', 'unitPrice': 100.0, 'taxRate': 0.18, 'priceWithTax': 118.0}],
        'customers': [{'id': 'cust_1', 'name': 'Acme', 'phone': '', 'totalPurchase': 118.0}],
        'invoices': [{
            'id': 'inv_1',
            'serialNumber': 'INV-1',
            'customerId': 'cust_1',
            'items': [{'productId': 'prod_1', 'qty': 1.0, 'unitPrice': 100.0, 'taxRate': 0.18}],
            'tax': 18.0,
            'totalAmount': 118.0,
            'date': '2024-01-01',
        }],
    }
    payload.update(overrides)
    return payload


def test_complete_payload_is_valid():
    result = validator.validate_payload(_payload())
    assert result['summary']['invalid_count'] == 0
    assert result['summary']['total_entities'] == 3


def test_totals_mismatch_detected():
    invoice = dict(_payload()['invoices'][0], totalAmount=150.0)  # mismatch (should be ~118)
    assert 'business_rule:totals_mismatch' in validator.validate_invoice(invoice)


def test_missing_fields_reported():
    invoice = {'id': 'inv_1', 'serialNumber': '', 'customerId': '', 'items': [], 'tax': 0, 'totalAmount': 0,
               'date': ''}
    errors = validator.validate_invoice(invoice)
    assert errors == ['missing_field:serialNumber', 'missing_field:customerId', 'missing_field:items']


def test_dangling_references_reported():
    invoice = dict(_payload()['invoices'][0], customerId='cust_9')
    errors = validator.validate_invoice(invoice, product_ids={'prod_2'}, customer_ids={'cust_1'})
    assert 'dangling_reference:customerId' in errors
    assert 'dangling_reference:productId' in errors


def test_unparsable_date_flagged():
    invoice = dict(_payload()['invoices'][0], date='not a date')
    assert 'invalid_format:date' in validator.validate_invoice(invoice)


def test_product_and_customer_require_names():
    assert validator.validate_product({'name': '', 'unitPrice': 1.0, 'taxRate': 0.0}) == ['missing_field:name']
    assert validator.validate_customer({'name': ''}) == ['missing_field:name']


def test_duplicate_detection():
    invoice = _payload()['invoices'][0]
    payload = _payload(invoices=[invoice, dict(invoice, id='inv_2')])

    result = validator.validate_payload(payload)
    # both should be marked invalid because duplicate detection adds anomaly
    assert result['summary']['duplicate_groups'] == 1
    assert result['summary']['invalid_count'] == 2
    assert result['summary']['error_counts'] == {'invoice:anomaly:duplicate_invoice': 2}


@pytest.mark.parametrize('a,b,expected', [
    (100.0, 100.4, True),
    (100.0, 101.0, False),
    (0.0, 0.0, True),
])
def test_tolerance(a, b, expected):
    assert validator._is_within_tolerance(a, b) is expected
