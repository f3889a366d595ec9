import pytest

from invoice_recon import text_extractor

from fakes import TABLE_INVOICE


def test_extract_from_text_table_invoice():
    fragment = text_extractor.extract_from_text(TABLE_INVOICE)

    assert len(fragment.invoices) == 1
    invoice = fragment.invoices[0]
    assert invoice['serialNumber'] == 'INV-2024-017'
    assert invoice['customerName'] == 'Acme Traders'
    assert invoice['date'] == '2024-03-15'
    assert invoice['totalAmount'] == 295.0
    assert [it['productName'] for it in invoice['items']] == ['Widget A', 'Gadget B']
    assert invoice['items'][0]['qty'] == 2
    assert invoice['items'][0]['unitPrice'] == 100.0
    assert invoice['items'][0]['taxRate'] == pytest.approx(0.18)
    assert invoice['tax'] == pytest.approx(45.0)

    assert [p['name'] for p in fragment.products] == ['Widget A', 'Gadget B']
    assert fragment.customers[0]['phone'] == '+919876543210'


def test_extract_from_text_never_raises_on_empty_input():
    assert text_extractor.extract_from_text('').is_empty()
    assert text_extractor.extract_from_text(None).is_empty()
    assert text_extractor.extract_from_text('   \n  ').is_empty()


def test_customer_name_skips_metadata_lines():
    lines = ['Bill To:', 'GSTIN: 29ABCDE1234F1Z5', 'Beta Stores']
    assert text_extractor.find_customer_name(lines) == 'Beta Stores'


def test_customer_name_same_line_and_inline_fallback():
    assert text_extractor.find_customer_name(['Customer: Gamma Ltd']) == 'Gamma Ltd'
    assert text_extractor.find_customer_name(['Ref: 12 | Client Name: Beta Stores']) == 'Beta Stores'
    assert text_extractor.find_customer_name(['Nothing to see here']) == ''


def test_phone_bare_digit_group():
    assert text_extractor.find_phone(['Acme Traders', '98450 12345']) == '9845012345'
    assert text_extractor.find_phone(['Pin 560001']) == ''


def test_serial_number_requires_digit_and_looks_ahead():
    assert text_extractor.find_serial_number(['Invoice No.', 'A-1029']) == 'A-1029'
    assert text_extractor.find_serial_number(['Invoice No: ABC']) == ''
    assert text_extractor.find_serial_number(['Bill No. 7788']) == '7788'


@pytest.mark.parametrize('text,expected', [
    ('Invoice Date: 2024-03-05', '2024-03-05'),
    ('05.03.2024', '2024-03-05'),
    ('03/25/2024', '2024-03-25'),
    ('March 5, 2024', 'March 5, 2024'),
    ('31/02/2024', None),
    ('01/01/1850', None),
])
def test_parse_date_token(text, expected):
    assert text_extractor.parse_date_token(text) == expected


def test_date_found_in_header_without_label():
    lines = ['ACME SUPPLIES', '12/04/2023', 'Item list']
    assert text_extractor.find_date(lines) == '2023-04-12'


def test_grand_total_only_scans_document_tail():
    lines = ['Grand Total 999.00'] + ['filler line'] * 45
    assert text_extractor.find_grand_total(lines) == 0.0
    assert text_extractor.find_grand_total(['Sub Total 80.00', 'Balance Due: $1,250.50']) == 1250.50


def test_grand_total_ignores_subtotal():
    assert text_extractor.find_grand_total(['Subtotal 80.00']) == 0.0


def test_split_gst_rates_are_summed():
    assert text_extractor.find_tax_rate(['CGST 9%  45.00', 'SGST 9%  45.00']) == pytest.approx(0.18)


def test_numbered_rows_checked_against_amount():
    lines = [
        'Invoice # 88',
        '1  Steel Bolt  10  2.50  25.00',
        '2  Hex Nut  20  1.00  20.00',
        '3  Washer  5  3.00  99.00',
        'Total 45.00',
    ]
    items = text_extractor.find_line_items(lines)
    assert [(it['productName'], it['qty'], it['unitPrice']) for it in items] == [
        ('Steel Bolt', 10.0, 2.5),
        ('Hex Nut', 20.0, 1.0),
    ]


def test_loose_lines_reject_keyword_rows():
    lines = ['Coffee Beans 2 12.50 25.00', 'Milk 3.20', 'Total 28.20']
    items = text_extractor.find_line_items(lines)
    assert [(it['productName'], it['qty'], it['unitPrice']) for it in items] == [
        ('Coffee Beans', 2.0, 12.5),
        ('Milk', 1.0, 3.2),
    ]


def test_header_table_inline_quantity_pattern():
    lines = ['Item   Qty   Price', 'Blue Pen x3 @ 10.00', 'Total 30.00']
    items = text_extractor.find_line_items(lines)
    assert items == [{'productName': 'Blue Pen', 'qty': 3.0, 'unitPrice': 10.0, 'taxRate': 0.0}]
