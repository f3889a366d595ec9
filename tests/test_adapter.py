import pytest

from invoice_recon.adapter import ExtractionAdapter, check_connectivity, iter_candidates
from invoice_recon.llm_client import ErrorKind, classify_status

from fakes import RESPONSE, FakeClient


def test_missing_models_fall_through_to_next_candidate():
    client = FakeClient(failures={m: ErrorKind.MODEL_NOT_FOUND for m in ('m1', 'm2', 'm3')})
    adapter = ExtractionAdapter(client, ['m1', 'm2', 'm3', 'm4'], api_versions=['v1'])
    trail = []

    fragment = adapter.extract_document(b'%PDF', 'application/pdf', 'inv.pdf', trail=trail)

    assert client.calls == [('m1', 'v1'), ('m2', 'v1'), ('m3', 'v1'), ('m4', 'v1')]
    assert [p['name'] for p in fragment.products] == ['Widget']
    assert fragment.invoices[0]['serialNumber'] == 'INV-9'
    assert [s['step'] for s in trail].count('llm-candidate-failed') == 3
    assert {'step': 'llm-candidate-used', 'model': 'm4', 'apiVersion': 'v1'} in trail


@pytest.mark.parametrize('kind', [ErrorKind.AUTH, ErrorKind.RATE_LIMITED, ErrorKind.SERVER, ErrorKind.TRANSPORT])
def test_terminal_error_stops_fallback(kind):
    client = FakeClient(failures={'m1': kind})
    adapter = ExtractionAdapter(client, ['m1', 'm2'], api_versions=['v1'])
    trail = []

    fragment = adapter.extract_text('some text', 'inv.txt', trail=trail)

    assert fragment.is_empty()
    assert client.calls == [('m1', 'v1')]
    assert trail[-1]['step'] == 'llm-failed'


def test_candidates_are_model_major_across_revisions():
    client = FakeClient(failures={'m1': ErrorKind.MODEL_NOT_FOUND})
    adapter = ExtractionAdapter(client, ['m1', 'm2'], api_versions=['v1', 'v1beta'])
    adapter.extract_csv_text('a,b\n1,2\n', 'sheet.csv')
    assert client.calls == [('m1', 'v1'), ('m1', 'v1beta'), ('m2', 'v1')]


def test_iter_candidates_skips_duplicates_and_blanks():
    assert list(iter_candidates(['m1', '', 'm1', 'm2'], ['v1'])) == [('m1', 'v1'), ('m2', 'v1')]


def test_fenced_response_is_parsed():
    client = FakeClient(text=f"```json\n{RESPONSE}\n```")
    adapter = ExtractionAdapter(client, ['m1'], api_versions=['v1'])
    assert not adapter.extract_text('text').is_empty()


def test_unparseable_response_degrades_to_empty():
    client = FakeClient(text='I could not read this invoice.')
    adapter = ExtractionAdapter(client, ['m1'], api_versions=['v1'])
    trail = []
    assert adapter.extract_text('text', trail=trail).is_empty()
    assert trail[-1] == {'step': 'llm-unparseable', 'source': 'document.txt'}


def test_unconfigured_adapter_skips_service():
    client = FakeClient(api_key='')
    adapter = ExtractionAdapter(client, ['m1'])
    trail = []
    assert adapter.extract_document(b'data', 'image/png', 'scan.png', trail=trail).is_empty()
    assert client.calls == []
    assert trail[0]['step'] == 'llm-skipped'


@pytest.mark.parametrize('status,kind', [
    (404, ErrorKind.MODEL_NOT_FOUND),
    (401, ErrorKind.AUTH),
    (403, ErrorKind.AUTH),
    (429, ErrorKind.RATE_LIMITED),
    (503, ErrorKind.SERVER),
    (400, ErrorKind.BAD_REQUEST),
])
def test_classify_status(status, kind):
    assert classify_status(status) is kind


def test_only_missing_model_is_retryable():
    assert [k for k in ErrorKind if k.retryable] == [ErrorKind.MODEL_NOT_FOUND]


def test_check_connectivity_reports_responding_model():
    client = FakeClient(failures={'m1': ErrorKind.MODEL_NOT_FOUND})
    result = check_connectivity(client, ['m1', 'm2'], ['v1'])
    assert result == {'ok': True, 'keyPlausible': True, 'model': 'm2', 'apiVersion': 'v1'}


def test_check_connectivity_without_key():
    result = check_connectivity(FakeClient(api_key=''), ['m1'], ['v1'])
    assert result == {'ok': False, 'keyPlausible': False, 'error': 'NO_API_KEY'}


def test_check_connectivity_stops_on_auth_failure():
    client = FakeClient(failures={'m1': ErrorKind.AUTH}, api_key='not-a-google-key')
    result = check_connectivity(client, ['m1', 'm2'], ['v1', 'v1beta'])
    assert result['ok'] is False
    assert result['keyPlausible'] is False
    assert result['error'].startswith('auth:')
    assert client.calls == [('m1', 'v1')]
