"""
Unit tests for BillingProviderClient
"""

from unittest.mock import Mock, patch

import pytest
import requests

from services.billing_provider_client import BillingProviderClient
from services.common.errors import BillingProviderError


def response(status_code=200, json_data=None, text=''):
    mock = Mock()
    mock.status_code = status_code
    mock.json.return_value = json_data if json_data is not None else {}
    mock.text = text
    return mock


@pytest.fixture
def client():
    return BillingProviderClient(api_key='sk_test', base_url='https://billing.test/v1/',
                                 max_retries=2, retry_delay=0)


class TestBillingProviderClient:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            BillingProviderClient(api_key='')

    @patch('services.billing_provider_client.requests.request')
    def test_create_quote_payload_and_headers(self, mock_request, client):
        mock_request.return_value = response(json_data={'id': 'qt_1'})

        result = client.create_quote('cus_1', [
            {'description': 'Gutter cleaning', 'quantity': 2, 'unit_amount_cents': 5000},
        ], {'title': 'Spring'})

        assert result == {'id': 'qt_1'}
        kwargs = mock_request.call_args.kwargs
        assert kwargs['method'] == 'POST'
        assert kwargs['url'] == 'https://billing.test/v1/quotes'
        assert kwargs['headers']['Authorization'] == 'Bearer sk_test'
        assert kwargs['headers']['Idempotency-Key']
        assert kwargs['json'] == {
            'customer': 'cus_1',
            'line_items': [{'description': 'Gutter cleaning', 'quantity': 2, 'unit_amount': 5000}],
            'metadata': {'title': 'Spring'},
        }

    @patch('services.billing_provider_client.requests.request')
    def test_finalize_and_accept_endpoints(self, mock_request, client):
        mock_request.return_value = response(json_data={'id': 'qt_1'})

        client.finalize_quote('qt_1')
        client.accept_quote('qt_1')

        urls = [call.kwargs['url'] for call in mock_request.call_args_list]
        assert urls == ['https://billing.test/v1/quotes/qt_1/finalize',
                        'https://billing.test/v1/quotes/qt_1/accept']

    @patch('services.billing_provider_client.requests.request')
    def test_payment_intent_amount(self, mock_request, client):
        mock_request.return_value = response(json_data={'id': 'pi_1', 'client_secret': 'secret'})

        result = client.create_payment_intent('cus_1', 15100, {'engagement_id': 'e1'})

        assert result['id'] == 'pi_1'
        payload = mock_request.call_args.kwargs['json']
        assert payload['amount'] == 15100
        assert payload['currency'] == 'usd'

    @patch('services.billing_provider_client.time.sleep')
    @patch('services.billing_provider_client.requests.request')
    def test_retries_server_errors(self, mock_request, mock_sleep, client):
        mock_request.side_effect = [response(503), response(429), response(json_data={'id': 'qt_1'})]

        assert client.finalize_quote('qt_1') == {'id': 'qt_1'}
        assert mock_request.call_count == 3

    @patch('services.billing_provider_client.time.sleep')
    @patch('services.billing_provider_client.requests.request')
    def test_gives_up_after_retries(self, mock_request, mock_sleep, client):
        mock_request.return_value = response(500)

        with pytest.raises(BillingProviderError) as exc_info:
            client.finalize_quote('qt_1')

        assert mock_request.call_count == 3
        assert exc_info.value.details['last_error'] == 'HTTP 500'
        assert exc_info.value.http_status == 502

    @patch('services.billing_provider_client.time.sleep')
    @patch('services.billing_provider_client.requests.request')
    def test_retries_timeouts(self, mock_request, mock_sleep, client):
        mock_request.side_effect = [requests.exceptions.Timeout('slow'), response(json_data={'ok': True})]

        assert client.accept_quote('qt_1') == {'ok': True}

    @patch('services.billing_provider_client.requests.request')
    def test_client_errors_are_not_retried(self, mock_request, client):
        mock_request.return_value = response(400, text='bad customer')

        with pytest.raises(BillingProviderError) as exc_info:
            client.create_payment_intent('cus_missing', 100)

        assert mock_request.call_count == 1
        assert exc_info.value.details['status_code'] == 400
        assert exc_info.value.details['body'] == 'bad customer'
