"""
Tests for the sync transport boundary.

The HTTP layer is mocked; these tests pin down which responses count
as a sync verdict and which become TransportError.
"""
from unittest.mock import Mock

import pytest
import requests

from apps.offline.exceptions import TransportError
from apps.offline.transport import SyncTransport

CHANGES = [{'model': 'Patient', 'type': 'create', 'data': {'id': 'temp_1'}, 'tempId': 'temp_1'}]


def http_response(status_code, body=None):
    response = Mock(status_code=status_code, ok=200 <= status_code < 300)
    if body is None:
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def http_session():
    session = requests.Session()
    session.request = Mock()
    return session


@pytest.fixture
def transport(http_session):
    return SyncTransport('http://sync.local/', token='access-abc', device_id='tablet-7',
                         timeout=12, session=http_session)


class TestSyncTransport:

    def test_sends_batch_with_credentials(self, transport, http_session):
        http_session.request.return_value = http_response(200, {'success': True, 'results': []})

        transport.submit(CHANGES)

        http_session.request.assert_called_once_with(
            'post', 'http://sync.local/api/v1/sync/', timeout=12, json={'changes': CHANGES}
        )
        assert http_session.headers['Authorization'] == 'Bearer access-abc'
        assert http_session.headers['X-Device-ID'] == 'tablet-7'

    def test_success_response(self, transport, http_session):
        results = [{'model': 'Patient', 'type': 'create', 'id': 4, 'tempId': 'temp_1'}]
        http_session.request.return_value = http_response(200, {'success': True, 'results': results})

        response = transport.submit(CHANGES)

        assert response.success is True
        assert response.results == results
        assert response.status_code == 200

    @pytest.mark.parametrize('status_code, code', [(409, 'UpdateConflict'), (400, 'UnknownTemporaryReference')])
    def test_rejection_is_a_response_not_an_exception(self, transport, http_session, status_code, code):
        http_session.request.return_value = http_response(
            status_code, {'success': False, 'error': 'rejected', 'code': code}
        )

        response = transport.submit(CHANGES)

        assert response.success is False
        assert response.code == code
        assert response.error == 'rejected'
        assert response.status_code == status_code

    def test_timeout_raises_transport_error(self, transport, http_session):
        http_session.request.side_effect = requests.exceptions.Timeout()

        with pytest.raises(TransportError) as exc_info:
            transport.submit(CHANGES)

        assert 'timed out' in exc_info.value.message
        assert exc_info.value.code == 'TransportError'

    def test_connection_error_raises_transport_error(self, transport, http_session):
        http_session.request.side_effect = requests.exceptions.ConnectionError()

        with pytest.raises(TransportError):
            transport.submit(CHANGES)

    @pytest.mark.parametrize('status_code, body', [
        (502, None),
        (401, {'detail': 'Given token not valid for any token type'}),
        (500, {'success': True}),
        (200, ['not', 'a', 'dict']),
    ])
    def test_unexpected_responses_raise_transport_error(self, transport, http_session, status_code, body):
        http_session.request.return_value = http_response(status_code, body)

        with pytest.raises(TransportError) as exc_info:
            transport.submit(CHANGES)

        assert exc_info.value.status_code == status_code

    def test_fetch_snapshot(self, transport, http_session):
        snapshot = {'patients': [], 'consultations': [], 'activities': [], 'serverTime': 'now'}
        http_session.request.return_value = http_response(200, snapshot)

        assert transport.fetch_snapshot() == snapshot
        http_session.request.assert_called_once_with(
            'get', 'http://sync.local/api/v1/clinical/snapshot/', timeout=12
        )

    def test_fetch_snapshot_error(self, transport, http_session):
        http_session.request.return_value = http_response(403, {'detail': 'nope'})

        with pytest.raises(TransportError):
            transport.fetch_snapshot()
