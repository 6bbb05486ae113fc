from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from fleetsync.errors import UpstreamUnavailableError
from fleetsync.ingestion.telemetry_client import DeviceSnapshot, TelemetryClient


@pytest.fixture
def client():
    client = TelemetryClient('https://telemetry.example.com/api/v1/devices', api_key='secret', timeout=5)
    client.session = Mock()
    return client


def _response(payload=None, json_error=None):
    response = Mock()
    response.raise_for_status.return_value = None
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


def test_fetch_returns_result_list(client):
    devices = [{'device_id': 'abc', 'updated_at': '2024-01-01T00:00:00Z'}]
    client.session.get.return_value = _response({'result_list': devices})

    assert client.fetch_snapshot() == devices
    client.session.get.assert_called_once_with(
        'https://telemetry.example.com/api/v1/devices',
        params={'api-key': 'secret'},
        timeout=5,
    )


def test_fetch_without_key_sends_no_params():
    client = TelemetryClient('https://telemetry.example.com/api/v1/devices')
    client.session = Mock()
    client.session.get.return_value = _response({'result_list': []})

    assert client.fetch_snapshot() == []
    assert client.session.get.call_args.kwargs['params'] == {}


def test_timeout_is_upstream_unavailable(client):
    client.session.get.side_effect = requests.exceptions.Timeout()

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_snapshot()


def test_http_error_carries_status(client):
    response = _response()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=Mock(status_code=503))
    client.session.get.return_value = response

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        client.fetch_snapshot()

    assert exc_info.value.status_code == 503


def test_connection_error_is_upstream_unavailable(client):
    client.session.get.side_effect = requests.exceptions.ConnectionError('refused')

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_snapshot()


def test_invalid_json_is_upstream_unavailable(client):
    client.session.get.return_value = _response(json_error=ValueError('Expecting value'))

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_snapshot()


@pytest.mark.parametrize('payload', [[], {'devices': []}, {'result_list': 'nope'}])
def test_missing_result_list_is_upstream_unavailable(client, payload):
    client.session.get.return_value = _response(payload)

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_snapshot()


def test_snapshot_splits_named_fields_from_attributes():
    snapshot = DeviceSnapshot.from_dict({
        '_id': 'upstream-id',
        'device_id': 'abc',
        'updated_at': '2024-01-01T00:00:00Z',
        'online': True,
        'latest_device_point': {'lat': 1.0, 'lng': 2.0},
        'settings': {'max_hdop': 2.0},
    })

    assert snapshot.device_id == 'abc'
    assert snapshot.updated_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert snapshot.settings == {'max_hdop': 2.0}
    assert snapshot.attributes == {'online': True, 'latest_device_point': {'lat': 1.0, 'lng': 2.0}}


def test_snapshot_ignores_non_object_settings():
    snapshot = DeviceSnapshot.from_dict(
        {'device_id': 'abc', 'updated_at': '2024-01-01T00:00:00Z', 'settings': 'n/a'}
    )
    assert snapshot.settings is None


@pytest.mark.parametrize('raw', [
    None,
    'abc',
    {'updated_at': '2024-01-01T00:00:00Z'},
    {'device_id': '', 'updated_at': '2024-01-01T00:00:00Z'},
    {'device_id': 7, 'updated_at': '2024-01-01T00:00:00Z'},
    {'device_id': 'abc'},
    {'device_id': 'abc', 'updated_at': 'soon'},
])
def test_malformed_snapshot_entries(raw):
    assert DeviceSnapshot.from_dict(raw) is None
