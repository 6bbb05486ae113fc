import io

import pytest


def entry(device_id, updated_at, **fields):
    raw = {'device_id': device_id, 'updated_at': updated_at, 'online': True, 'display_name': device_id}
    raw.update(fields)
    return raw


@pytest.fixture
def ingested(app, telemetry):
    telemetry.entries = [
        entry('abc', '2024-01-01T00:00:00Z'),
        entry('def', '2024-01-02T00:00:00Z'),
    ]
    app.config['INGESTION_PIPELINE'].fetch_and_process()
    return app


def _store_id(client, device_id):
    devices = client.get('/api/devices').get_json()['result_list']
    return next(device['_id'] for device in devices if device['device_id'] == device_id)


def test_health(client):
    assert client.get('/health').get_json() == {'status': 'ok'}


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json() == {'error': 'Not found'}


def test_list_devices(client, ingested):
    devices = client.get('/api/devices').get_json()['result_list']

    assert [device['device_id'] for device in devices] == ['abc', 'def']
    assert all(device['version'] == 0 for device in devices)


class TestCheckUpdates:

    def test_requires_last_update(self, client):
        response = client.get('/api/devices/check-updates')
        assert response.status_code == 400

    def test_rejects_malformed_last_update(self, client):
        response = client.get('/api/devices/check-updates?lastUpdate=yesterday')
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_poll_cycle(self, client, ingested):
        first = client.get('/api/devices/check-updates?lastUpdate=2024-01-01T00:00:00Z').get_json()

        assert first['needsUpdate'] is True
        assert [device['device_id'] for device in first['updatedDevices']] == ['def']
        assert first['iconMap'] == {}

        second = client.get(
            '/api/devices/check-updates', query_string={'lastUpdate': first['lastUpdate']}
        ).get_json()

        assert second['needsUpdate'] is False
        assert second['lastUpdate'] == first['lastUpdate']
        assert 'updatedDevices' not in second


class TestUpdateDevice:

    def test_patch_then_stale_patch(self, client, ingested):
        store_id = _store_id(client, 'abc')

        response = client.put(f'/api/devices/{store_id}?version=0', json={'display_name': 'Truck 7'})
        assert response.status_code == 200
        assert response.get_json()['version'] == 1
        assert response.get_json()['display_name'] == 'Truck 7'

        response = client.put(f'/api/devices/{store_id}?version=0', json={'display_name': 'Truck 8'})
        assert response.status_code == 409
        body = response.get_json()
        assert body['current']['version'] == 1
        assert body['current']['display_name'] == 'Truck 7'

    def test_unknown_device(self, client, ingested):
        response = client.put('/api/devices/9999?version=0', json={'note': 'x'})
        assert response.status_code == 404

    @pytest.mark.parametrize('path', [
        '/api/devices/not-a-number?version=0',
        '/api/devices/1',
        '/api/devices/1?version=-1',
        '/api/devices/1?version=one',
    ])
    def test_malformed_requests(self, client, ingested, path):
        assert client.put(path, json={'note': 'x'}).status_code == 400

    def test_body_must_be_json_object(self, client, ingested):
        store_id = _store_id(client, 'abc')
        response = client.put(f'/api/devices/{store_id}?version=0', data='nope', content_type='text/plain')
        assert response.status_code == 400


class TestSettings:

    def test_get_creates_defaults(self, client):
        body = client.get('/api/devices/abc/settings').get_json()

        assert body['device_id'] == 'abc'
        assert body['version'] == 1
        assert body['iconUrl'] == ''
        assert body['max_drift_distance'] == {'value': 350, 'unit': 'm', 'display': '350 m'}

    def test_put_then_stale_put(self, client):
        settings = client.get('/api/devices/abc/settings').get_json()
        settings.update({'max_hdop': 2.0, 'updated_at': '2999-01-01T00:00:00Z'})

        response = client.put('/api/devices/abc/settings', json=settings)
        assert response.status_code == 200
        assert response.get_json()['version'] == 2

        settings.update({'max_hdop': 5.0, 'updated_at': '2999-01-02T00:00:00Z'})
        response = client.put('/api/devices/abc/settings', json=settings)
        assert response.status_code == 409
        assert response.get_json()['current']['version'] == 2
        assert response.get_json()['current']['max_hdop'] == 2.0

    def test_put_echoing_stored_updated_at_is_a_noop(self, client):
        settings = client.get('/api/devices/abc/settings').get_json()
        default_hdop = settings['max_hdop']
        settings['max_hdop'] = default_hdop + 1

        response = client.put('/api/devices/abc/settings', json=settings)
        assert response.status_code == 200
        assert response.get_json()['version'] == 1
        assert response.get_json()['max_hdop'] == default_hdop

        del settings['updated_at']
        response = client.put('/api/devices/abc/settings', json=settings)
        assert response.status_code == 200
        assert response.get_json()['version'] == 2
        assert response.get_json()['max_hdop'] == default_hdop + 1

    def test_put_validation(self, client):
        assert client.put('/api/devices/abc/settings', json={'max_hdop': 2.0}).status_code == 400
        assert client.put('/api/devices/abc/settings', json={'version': 0, 'max_hdop': 'x'}).status_code == 400
        assert client.put('/api/devices/abc/settings', json=[1, 2]).status_code == 400


class TestPreferences:

    def test_first_read_creates(self, client):
        first = client.get('/api/users/user-1/preferences')
        assert first.status_code == 201
        assert first.get_json() == {'userId': 'user-1', 'version': 1, 'deviceListWidth': 400, 'unit': 'imperial'}

        assert client.get('/api/users/user-1/preferences').status_code == 200

    def test_write_then_stale_write(self, client):
        client.get('/api/users/user-1/preferences')

        response = client.post('/api/users/user-1/preferences', json={'version': 1, 'unit': 'metric'})
        assert response.status_code == 200
        assert response.get_json()['version'] == 2
        assert response.get_json()['unit'] == 'metric'

        response = client.post('/api/users/user-1/preferences', json={'version': 1, 'unit': 'original'})
        assert response.status_code == 409
        assert response.get_json()['current']['unit'] == 'metric'

    def test_write_to_missing_user(self, client):
        response = client.post('/api/users/ghost/preferences', json={'version': 4})
        assert response.status_code == 404

    def test_invalid_unit(self, client):
        response = client.post('/api/users/user-1/preferences', json={'version': 0, 'unit': 'cubits'})
        assert response.status_code == 400


class TestRefresh:

    def test_refresh_resyncs(self, client, ingested, telemetry):
        client.get('/api/users/user-1/preferences')
        telemetry.entries = [entry('abc', '2024-01-01T00:00:00Z')]

        response = client.delete('/api/devices/refresh')

        assert response.status_code == 200
        assert response.get_json()['count'] == 1
        devices = client.get('/api/devices').get_json()['result_list']
        assert [device['device_id'] for device in devices] == ['abc']
        assert client.get('/api/users/user-1/preferences').status_code == 201

    def test_refresh_with_upstream_down(self, client, ingested, telemetry):
        from fleetsync.errors import UpstreamUnavailableError
        telemetry.error = UpstreamUnavailableError('down')

        response = client.delete('/api/devices/refresh')

        assert response.status_code == 502
        assert client.get('/api/devices').get_json()['result_list'] == []


class TestIcons:

    PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 16

    def _upload(self, client, device_id, content_type='image/png'):
        return client.post(
            f'/api/devices/{device_id}/icon',
            data={'file': (io.BytesIO(self.PNG), 'icon.png', content_type)},
            content_type='multipart/form-data',
        )

    def test_unknown_device(self, client, ingested):
        assert self._upload(client, 'ghost').status_code == 404

    def test_upload_get_and_remove(self, client, ingested, tmp_path):
        response = self._upload(client, 'abc')
        assert response.status_code == 200
        assert response.get_json()['iconUrl'] == 'http://localhost/icons/abc.png'
        assert (tmp_path / 'icons' / 'abc.png').read_bytes() == self.PNG

        assert client.get('/api/devices/abc/icon').data == self.PNG
        assert client.get('/icons/abc.png').data == self.PNG

        poll = client.get('/api/devices/check-updates?lastUpdate=2024-01-01T00:00:00Z').get_json()
        assert poll['iconMap'] == {'abc': 'http://localhost/icons/abc.png'}

        response = client.post('/api/devices/abc/icon?remove=true')
        assert response.status_code == 200
        assert not (tmp_path / 'icons' / 'abc.png').exists()
        assert client.get('/api/devices/abc/settings').get_json()['iconUrl'] == ''

        response = client.get('/api/devices/abc/icon')
        assert response.status_code == 200
        assert response.data == b''

    def test_default_icon(self, client, ingested):
        response = client.post('/api/devices/abc/icon', data={'defaultIcon': '/static/truck.svg'})

        assert response.status_code == 200
        assert response.get_json()['iconUrl'] == '/static/truck.svg'
        assert client.get('/api/devices/abc/settings').get_json()['iconUrl'] == '/static/truck.svg'

    def test_rejects_non_image(self, client, ingested):
        assert self._upload(client, 'abc', content_type='text/plain').status_code == 400

    def test_requires_file(self, client, ingested):
        response = client.post('/api/devices/abc/icon', data={}, content_type='multipart/form-data')
        assert response.status_code == 400


def test_status(client, ingested):
    body = client.get('/api/status').get_json()

    assert body['status'] == 'degraded'
    assert body['database']['connected'] is True
    assert body['database']['type'] == 'sqlite'
    assert body['ingestion']['fetch_count'] == 1
    assert body['freshness']['entries'] == 2
    assert body['config']['mock_mode'] is False


def test_cors_headers_on_api(client):
    response = client.get('/api/devices', headers={'Origin': 'http://dashboard.example.com'})
    assert response.headers['Access-Control-Allow-Origin'] == '*'
