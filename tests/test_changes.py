from datetime import datetime, timedelta, timezone

import pytest

from fleetsync.changes import ChangeQuery
from fleetsync.models.device import DISPLAY_FIELDS


def entry(device_id, updated_at, **fields):
    raw = {
        'device_id': device_id,
        'updated_at': updated_at,
        'display_name': device_id.upper(),
        'online': True,
        'active_state': 'active',
        'latest_device_point': {'lat': 40.0, 'lng': -75.0},
        'odometer': 1234,
    }
    raw.update(fields)
    return raw


@pytest.fixture
def changes(store, freshness):
    return ChangeQuery(store, freshness)


def test_up_to_date_client_does_not_touch_devices(changes, pipeline, telemetry, store, monkeypatch):
    telemetry.entries = [entry('abc', '2024-01-01T00:00:00Z')]
    pipeline.fetch_and_process()

    def fail(since):
        raise AssertionError('devices queried although nothing changed')

    monkeypatch.setattr(store, 'find_devices_updated_since', fail)

    check = changes.check_for_updates(pipeline.freshness.last_checked)

    assert check.needs_update is False
    assert check.last_update == pipeline.freshness.last_checked
    assert 'updatedDevices' not in check.to_dict()


def test_client_ahead_of_last_checked_needs_no_update(changes, freshness):
    check = changes.check_for_updates(freshness.last_checked + timedelta(hours=1))
    assert check.needs_update is False


def test_returns_only_devices_changed_since(changes, pipeline, telemetry):
    telemetry.entries = [
        entry('abc', '2024-01-01T00:00:00Z'),
        entry('def', '2024-01-02T00:00:00Z'),
    ]
    pipeline.fetch_and_process()

    check = changes.check_for_updates(datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert check.needs_update is True
    assert [device['device_id'] for device in check.updated_devices] == ['def']


def test_updated_devices_are_projected(changes, pipeline, telemetry):
    telemetry.entries = [entry('abc', '2024-01-02T00:00:00Z')]
    pipeline.fetch_and_process()

    device = changes.check_for_updates(datetime(2024, 1, 1, tzinfo=timezone.utc)).updated_devices[0]

    assert set(device) <= {'_id', 'device_id', 'updated_at', *DISPLAY_FIELDS}
    assert 'odometer' not in device
    assert device['updated_at'] == '2024-01-02T00:00:00Z'
    assert device['display_name'] == 'ABC'


def test_needs_update_with_no_matching_devices_is_empty(changes, pipeline, telemetry):
    telemetry.entries = [entry('abc', '2024-01-01T00:00:00Z')]
    pipeline.fetch_and_process()

    check = changes.check_for_updates(datetime(2024, 6, 1, tzinfo=timezone.utc))

    assert check.needs_update is True
    assert check.updated_devices == []
    assert check.to_dict()['updatedDevices'] == []


def test_icon_map_is_returned_on_both_branches(changes, freshness, settings_service):
    settings_service.set_icon_url('abc', 'http://localhost/icons/abc.png')
    settings_service.get_or_create('def')

    stale = changes.check_for_updates(freshness.last_checked - timedelta(days=1))
    fresh = changes.check_for_updates(freshness.last_checked)

    expected = {'abc': 'http://localhost/icons/abc.png', 'def': ''}
    assert stale.icon_map == expected
    assert fresh.icon_map == expected


def test_to_dict_wire_shape(changes, freshness):
    freshness.mark_checked(datetime(2024, 1, 1, 12, 0, 0, 500, tzinfo=timezone.utc))

    payload = changes.check_for_updates(datetime(2024, 1, 1, tzinfo=timezone.utc)).to_dict()

    assert payload == {
        'needsUpdate': True,
        'lastUpdate': '2024-01-01T12:00:00Z',
        'updatedDevices': [],
        'iconMap': {},
    }
