import json
import threading
from datetime import timedelta

import pytest
from sqlmodel import select

from fleetdispatch.errors import NotFound, ValidationError
from fleetdispatch.models import Device, FormSubmission, utcnow
from fleetdispatch.schemas import DeviceOut


def set_last_seen(db, device_id, seconds_ago):
    def work(session):
        device = session.exec(select(Device).where(Device.device_id == device_id)).one()
        device.last_seen = utcnow() - timedelta(seconds=seconds_ago)
        session.add(device)

    db.run(work)


def test_register_then_update(registry):
    assert registry.register("A", device_name="Pixel", os_version="13", phone_number="+1", battery_level=80) is True
    [first] = registry.list_devices()

    assert registry.register("A", device_name="Pixel 8", os_version="14", battery_level=15) is False
    [second] = registry.list_devices()

    assert second.device_name == "Pixel 8"
    assert second.os_version == "14"
    assert second.phone_number is None
    assert second.battery_level == 15
    assert second.created_at == first.created_at
    assert second.last_seen >= first.last_seen


def test_concurrent_first_registrations_create_once(registry):
    results = []
    start = threading.Barrier(6)

    def check_in():
        start.wait()
        results.append(registry.register("A", device_name="Pixel"))

    threads = [threading.Thread(target=check_in) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [False] * 5 + [True]
    assert len(registry.list_devices()) == 1


def test_register_requires_device_id(registry):
    with pytest.raises(ValidationError):
        registry.register("")


def test_battery_level_is_not_range_checked(registry):
    registry.register("A", battery_level=-5)
    assert registry.list_devices()[0].battery_level == -5


def test_list_devices_oldest_first(registry):
    for device_id in ("first", "second", "third"):
        registry.register(device_id)
    registry.register("first", device_name="renamed")
    assert [d.device_id for d in registry.list_devices()] == ["first", "second", "third"]


def test_list_devices_derives_liveness(registry, db):
    registry.register("fresh")
    registry.register("stale")
    set_last_seen(db, "stale", 200)

    devices = registry.list_devices()
    assert all(isinstance(d, DeviceOut) for d in devices)
    online = {d.device_id: d.is_online for d in devices}
    assert online == {"fresh": True, "stale": False}


def test_heartbeat_brings_device_back_online(registry, db):
    registry.register("A")
    set_last_seen(db, "A", 600)
    assert registry.list_devices()[0].is_online is False
    registry.register("A")
    assert registry.list_devices()[0].is_online is True


def test_sms_log_roundtrip(registry):
    first = registry.log_sms("A", "+100", "one")
    second = registry.log_sms("A", "+200", "two")
    registry.log_sms("B", "+300", "other device")

    logs = registry.list_sms("A")
    assert [s.id for s in logs] == [second, first]
    assert logs[0].message_body == "two"

    registry.delete_sms(first)
    assert [s.id for s in registry.list_sms("A")] == [second]


def test_sms_requires_sender(registry):
    with pytest.raises(ValidationError):
        registry.log_sms("A", "", "body")


def test_delete_unknown_sms(registry):
    with pytest.raises(NotFound):
        registry.delete_sms(404)


def test_form_submission_is_stored_verbatim(registry, db):
    structured = registry.submit_form("A", {"name": "Ravi", "age": 31})
    raw = registry.submit_form("A", "already-a-string")

    rows = db.run(lambda session: {r.id: r.custom_data for r in session.exec(select(FormSubmission)).all()})
    assert json.loads(rows[structured]) == {"name": "Ravi", "age": 31}
    assert rows[raw] == "already-a-string"


def test_form_submission_requires_data(registry):
    with pytest.raises(ValidationError):
        registry.submit_form("A", None)
