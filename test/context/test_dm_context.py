import json
from decimal import Decimal

import pytest

from dmr.dm_context import DeviceManagementContext
from dmr.exception import (
    AccessConfigNotExistError,
    AccessTemplateNotExistError,
    ConfigMalformedError,
    DeviceModelNotExistError,
    DeviceNotExistError,
    PropsConfigNotExistError,
    TransportError,
    UnsupportedValueTypeError,
)

DRIVER = "modbus-driver"


class TestLookups:
    def test_every_device_round_trips(self, dm_ctx):
        for device in dm_ctx.get_all_devices(DRIVER):
            assert dm_ctx.get_device(DRIVER, device.name) == device
            assert dm_ctx.get_driver_name_by_device(device.name) == DRIVER

    def test_unknown_device(self, dm_ctx):
        with pytest.raises(DeviceNotExistError):
            dm_ctx.get_device(DRIVER, "orphan")
        with pytest.raises(DeviceNotExistError):
            dm_ctx.get_device("other-driver", "meter-1")
        assert dm_ctx.get_driver_name_by_device("orphan") == ""
        assert dm_ctx.get_all_devices("other-driver") == []

    def test_model_and_template(self, dm_ctx):
        assert [p.name for p in dm_ctx.get_device_model(DRIVER, "meter-1")][:2] == ["voltage", "switch"]
        assert set(dm_ctx.get_all_device_models(DRIVER)) == {"meter"}
        assert dm_ctx.get_access_templates(DRIVER, "meter-1").name == "meter-template"
        assert set(dm_ctx.get_all_access_templates(DRIVER)) == {"meter-template"}
        assert dm_ctx.get_driver_config(DRIVER) == DRIVER

    def test_access_config(self, dm_ctx, write_driver_files, driver_config_data):
        assert dm_ctx.get_device_access_config(DRIVER, "meter-1").kind == "modbus"

        sub_devices = driver_config_data["sub_devices"]
        del sub_devices["devices"][1]["accessConfig"]
        dm_ctx.load_driver_config(write_driver_files("no-access", sub_devices=sub_devices), DRIVER)
        with pytest.raises(AccessConfigNotExistError):
            dm_ctx.get_device_access_config(DRIVER, "meter-2")

    def test_missing_model_and_template(self, dm_ctx):
        # the loader drops unresolved devices, so strip the tables by hand
        tables = dm_ctx._tables[DRIVER]
        dm_ctx._tables = {DRIVER: tables.model_copy(update={"device_models": {}, "access_templates": {}})}
        with pytest.raises(DeviceModelNotExistError):
            dm_ctx.get_device_model(DRIVER, "meter-1")
        with pytest.raises(AccessTemplateNotExistError):
            dm_ctx.get_access_templates(DRIVER, "meter-1")


class TestReload:
    def test_failed_reload_keeps_previous_tables(self, dm_ctx, write_driver_files):
        broken = write_driver_files("broken", models="meter: [unclosed")
        with pytest.raises(ConfigMalformedError):
            dm_ctx.load_driver_config(broken, DRIVER)
        assert dm_ctx.get_device(DRIVER, "meter-1").name == "meter-1"

    def test_reload_replaces_device_index(self, dm_ctx, write_driver_files, driver_config_data):
        sub_devices = driver_config_data["sub_devices"]
        sub_devices["devices"] = sub_devices["devices"][1:2]
        dm_ctx.load_driver_config(write_driver_files("smaller", sub_devices=sub_devices), DRIVER)

        assert [d.name for d in dm_ctx.get_all_devices(DRIVER)] == ["meter-2"]
        assert dm_ctx.get_driver_name_by_device("meter-1") == ""
        assert dm_ctx.get_driver_name_by_device("meter-2") == DRIVER


class TestParsePropertyValues:
    def test_coerces_by_model_type(self, dm_ctx):
        parsed = dm_ctx.parse_property_values(
            DRIVER, "meter-1", {"voltage": Decimal("0.1"), "count": Decimal("12"), "switch": True}
        )
        assert parsed["count"] == 12
        assert parsed["switch"] is True
        assert parsed["voltage"] == pytest.approx(0.1, rel=1e-6)
        assert parsed["voltage"] != 0.1

    def test_unknown_property(self, dm_ctx):
        with pytest.raises(PropsConfigNotExistError):
            dm_ctx.parse_property_values(DRIVER, "meter-1", {"nope": 1})

    def test_numeric_string_rejected(self, dm_ctx):
        with pytest.raises(UnsupportedValueTypeError):
            dm_ctx.parse_property_values(DRIVER, "meter-1", {"count": "12"})

    def test_int16_overflow(self, dm_ctx):
        with pytest.raises(UnsupportedValueTypeError):
            dm_ctx.parse_property_values(DRIVER, "meter-1", {"count": Decimal("40000")})


class TestPublish:
    def _last(self, fake_mqtt):
        topic, payload, qos = fake_mqtt.published[-1]
        return topic, json.loads(payload)["blink"], qos

    def test_report_uses_device_topic_and_qos(self, dm_ctx, fake_mqtt):
        req_id = dm_ctx.report_device_properties(DRIVER, "meter-1", {"voltage": 230.5})
        topic, blink, qos = self._last(fake_mqtt)
        assert topic == "$baetyl/device/meter-1/report"
        assert qos == 1
        assert blink["method"] == "thing.property.post"
        assert blink["properties"] == {"voltage": 230.5}
        assert blink["reqId"] == req_id

    @pytest.mark.parametrize(
        "call, topic_kind, method",
        [
            (lambda ctx: ctx.report_device_events(DRIVER, "meter-2", {"alarm": 1}), "eventReport", "thing.event.post"),
            (lambda ctx: ctx.get_device_properties(DRIVER, "meter-2"), "get", "thing.property.get"),
            (lambda ctx: ctx.property_get(DRIVER, "meter-2", ["count"]), "propertyGet", "thing.property.get"),
            (lambda ctx: ctx.online(DRIVER, "meter-2"), "lifecycleReport", "thing.lifecycle.post"),
        ],
    )
    def test_default_topics(self, dm_ctx, fake_mqtt, call, topic_kind, method):
        call(dm_ctx)
        topic, blink, qos = self._last(fake_mqtt)
        assert topic == f"$baetyl/device/meter-2/{topic_kind}"
        assert qos == 0
        assert blink["method"] == method

    def test_get_all_properties_sends_empty_list(self, dm_ctx, fake_mqtt):
        dm_ctx.get_device_properties(DRIVER, "meter-2")
        assert self._last(fake_mqtt)[1]["properties"] == []

    def test_lifecycle_state(self, dm_ctx, fake_mqtt):
        dm_ctx.online(DRIVER, "meter-1")
        assert self._last(fake_mqtt)[1]["params"] == {"online_state": True}
        dm_ctx.offline(DRIVER, "meter-1")
        assert self._last(fake_mqtt)[1]["params"] == {"online_state": False}

    def test_unknown_device_publishes_nothing(self, dm_ctx, fake_mqtt):
        with pytest.raises(DeviceNotExistError):
            dm_ctx.online(DRIVER, "ghost")
        assert fake_mqtt.published == []

    def test_without_transport(self, driver_dir):
        ctx = DeviceManagementContext()
        ctx.load_driver_config(driver_dir, DRIVER)
        with pytest.raises(TransportError):
            ctx.online(DRIVER, "meter-1")


class TestSubscribe:
    def test_inbound_topics(self, dm_ctx, fake_mqtt):
        dm_ctx.subscribe(DRIVER, "meter-1")
        assert fake_mqtt.subscriptions == [
            ("custom/meter-1/delta", 1),
            ("$baetyl/device/meter-1/event", 0),
            ("$baetyl/device/meter-1/getResponse", 0),
        ]

    def test_custom_delta_topic_reaches_mailbox(self, dm_ctx, fake_mqtt):
        mailbox = dm_ctx.subscribe(DRIVER, "meter-1")
        assert fake_mqtt.observer.on_publish("custom/meter-1/delta", b'{"count": 1}') is True
        assert mailbox.get_nowait().properties == {"count": 1}

    def test_start_and_close(self, dm_ctx, fake_mqtt):
        mailboxes = dm_ctx.start(DRIVER)
        dm_ctx.start(DRIVER)
        assert set(mailboxes) == {"meter-1", "meter-2"}
        assert fake_mqtt.started == 1

        dm_ctx.close()
        assert fake_mqtt.closed == 1
        assert all(mailbox.closed for mailbox in mailboxes.values())

    def test_resubscribe_after_close_reopens_mailbox(self, dm_ctx):
        first = dm_ctx.subscribe(DRIVER, "meter-2")
        dm_ctx.close()
        second = dm_ctx.subscribe(DRIVER, "meter-2")
        assert second is not first
        assert not second.closed


class TestDataClean:
    @pytest.fixture
    def clock(self):
        class Clock:
            now = 1000.0

            def __call__(self):
                return self.now

        return Clock()

    @pytest.fixture
    def ctx(self, fake_mqtt, driver_dir, clock):
        ctx = DeviceManagementContext(mqtt=fake_mqtt, clock=clock)
        ctx.load_driver_config(driver_dir, DRIVER)
        return ctx

    def test_first_report_passes(self, ctx):
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.0}) == {"voltage": 230.0}

    def test_small_change_filtered_until_silent_window(self, ctx, clock):
        ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.0})

        clock.now += 10
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.3}) == {}
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 231.0}) == {"voltage": 231.0}

        clock.now += 60
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 231.1}) == {"voltage": 231.1}

    def test_unmapped_and_non_numeric_always_pass(self, ctx):
        report = {"switch": True, "state": "on"}
        assert ctx.data_clean(DRIVER, "meter-1", report) == report
        assert ctx.data_clean(DRIVER, "meter-1", report) == report

    def test_devices_tracked_separately(self, ctx):
        ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.0})
        assert ctx.data_clean(DRIVER, "meter-2", {"voltage": 230.0}) == {"voltage": 230.0}

    def test_deviation_without_silent_window(self, fake_mqtt, write_driver_files, driver_config_data, clock):
        templates = driver_config_data["access_templates"]
        del templates["meter-template"]["mappings"][0]["silentWin"]
        ctx = DeviceManagementContext(mqtt=fake_mqtt, clock=clock)
        ctx.load_driver_config(write_driver_files("no-silent-win", access_templates=templates), DRIVER)

        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.0}) == {"voltage": 230.0}
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.1}) == {}

        clock.now += 3600
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 230.2}) == {}
        assert ctx.data_clean(DRIVER, "meter-1", {"voltage": 231.0}) == {"voltage": 231.0}
