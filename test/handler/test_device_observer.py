import time
from decimal import Decimal

import pytest

from dmr.handler.device_observer import DeviceObserver
from dmr.model.device_message import DeltaMessage, EventMessage, ResponseMessage
from dmr.model.mailbox_policy import MailboxPolicyModel
from dmr.util.blink import dump_payload, gen_delta_blink_data
from dmr.util.mailbox import MailboxRegistry


@pytest.fixture
def registry() -> MailboxRegistry:
    registry = MailboxRegistry(MailboxPolicyModel(queue_maxsize=2))
    registry.get_or_create("dev1")
    return registry


@pytest.fixture
def observer(registry) -> DeviceObserver:
    return DeviceObserver(registry)


class TestObserverRouting:
    def test_delta_reaches_device_mailbox(self, observer, registry):
        assert observer.on_publish("$baetyl/device/dev1/delta", b'{"p1":1}') is True

        message = registry.get("dev1").get_nowait()
        assert isinstance(message, DeltaMessage)
        assert message.kind == "delta"
        assert message.device == "dev1"
        assert message.properties == {"p1": 1}

    def test_delta_in_blink_envelope(self, observer, registry):
        envelope = gen_delta_blink_data({"p1": 2.5})
        observer.on_publish("$baetyl/device/dev1/delta", dump_payload(envelope))

        message = registry.get("dev1").get_nowait()
        assert message.properties == {"p1": Decimal("2.5")}
        assert message.req_id == envelope["blink"]["reqId"]

    def test_event(self, observer, registry):
        observer.on_publish("$baetyl/device/dev1/event", b'{"type":"reboot","payload":{"delay":5}}')
        message = registry.get("dev1").get_nowait()
        assert isinstance(message, EventMessage)
        assert message.event.type == "reboot"
        assert message.event.payload == {"delay": 5}

    def test_get_response(self, observer, registry):
        payload = b'{"name":"dev1","report":{"p1":1},"desire":{"p1":2}}'
        observer.on_publish("$baetyl/device/dev1/getResponse", payload)
        message = registry.get("dev1").get_nowait()
        assert isinstance(message, ResponseMessage)
        assert message.shadow.report == {"p1": 1}
        assert message.shadow.desire == {"p1": 2}

    def test_registered_route_for_custom_topic(self, observer, registry):
        observer.register_route("custom/dev1/in", "dev1", "delta")
        assert observer.on_publish("custom/dev1/in", b'{"p":1}') is True
        assert registry.get("dev1").qsize() == 1


class TestObserverDropsBadInput:
    """Malformed input is logged and dropped, never raised"""

    @pytest.mark.parametrize(
        "topic, payload",
        [
            ("not/a/device/topic", b"{}"),
            ("$baetyl/device/dev1/report", b"{}"),
            ("$baetyl/device/dev1/delta", b"[1,2]"),
            ("$baetyl/device/dev1/delta", b'{"blink":{"properties":["p1"]}}'),
            ("$baetyl/device/dev1/delta", b"{broken"),
            ("$baetyl/device/dev1/event", b'{"metadata":"not-a-map"}'),
        ],
    )
    def test_dropped(self, observer, registry, topic, payload):
        assert observer.on_publish(topic, payload) is False
        assert registry.get("dev1").qsize() == 0

    def test_unknown_device_dropped(self, observer, registry):
        assert observer.on_publish("$baetyl/device/ghost/delta", b"{}") is False
        assert registry.get_dropped_count("ghost") == 1

    def test_full_mailbox_returns_promptly(self, observer, registry, caplog):
        observer.on_publish("$baetyl/device/dev1/delta", b'{"n":1}')
        observer.on_publish("$baetyl/device/dev1/delta", b'{"n":2}')

        start = time.monotonic()
        assert observer.on_publish("$baetyl/device/dev1/delta", b'{"n":3}') is False
        assert time.monotonic() - start < 0.1
        assert "is full" in caplog.text

        mailbox = registry.get("dev1")
        assert [mailbox.get_nowait().properties["n"] for _ in range(2)] == [1, 2]

    def test_puback_and_error_are_acknowledged(self, observer):
        observer.on_puback(7)
        observer.on_error(RuntimeError("connection lost"))

    def test_non_utf8_payload_is_a_payload_error(self, observer, registry, caplog):
        assert observer.on_publish("$baetyl/device/dev1/delta", b'{"p": "\xff"}') is False
        assert "Drop message on topic=$baetyl/device/dev1/delta" in caplog.text
        assert "Unexpected error" not in caplog.text
