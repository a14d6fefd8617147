"""
Device-management context: the API a driver programs against.

- lookups over the immutable per-driver tables
- strict normalization of inbound property values
- blink publishing on the device topics
- per-device mailboxes fed by the MQTT observer
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from dmr.exception import (
    AccessConfigNotExistError,
    AccessTemplateNotExistError,
    DeviceModelNotExistError,
    DeviceNotExistError,
    PropsConfigNotExistError,
    TransportError,
)
from dmr.handler.device_observer import DeviceObserver
from dmr.model.enum.topic_kind_enum import INBOUND_TOPIC_KINDS, TopicKind
from dmr.model.mailbox_policy import MailboxPolicyModel
from dmr.schema.access_config_schema import AccessConfig
from dmr.schema.access_template_schema import AccessTemplate
from dmr.schema.device_model_schema import DeviceProperty
from dmr.schema.device_schema import DeviceInfo
from dmr.service_context import ServiceContext
from dmr.util.blink import (
    dump_payload,
    gen_event_report_blink_data,
    gen_lifecycle_report_blink_data,
    gen_property_get_blink_data,
    gen_property_report_blink_data,
)
from dmr.util.config_loader import DriverConfigLoader, DriverTables
from dmr.util.mailbox import Mailbox, MailboxRegistry
from dmr.util.value_parser import is_number, parse_property_value


class MqttTransport(Protocol):
    def set_observer(self, observer: DeviceObserver) -> None: ...

    def start(self) -> None: ...

    def close(self) -> None: ...

    def publish(self, topic: str, payload: bytes | str, qos: int = 0, retain: bool = False) -> int: ...

    def subscribe(self, topics: list[tuple[str, int]]) -> None: ...


@dataclass
class _CleanPoint:
    value: float
    reported_at: float


class DeviceManagementContext:
    def __init__(
        self,
        service_ctx: ServiceContext | None = None,
        mqtt: MqttTransport | None = None,
        mailbox_policy: MailboxPolicyModel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_ctx = service_ctx
        self.logger = logging.getLogger(__class__.__name__)

        if mailbox_policy is None and service_ctx is not None:
            mailbox_policy = service_ctx.config.mailbox
        self.mailboxes = MailboxRegistry(mailbox_policy)
        self.observer = DeviceObserver(self.mailboxes)

        self.mqtt = mqtt
        if mqtt is not None:
            mqtt.set_observer(self.observer)
        self._mqtt_started = False

        # root references; replaced as a whole, never mutated
        self._tables: dict[str, DriverTables] = {}
        self._device_driver: dict[str, str] = {}
        self._swap_lock = threading.Lock()

        self._clock = clock
        self._clean_points: dict[tuple[str, str, str], _CleanPoint] = {}

    # ----------------------------
    # Configuration
    # ----------------------------

    def load_driver_config(
        self, path: str | Path, driver: str, strict_access_config: bool | None = None
    ) -> DriverTables:
        """
        Load the three driver files and swap the driver's tables in.

        The swap happens only after every file parsed; on error the previous
        tables stay in place and the error propagates.
        """
        if strict_access_config is None:
            strict_access_config = bool(self.service_ctx and self.service_ctx.config.driver.strict_access_config)
        tables = DriverConfigLoader.load(path, driver, strict_access_config=strict_access_config)

        with self._swap_lock:
            new_tables = {**self._tables, driver: tables}
            device_driver = {name: drv for name, drv in self._device_driver.items() if drv != driver}
            for name in tables.devices:
                previous = device_driver.get(name)
                if previous is not None:
                    self.logger.warning(f"[DM] Device {name} of driver {driver} shadows driver {previous}")
                device_driver[name] = driver
            self._tables = new_tables
            self._device_driver = device_driver
        return tables

    def _driver_tables(self, driver: str) -> DriverTables | None:
        return self._tables.get(driver)

    # ----------------------------
    # Lookups
    # ----------------------------

    def get_device(self, driver: str, name: str) -> DeviceInfo:
        tables = self._driver_tables(driver)
        device = tables.devices.get(name) if tables else None
        if device is None:
            raise DeviceNotExistError(f"device {name!r} not exist in driver {driver!r}", name)
        return device

    def get_driver_name_by_device(self, name: str) -> str:
        return self._device_driver.get(name, "")

    def get_all_devices(self, driver: str) -> list[DeviceInfo]:
        tables = self._driver_tables(driver)
        return list(tables.devices.values()) if tables else []

    def get_device_model(self, driver: str, device: str) -> list[DeviceProperty]:
        info = self.get_device(driver, device)
        properties = self._driver_tables(driver).device_models.get(info.device_model)
        if properties is None:
            raise DeviceModelNotExistError(f"device model {info.device_model!r} not exist", info.device_model)
        return properties

    def get_all_device_models(self, driver: str) -> dict[str, list[DeviceProperty]]:
        tables = self._driver_tables(driver)
        return dict(tables.device_models) if tables else {}

    def get_access_templates(self, driver: str, device: str) -> AccessTemplate:
        """Return the access template bound to `device`."""
        info = self.get_device(driver, device)
        template = self._driver_tables(driver).access_templates.get(info.access_template)
        if template is None:
            raise AccessTemplateNotExistError(
                f"access template {info.access_template!r} not exist", info.access_template
            )
        return template

    def get_all_access_templates(self, driver: str) -> dict[str, AccessTemplate]:
        tables = self._driver_tables(driver)
        return dict(tables.access_templates) if tables else {}

    def get_driver_config(self, driver: str) -> str:
        tables = self._driver_tables(driver)
        return tables.driver_config if tables else ""

    def get_device_access_config(self, driver: str, device: str) -> AccessConfig:
        info = self.get_device(driver, device)
        if info.access_config is None:
            raise AccessConfigNotExistError(f"access config of device {device!r} not exist", device)
        return info.access_config

    # ----------------------------
    # Normalization
    # ----------------------------

    def parse_property_values(self, driver: str, device: str, props: dict[str, Any]) -> dict[str, Any]:
        """Coerce inbound values by property name with the strict JSON-number rules."""
        by_name = {prop.name: prop for prop in self.get_device_model(driver, device)}
        parsed: dict[str, Any] = {}
        for key, value in props.items():
            prop = by_name.get(key)
            if prop is None:
                raise PropsConfigNotExistError(f"property {key!r} not in model of device {device!r}", key)
            parsed[key] = parse_property_value(prop.type, value)
        return parsed

    def data_clean(self, driver: str, device: str, report: dict[str, Any]) -> dict[str, Any]:
        """
        Filter a report by the deviation / silentWin of each attribute mapping.

        A numeric attribute passes when it moved more than `deviation` since it
        was last passed, or `silentWin` seconds elapsed since then; a
        `silentWin` of 0 disables the window. Attributes without a mapping and
        non-numeric values always pass.
        """
        template = self.get_access_templates(driver, device)
        now = self._clock()
        cleaned: dict[str, Any] = {}
        for key, value in report.items():
            mapping = template.find_mapping(key)
            if mapping is None or not is_number(value):
                cleaned[key] = value
                continue

            point_key = (driver, device, key)
            point = self._clean_points.get(point_key)
            current = float(value)
            if (
                point is None
                or abs(current - point.value) > mapping.deviation
                or (mapping.silent_win > 0 and now - point.reported_at >= mapping.silent_win)
            ):
                cleaned[key] = value
                self._clean_points[point_key] = _CleanPoint(value=current, reported_at=now)
        return cleaned

    # ----------------------------
    # Send
    # ----------------------------

    def _publish(self, info: DeviceInfo, kind: TopicKind, envelope: dict[str, Any]) -> str:
        if self.mqtt is None:
            raise TransportError("mqtt client not configured")
        qos_topic = info.topic(kind)
        self.mqtt.publish(qos_topic.topic, dump_payload(envelope), qos=qos_topic.qos)
        self.logger.debug(f"[DM] Published {kind} of device={info.name} on {qos_topic.topic}")
        return envelope["blink"]["reqId"]

    def report_device_properties(self, driver: str, device: str, report: dict[str, Any]) -> str:
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.REPORT, gen_property_report_blink_data(report))

    def report_device_events(self, driver: str, device: str, events: dict[str, Any]) -> str:
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.EVENT_REPORT, gen_event_report_blink_data(events))

    def get_device_properties(self, driver: str, device: str, properties: list[str] | None = None) -> str:
        """
        Ask the shadow for the current values of `properties` (all when empty).

        The answer arrives as a ResponseMessage on the device mailbox; the
        returned reqId correlates the two.
        """
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.GET, gen_property_get_blink_data(properties or []))

    def property_get(self, driver: str, device: str, properties: list[str]) -> str:
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.PROPERTY_GET, gen_property_get_blink_data(properties))

    def online(self, driver: str, device: str) -> str:
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.LIFECYCLE_REPORT, gen_lifecycle_report_blink_data(True))

    def offline(self, driver: str, device: str) -> str:
        info = self.get_device(driver, device)
        return self._publish(info, TopicKind.LIFECYCLE_REPORT, gen_lifecycle_report_blink_data(False))

    # ----------------------------
    # Receive
    # ----------------------------

    def subscribe(self, driver: str, device: str) -> Mailbox:
        """Create the device mailbox and subscribe its inbound topics."""
        info = self.get_device(driver, device)
        mailbox = self.mailboxes.get_or_create(info.name)

        topics: list[tuple[str, int]] = []
        for kind in INBOUND_TOPIC_KINDS:
            qos_topic = info.topic(kind)
            self.observer.register_route(qos_topic.topic, info.name, kind)
            topics.append((qos_topic.topic, qos_topic.qos))
        if self.mqtt is not None:
            self.mqtt.subscribe(topics)
        self.logger.info(f"[DM] Subscribed device={info.name} ({len(topics)} topics)")
        return mailbox

    def start(self, driver: str) -> dict[str, Mailbox]:
        """Subscribe every device of `driver` and start the MQTT client once."""
        mailboxes = {info.name: self.subscribe(driver, info.name) for info in self.get_all_devices(driver)}
        if self.mqtt is not None and not self._mqtt_started:
            self.mqtt.start()
            self._mqtt_started = True
        self.logger.info(f"[DM] Started driver={driver} with {len(mailboxes)} devices")
        return mailboxes

    def close(self) -> None:
        self.mailboxes.close_all()
        if self.mqtt is not None and self._mqtt_started:
            self.mqtt.close()
            self._mqtt_started = False

    # ----------------------------
    # Service context forwarding
    # ----------------------------

    @property
    def config_file(self) -> str | None:
        return self.service_ctx.config_file if self.service_ctx else None

    def log(self) -> logging.Logger:
        return self.service_ctx.log() if self.service_ctx else self.logger

    def wait(self, timeout: float | None = None) -> bool:
        if self.service_ctx is None:
            raise RuntimeError("wait() requires a service context")
        return self.service_ctx.wait(timeout)
