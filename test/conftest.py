import copy
from pathlib import Path
from typing import Callable

import pytest
import yaml

SUB_DEVICES = {
    "driver": "modbus-driver",
    "devices": [
        {
            "name": "meter-1",
            "version": "v1",
            "deviceModel": "meter",
            "accessTemplate": "meter-template",
            "deviceTopic": {
                "delta": {"topic": "custom/meter-1/delta", "qos": 1},
                "report": {"topic": "$baetyl/device/meter-1/report", "qos": 1},
            },
            "accessConfig": {
                "modbus": {
                    "id": 1,
                    "interval": "5s",
                    "tcp": {"address": "192.168.1.10", "port": 502},
                }
            },
        },
        {
            "name": "meter-2",
            "deviceModel": "meter",
            "accessTemplate": "meter-template",
            "accessConfig": {"custom": "opaque-config"},
        },
        {
            "name": "orphan",
            "deviceModel": "missing-model",
            "accessTemplate": "meter-template",
        },
    ],
}

MODELS = {
    "meter": [
        {"id": "1", "name": "voltage", "type": "float32", "mode": "ro", "unit": "V"},
        {"id": "2", "name": "switch", "type": "bool", "mode": "rw"},
        {"id": "3", "name": "count", "type": "int16", "mode": "ro"},
        {
            "id": "4",
            "name": "state",
            "type": "enum",
            "enumType": {"type": "int32", "values": [{"name": "off", "value": 0}, {"name": "on", "value": 1}]},
        },
    ]
}

ACCESS_TEMPLATES = {
    "meter-template": {
        "name": "ignored-name",
        "version": 2,
        "properties": [
            {"id": "1", "name": "voltage-raw", "type": "int32", "visitor": {"modbus": {"address": "0x1"}}},
            {"id": "3", "name": "count-raw", "type": "int16"},
        ],
        "mappings": [
            {
                "attribute": "voltage",
                "type": "calculate",
                "expression": "ratio(x1,10)",
                "deviation": 0.5,
                "silentWin": 60,
            },
            {"attribute": "count", "type": "value", "expression": "x3"},
        ],
    }
}


def _write_driver_files(directory: Path, sub_devices=None, models=None, access_templates=None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for filename, content in (
        ("sub_devices.yml", SUB_DEVICES if sub_devices is None else sub_devices),
        ("models.yml", MODELS if models is None else models),
        ("access_template.yml", ACCESS_TEMPLATES if access_templates is None else access_templates),
    ):
        text = content if isinstance(content, str) else yaml.safe_dump(content, sort_keys=False)
        (directory / filename).write_text(text, encoding="utf-8")
    return directory


@pytest.fixture
def driver_config_data() -> dict:
    """Deep copies of the sample sub_devices / models / access_template documents"""
    return {
        "sub_devices": copy.deepcopy(SUB_DEVICES),
        "models": copy.deepcopy(MODELS),
        "access_templates": copy.deepcopy(ACCESS_TEMPLATES),
    }


@pytest.fixture
def write_driver_files(tmp_path) -> Callable[..., Path]:
    """Write the three driver files; any document may be overridden (a str is written verbatim)"""

    def _write(name: str = "driver", **overrides) -> Path:
        return _write_driver_files(tmp_path / name, **overrides)

    return _write


@pytest.fixture
def driver_dir(write_driver_files) -> Path:
    return write_driver_files()


class FakeMqttClient:
    """Records what the context publishes and subscribes; no broker involved"""

    def __init__(self):
        self.observer = None
        self.started = 0
        self.closed = 0
        self.published: list[tuple[str, bytes, int]] = []
        self.subscriptions: list[tuple[str, int]] = []

    def set_observer(self, observer) -> None:
        self.observer = observer

    def start(self) -> None:
        self.started += 1

    def close(self) -> None:
        self.closed += 1

    def publish(self, topic, payload, qos=0, retain=False) -> int:
        self.published.append((topic, payload, qos))
        return len(self.published)

    def subscribe(self, topics) -> None:
        self.subscriptions.extend(topics)


@pytest.fixture
def fake_mqtt() -> FakeMqttClient:
    return FakeMqttClient()


@pytest.fixture
def dm_ctx(fake_mqtt, driver_dir):
    from dmr.dm_context import DeviceManagementContext

    ctx = DeviceManagementContext(mqtt=fake_mqtt)
    ctx.load_driver_config(driver_dir, "modbus-driver")
    return ctx
