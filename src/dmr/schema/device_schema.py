from __future__ import annotations

from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from dmr.model.enum.topic_kind_enum import DEVICE_TOPIC_PREFIX, TopicKind
from dmr.schema.access_config_schema import AccessConfig


def default_device_topic(device_name: str, kind: TopicKind | str) -> str:
    return f"{DEVICE_TOPIC_PREFIX}/{device_name}/{kind}"


class QosTopic(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    topic: str = Field(..., min_length=1)
    qos: int = Field(default=0, ge=0, le=1)


class DeviceTopic(BaseModel):
    """The eight (topic, qos) pairs of one device."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    delta: QosTopic | None = None
    report: QosTopic | None = None
    event: QosTopic | None = None
    get: QosTopic | None = None
    get_response: QosTopic | None = Field(default=None, alias="getResponse")
    event_report: QosTopic | None = Field(default=None, alias="eventReport")
    property_get: QosTopic | None = Field(default=None, alias="propertyGet")
    lifecycle_report: QosTopic | None = Field(default=None, alias="lifecycleReport")

    def by_kind(self, kind: TopicKind) -> QosTopic | None:
        return getattr(self, _KIND_FIELDS[kind])

    def with_defaults(self, device_name: str) -> "DeviceTopic":
        """Fill every missing kind with `$baetyl/device/<name>/<kind>` at QoS 0."""
        filled: dict[str, QosTopic] = {}
        for kind, field_name in _KIND_FIELDS.items():
            current = getattr(self, field_name)
            filled[field_name] = current or QosTopic(topic=default_device_topic(device_name, kind), qos=0)
        return DeviceTopic(**filled)


_KIND_FIELDS: dict[TopicKind, str] = {
    TopicKind.DELTA: "delta",
    TopicKind.REPORT: "report",
    TopicKind.EVENT: "event",
    TopicKind.GET: "get",
    TopicKind.GET_RESPONSE: "get_response",
    TopicKind.EVENT_REPORT: "event_report",
    TopicKind.PROPERTY_GET: "property_get",
    TopicKind.LIFECYCLE_REPORT: "lifecycle_report",
}


class DeviceInfo(BaseModel):
    """One row of `devices:` in sub_devices.yml."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1)
    version: str = ""
    device_model: str = Field(..., alias="deviceModel")
    access_template: str = Field(..., alias="accessTemplate")
    device_topic: DeviceTopic = Field(
        default_factory=DeviceTopic,
        validation_alias=AliasChoices("deviceTopic", "topics", "device_topic"),
        serialization_alias="deviceTopic",
    )
    access_config: AccessConfig | None = Field(default=None, alias="accessConfig")

    @field_validator("name", "version", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("device_topic", mode="before")
    @classmethod
    def _none_topic(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("access_config", mode="before")
    @classmethod
    def _decode_access_config(cls, v: Any, info: ValidationInfo) -> AccessConfig | None:
        strict = bool(info.context and info.context.get("strict_access_config"))
        return AccessConfig.decode(v, strict=strict)

    @field_validator("device_topic", mode="after")
    @classmethod
    def _fill_default_topics(cls, v: DeviceTopic, info: ValidationInfo) -> DeviceTopic:
        name = info.data.get("name")
        return v.with_defaults(name) if name else v

    def topic(self, kind: TopicKind) -> QosTopic:
        qos_topic = self.device_topic.by_kind(kind)
        if qos_topic is None:
            return QosTopic(topic=default_device_topic(self.name, kind), qos=0)
        return qos_topic


class SubDevicesFileConfig(BaseModel):
    """Root config for sub_devices.yml"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    driver: str = ""
    devices: list[DeviceInfo] = Field(default_factory=list)

    @field_validator("driver", mode="before")
    @classmethod
    def _none_driver(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("devices", mode="before")
    @classmethod
    def _none_devices(cls, v: Any) -> Any:
        return [] if v is None else v

    @model_validator(mode="after")
    def _check_unique_names(self) -> "SubDevicesFileConfig":
        seen: set[str] = set()
        for device in self.devices:
            if device.name in seen:
                raise ValueError(f"duplicate device name {device.name!r}")
            seen.add(device.name)
        return self


class DeviceShadow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    report: dict[str, Any] = Field(default_factory=dict)
    desire: dict[str, Any] = Field(default_factory=dict)

    @field_validator("report", "desire", mode="before")
    @classmethod
    def _none_map(cls, v: Any) -> Any:
        return {} if v is None else v


class DeviceEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)
    payload: Any = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_map(cls, v: Any) -> Any:
        return {} if v is None else v
