"""
Protocol access configuration attached to a sub-device.

The runtime never interprets these records; drivers own protocol-specific
validation. Decoding is therefore permissive by default: unknown fields are
ignored and a malformed sub-config leaves its tag unset instead of failing the
whole device. Callers that want failures surfaced pass
`strict_access_config=True` in the validation context.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger("AccessConfig")

ACCESS_CONFIG_TAGS: tuple[str, ...] = ("modbus", "opcua", "opcda", "bacnet", "iec104", "custom")

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> timedelta | None:
    """
    Parse a duration string ("10s", "1m30s", "250ms") into a timedelta.

    Plain numbers are taken as seconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=sign * seconds)


class _DurationModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    @field_validator("interval", "timeout", "idle_timeout", mode="before", check_fields=False)
    @classmethod
    def _to_duration(cls, v: Any) -> timedelta | None:
        return parse_duration(v)


class TcpConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    address: str
    port: int = Field(..., ge=0, le=65535)


class RtuConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    port: str
    baudrate: int = 19200
    parity: Literal["E", "N", "O"] = "E"
    databit: int = Field(default=8, ge=5, le=8)
    stopbit: int = Field(default=1, ge=1, le=2)


class ModbusAccessConfig(_DurationModel):
    id: int = Field(default=0, ge=0, le=255)
    interval: timedelta | None = None
    timeout: timedelta | None = Field(default=timedelta(seconds=10))
    idle_timeout: timedelta | None = Field(default=timedelta(minutes=1), alias="idletimeout")
    tcp: TcpConfig | None = None
    rtu: RtuConfig | None = None


class OpcuaSecurity(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    policy: str | None = None
    mode: str | None = None


class OpcuaAuth(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    username: str | None = None
    password: str | None = None


class OpcuaCertificate(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    cert: str | None = None
    key: str | None = None


class OpcuaAccessConfig(_DurationModel):
    id: int = Field(default=0, ge=0, le=255)
    endpoint: str | None = None
    interval: timedelta | None = None
    timeout: timedelta | None = None
    security: OpcuaSecurity = Field(default_factory=OpcuaSecurity)
    auth: OpcuaAuth | None = None
    certificate: OpcuaCertificate | None = None
    ns_offset: int = Field(default=0, alias="nsOffset")
    id_offset: int = Field(default=0, alias="idOffset")


class OpcdaAccessConfig(_DurationModel):
    server: str | None = None
    host: str | None = None
    group: str | None = None
    interval: timedelta | None = None


class BacnetAccessConfig(_DurationModel):
    id: int = Field(default=0, ge=0, le=255)
    interval: timedelta | None = None
    device_id: int = Field(default=0, ge=0, alias="deviceId")
    address_offset: int = Field(default=0, ge=0, alias="addressOffset")
    address: str | None = None
    port: int | None = None


class IEC104AccessConfig(_DurationModel):
    id: int = Field(default=0, ge=0, le=255)
    interval: timedelta | None = None
    endpoint: str | None = None
    ai_offset: int = Field(default=0, ge=0, alias="aiOffset")
    di_offset: int = Field(default=0, ge=0, alias="diOffset")
    ao_offset: int = Field(default=0, ge=0, alias="aoOffset")
    do_offset: int = Field(default=0, ge=0, alias="doOffset")


_TAG_MODELS: dict[str, type[BaseModel]] = {
    "modbus": ModbusAccessConfig,
    "opcua": OpcuaAccessConfig,
    "opcda": OpcdaAccessConfig,
    "bacnet": BacnetAccessConfig,
    "iec104": IEC104AccessConfig,
}


class AccessConfig(BaseModel):
    """
    Tagged union: at most one of the six tags is set.

    `custom` carries the raw YAML value untouched.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    modbus: ModbusAccessConfig | None = None
    opcua: OpcuaAccessConfig | None = None
    opcda: OpcdaAccessConfig | None = None
    bacnet: BacnetAccessConfig | None = None
    iec104: IEC104AccessConfig | None = None
    custom: Any = None

    @property
    def kind(self) -> str | None:
        for tag in ACCESS_CONFIG_TAGS:
            if getattr(self, tag) is not None:
                return tag
        return None

    @property
    def value(self) -> Any:
        tag = self.kind
        return getattr(self, tag) if tag else None

    @classmethod
    def decode(cls, raw: Any, *, strict: bool = False) -> "AccessConfig | None":
        if raw is None:
            return None
        if isinstance(raw, AccessConfig):
            return raw

        # a bare scalar is a custom config
        if not isinstance(raw, dict):
            if isinstance(raw, (str, int, float, bool)):
                return cls(custom=raw)
            if strict:
                raise ValueError(f"invalid access config: {raw!r}")
            logger.debug(f"[AccessConfig] ignore unsupported access config {raw!r}")
            return cls()

        present: list[str] = [tag for tag in ACCESS_CONFIG_TAGS if raw.get(tag) is not None]

        # a mapping without any tag is a legacy modbus config
        if not present:
            if not raw:
                return cls()
            try:
                return cls(modbus=ModbusAccessConfig.model_validate(raw))
            except ValidationError as e:
                if strict:
                    raise ValueError(f"invalid legacy modbus access config: {e}") from e
                logger.debug(f"[AccessConfig] ignore legacy modbus access config: {e}")
                return cls()

        if len(present) > 1:
            if strict:
                raise ValueError(f"access config must carry exactly one of {ACCESS_CONFIG_TAGS}, got {present}")
            logger.warning(f"[AccessConfig] multiple tags {present}, keep {present[0]!r}")

        tag = present[0]
        if tag == "custom":
            return cls(custom=raw["custom"])

        try:
            return cls(**{tag: _TAG_MODELS[tag].model_validate(raw[tag])})
        except ValidationError as e:
            if strict:
                raise ValueError(f"invalid {tag} access config: {e}") from e
            logger.debug(f"[AccessConfig] ignore invalid {tag} access config: {e}")
            return cls()
