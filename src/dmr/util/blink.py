"""
Blink envelope codec.

Wire form:
    {"blink": {"reqId", "method", "version", "timestamp",
               "properties" | "events" | "params"}}

Every constructor fills exactly one content field. Inbound JSON is decoded with
numbers as `Decimal`, so strict property parsing keeps the full precision of
the literal.
"""

import json
import logging
import time
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from dmr.exception import InvalidPropertyKeyError, PayloadError
from dmr.model.enum.blink_method_enum import BLINK, BLINK_VERSION, KEY_ONLINE_STATE, BlinkMethod
from dmr.schema.blink_schema import BlinkContent, BlinkData

logger = logging.getLogger("Blink")


def gen_req_id() -> str:
    return str(uuid.uuid4())


def gen_timestamp() -> int:
    """Unix time in milliseconds."""
    return time.time_ns() // 1_000_000


def _gen_blink(method: BlinkMethod, **content: Any) -> dict[str, Any]:
    data = BlinkData(
        req_id=gen_req_id(),
        method=method.value,
        version=BLINK_VERSION,
        timestamp=gen_timestamp(),
        **content,
    )
    return BlinkContent(blink=data).to_wire()


def gen_delta_blink_data(properties: dict[str, Any]) -> dict[str, Any]:
    return _gen_blink(BlinkMethod.PROPERTY_INVOKE, properties=dict(properties))


def gen_property_report_blink_data(properties: dict[str, Any]) -> dict[str, Any]:
    return _gen_blink(BlinkMethod.PROPERTY_REPORT, properties=dict(properties))


def gen_event_report_blink_data(events: dict[str, Any]) -> dict[str, Any]:
    return _gen_blink(BlinkMethod.EVENT_REPORT, events=dict(events))


def gen_property_get_blink_data(properties: list[str]) -> dict[str, Any]:
    return _gen_blink(BlinkMethod.PROPERTY_GET, properties=list(properties))


def gen_lifecycle_report_blink_data(online: bool) -> dict[str, Any]:
    return _gen_blink(BlinkMethod.LIFECYCLE_POST, params={KEY_ONLINE_STATE: bool(online)})


# ----------------------------
# JSON
# ----------------------------


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise TypeError(f"non-finite number {obj} is not JSON serializable")
        return int(obj) if obj == obj.to_integral_value() and "." not in str(obj) else float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dump_payload(obj: Any) -> bytes:
    text = json.dumps(obj, default=_json_default, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    return text.encode("utf-8")


def load_payload(payload: bytes | bytearray | str) -> Any:
    """Decode JSON with every number kept as Decimal."""
    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        return json.loads(payload, parse_float=Decimal, parse_int=Decimal)
    except UnicodeDecodeError as e:
        raise PayloadError(f"payload is not utf-8: {e}") from e
    except json.JSONDecodeError as e:
        raise PayloadError(f"invalid json payload: {e}") from e


def parse_blink(payload: bytes | bytearray | str | dict) -> BlinkContent:
    raw = payload if isinstance(payload, dict) else load_payload(payload)
    if not isinstance(raw, dict) or not isinstance(raw.get(BLINK), dict):
        raise PayloadError("payload is not a blink envelope")
    try:
        return BlinkContent.model_validate(raw)
    except ValidationError as e:
        raise PayloadError(f"invalid blink envelope: {e}") from e


def parse_property_keys(value: Any) -> list[str]:
    """Convert a decoded `properties` field of a property-get request into a key list."""
    if not isinstance(value, list):
        raise InvalidPropertyKeyError(f"property keys must be a list, got {type(value).__name__}")
    keys: list[str] = []
    for key in value:
        if not isinstance(key, str):
            raise InvalidPropertyKeyError(f"property key must be a string, got {key!r}")
        keys.append(key)
    return keys


class BlinkCodec:
    """Message codec selected by name; `blink` is the only one."""

    name = BLINK

    def gen_delta(self, properties: dict[str, Any]) -> dict[str, Any]:
        return gen_delta_blink_data(properties)

    def gen_property_report(self, properties: dict[str, Any]) -> dict[str, Any]:
        return gen_property_report_blink_data(properties)

    def gen_event_report(self, events: dict[str, Any]) -> dict[str, Any]:
        return gen_event_report_blink_data(events)

    def gen_property_get(self, properties: list[str]) -> dict[str, Any]:
        return gen_property_get_blink_data(properties)

    def gen_lifecycle_report(self, online: bool) -> dict[str, Any]:
        return gen_lifecycle_report_blink_data(online)

    def encode(self, envelope: dict[str, Any]) -> bytes:
        return dump_payload(envelope)

    def decode(self, payload: bytes | bytearray | str) -> BlinkContent:
        return parse_blink(payload)


_CODECS: dict[str, type[BlinkCodec]] = {BLINK: BlinkCodec}


def init_msg(name: str = BLINK) -> BlinkCodec:
    codec_cls = _CODECS.get(name)
    if codec_cls is None:
        raise ValueError(f"unsupported message codec: {name}")
    return codec_cls()
