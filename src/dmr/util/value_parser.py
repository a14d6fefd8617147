"""
Value parsing against thing-model types.

Two entry points:
    parse_value(type, value, args)
        Lenient. Numbers and numeric strings are coerced into the target
        width; time/date, array, enum and object are reshaped using `args`.
    parse_property_value(type, value)
        Strict. Numeric types must arrive as JSON numbers (Decimal, as decoded
        by util.blink.load_payload, or int); every other supported type is
        passed through untouched.

Python has no fixed-width numbers, so integer widths come back as range-checked
`int` and float32 as a `float` rounded through IEEE-754 single precision.
"""

import math
import struct
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ValidationError

from dmr.exception import TypeNotSupportedError, UnsupportedValueTypeError
from dmr.model.enum.property_type_enum import (
    INTEGER_RANGES,
    INTEGER_TYPES,
    NUMERIC_TYPES,
    PropertyType,
)
from dmr.schema.device_model_schema import ArrayType, EnumType, ObjectType

# output layouts, keyed case-insensitively
TIME_FORMATS: dict[str, str] = {
    "yyyy-mm-dd": "%Y-%m-%d",
    "yyyy.mm.dd": "%Y.%m.%d",
    "yyyy/mm/dd": "%Y/%m/%d",
    "mm-dd-yyyy": "%m-%d-%Y",
    "hh:mm:ss": "%H:%M:%S",
}

# accepted source layouts, tried in order
PARSE_LAYOUTS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y.%m.%d",
    "%Y/%m/%d",
    "%H:%M:%S",
    "%H-%M-%S",
    "%H.%M.%S",
)

_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


# ----------------------------
# Numeric helpers
# ----------------------------


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_float32(value: float) -> float:
    """Round a float through IEEE-754 single precision."""
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except (OverflowError, struct.error) as e:
        raise UnsupportedValueTypeError(f"value {value!r} overflows float32", value) from e


def check_int_range(typ: PropertyType, value: int) -> int:
    low, high = INTEGER_RANGES[typ]
    if value < low or value > high:
        raise UnsupportedValueTypeError(f"value {value} overflows {typ}", value)
    return value


def narrow_float(typ: str, value: float) -> int | float:
    """
    Narrow a float64 into a numeric thing-model type.

    Integer types truncate toward zero, float32 rounds to single precision,
    float64 is returned as is.
    """
    ptype = PropertyType.from_string(str(typ))
    if ptype is None or ptype not in NUMERIC_TYPES:
        raise TypeNotSupportedError(f"type not supported: {typ}")
    if not math.isfinite(value):
        raise UnsupportedValueTypeError(f"value {value!r} is not finite", value)
    if ptype in INTEGER_TYPES:
        return check_int_range(ptype, math.trunc(value))
    if ptype == PropertyType.FLOAT32:
        return to_float32(value)
    return float(value)


def parse_value_to_float64(value: Any) -> float:
    if not is_number(value):
        raise UnsupportedValueTypeError(f"unsupported value type: {type(value).__name__}", value)
    return float(value)


def parse_value_to_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise UnsupportedValueTypeError(f"unsupported value type: {type(value).__name__}", value)
    return value


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise UnsupportedValueTypeError("bool is not a number", value)
    try:
        if isinstance(value, Decimal):
            number = value
        elif isinstance(value, int):
            number = Decimal(value)
        elif isinstance(value, float):
            number = Decimal(repr(value))
        elif isinstance(value, str):
            number = Decimal(value.strip())
        else:
            raise UnsupportedValueTypeError(f"unsupported value type: {type(value).__name__}", value)
    except InvalidOperation as e:
        raise UnsupportedValueTypeError(f"invalid number: {value!r}", value) from e
    if not number.is_finite():
        raise UnsupportedValueTypeError(f"invalid number: {value!r}", value)
    return number


def _decimal_to_type(ptype: PropertyType, number: Decimal) -> int | float:
    if ptype in INTEGER_TYPES:
        return check_int_range(ptype, int(number))
    as_float = float(number)
    if not math.isfinite(as_float):
        raise UnsupportedValueTypeError(f"value {number} overflows {ptype}", number)
    if ptype == PropertyType.FLOAT32:
        return to_float32(as_float)
    return as_float


def _format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


# ----------------------------
# Lenient parsing
# ----------------------------


def parse_value(typ: str, value: Any, args: Any = None) -> Any:
    ptype = PropertyType.from_string(str(typ))
    if ptype is None:
        raise TypeNotSupportedError(f"unsupported type: {typ}")

    if ptype in NUMERIC_TYPES:
        return _decimal_to_type(ptype, _to_decimal(value))
    if ptype == PropertyType.BOOL:
        return _parse_bool(value)
    if ptype == PropertyType.STRING:
        return _parse_string(value)
    if ptype in (PropertyType.TIME, PropertyType.DATE):
        return _parse_time(value, args)
    if ptype == PropertyType.ARRAY:
        return _parse_array(value, args)
    if ptype == PropertyType.ENUM:
        return _parse_enum(value, args)
    return _parse_object(value, args)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        text = value.strip()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise UnsupportedValueTypeError(f"cannot parse {value!r} as bool", value)


def _parse_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return _format_number(value)
    raise UnsupportedValueTypeError(f"cannot parse {type(value).__name__} as string", value)


def _parse_time(value: Any, args: Any) -> str:
    if not isinstance(args, str):
        raise UnsupportedValueTypeError(f"time format required, got {args!r}", value)
    layout = TIME_FORMATS.get(args.lower())
    if layout is None:
        raise UnsupportedValueTypeError(f"unsupported time format: {args}", value)

    if isinstance(value, datetime):
        return value.strftime(layout)
    if isinstance(value, date):
        return datetime.combine(value, time()).strftime(layout)
    if isinstance(value, time):
        return datetime.combine(date(1900, 1, 1), value).strftime(layout)
    if is_number(value):
        try:
            return datetime.fromtimestamp(float(value)).strftime(layout)
        except (OverflowError, OSError, ValueError) as e:
            raise UnsupportedValueTypeError(f"invalid timestamp: {value!r}", value) from e
    if isinstance(value, str):
        for source_layout in PARSE_LAYOUTS:
            try:
                parsed = datetime.strptime(value, source_layout)
            except ValueError:
                continue
            return parsed.strftime(layout)
    raise UnsupportedValueTypeError(f"cannot parse {value!r} as time", value)


def _coerce_args(args: Any, model: type[BaseModel]) -> Any:
    if isinstance(args, model):
        return args
    if isinstance(args, dict):
        try:
            return model.model_validate(args)
        except ValidationError as e:
            raise UnsupportedValueTypeError(f"invalid {model.__name__}: {e}") from e
    raise UnsupportedValueTypeError(f"{model.__name__} required, got {type(args).__name__}")


def _parse_array(value: Any, args: Any) -> list[Any]:
    array_type: ArrayType = _coerce_args(args, ArrayType)
    if not isinstance(value, (list, tuple)):
        raise UnsupportedValueTypeError(f"array required, got {type(value).__name__}", value)
    if len(value) < array_type.min or len(value) > array_type.max:
        raise UnsupportedValueTypeError(
            f"the length of the array {len(value)} does not conform to the range "
            f"[{array_type.min}, {array_type.max}]",
            value,
        )
    return [parse_value(array_type.type, item, array_type.format) for item in value]


def _parse_enum(value: Any, args: Any) -> str:
    enum_type: EnumType = _coerce_args(args, EnumType)
    target = parse_value(enum_type.type, value)
    for enum_value in enum_type.values:
        if parse_value(enum_type.type, enum_value.value) == target:
            return enum_value.name
    raise UnsupportedValueTypeError(f"no matching enum value for {value!r}", value)


def _parse_object(value: Any, args: Any) -> dict[str, Any]:
    if not isinstance(args, dict):
        raise UnsupportedValueTypeError(f"object type mapping required, got {type(args).__name__}", value)
    if not isinstance(value, dict):
        raise UnsupportedValueTypeError(f"object required, got {type(value).__name__}", value)

    parsed: dict[str, Any] = {}
    for key, object_type in args.items():
        if key not in value:
            continue
        object_type = _coerce_args(object_type, ObjectType)
        parsed[key] = parse_value(object_type.type, value[key], object_type.format)
    return parsed


# ----------------------------
# Strict parsing (inbound JSON)
# ----------------------------


def parse_property_value(typ: str, value: Any) -> Any:
    ptype = PropertyType.from_string(str(typ))
    if ptype is None:
        raise TypeNotSupportedError(f"type not supported: {typ}")
    if ptype not in NUMERIC_TYPES:
        return value

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int) and not isinstance(value, bool):
        number = Decimal(value)
    else:
        raise UnsupportedValueTypeError(f"{ptype} requires a JSON number, got {type(value).__name__}", value)
    if not number.is_finite():
        raise UnsupportedValueTypeError(f"invalid number: {value!r}", value)

    if ptype in INTEGER_TYPES and number != number.to_integral_value():
        raise UnsupportedValueTypeError(f"{ptype} requires an integer, got {number}", value)
    return _decimal_to_type(ptype, number)

