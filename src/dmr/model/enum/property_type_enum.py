from enum import StrEnum


class PropertyType(StrEnum):
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    BOOL = "bool"
    STRING = "string"
    TIME = "time"
    DATE = "date"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def from_string(cls, value: str) -> "PropertyType | None":
        try:
            return cls(value)
        except ValueError:
            return None


INTEGER_TYPES: frozenset[PropertyType] = frozenset({PropertyType.INT16, PropertyType.INT32, PropertyType.INT64})
FLOAT_TYPES: frozenset[PropertyType] = frozenset({PropertyType.FLOAT32, PropertyType.FLOAT64})
NUMERIC_TYPES: frozenset[PropertyType] = INTEGER_TYPES | FLOAT_TYPES

# inclusive (min, max) per integer width
INTEGER_RANGES: dict[PropertyType, tuple[int, int]] = {
    PropertyType.INT16: (-(2**15), 2**15 - 1),
    PropertyType.INT32: (-(2**31), 2**31 - 1),
    PropertyType.INT64: (-(2**63), 2**63 - 1),
}


class PropertyMode(StrEnum):
    READ_ONLY = "ro"
    READ_WRITE = "rw"


class MappingType(StrEnum):
    NONE = "none"
    VALUE = "value"
    CALCULATE = "calculate"
