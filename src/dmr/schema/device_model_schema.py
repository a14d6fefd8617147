from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dmr.model.enum.property_type_enum import PropertyMode, PropertyType


class EnumValue(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    value: Any = None
    display_name: str | None = Field(default=None, alias="displayName")

    @field_validator("name", mode="before")
    @classmethod
    def _to_str_name(cls, v: Any) -> str:
        return v if isinstance(v, str) else str(v)


class EnumType(BaseModel):
    """Used when DeviceProperty.type is enum"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    values: list[EnumValue] = Field(default_factory=list)


class ArrayType(BaseModel):
    """Used when DeviceProperty.type is array"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    min: int = Field(default=0, ge=0)
    max: int = Field(default=0, ge=0)
    format: str | None = None


class ObjectType(BaseModel):
    """One field of an object-typed property"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    display_name: str | None = Field(default=None, alias="displayName")
    format: str | None = None


class DeviceProperty(BaseModel):
    """
    One property of a thing model (or an access template).

    `visitor` holds the protocol-specific addressing of the property and is
    never interpreted by the runtime.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    type: PropertyType
    mode: PropertyMode = PropertyMode.READ_ONLY
    unit: str | None = None
    format: str | None = None
    enum_type: EnumType | None = Field(default=None, alias="enumType")
    array_type: ArrayType | None = Field(default=None, alias="arrayType")
    object_type: dict[str, ObjectType] | None = Field(default=None, alias="objectType")
    object_required: list[str] | None = Field(default=None, alias="objectRequired")
    visitor: dict[str, Any] = Field(default_factory=dict)
    current: Any = None
    expect: Any = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def _to_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("visitor", mode="before")
    @classmethod
    def _none_visitor(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def _check_sub_schema(self) -> "DeviceProperty":
        if self.type == PropertyType.ENUM and self.enum_type is None:
            raise ValueError(f"property {self.id!r}: type enum requires enumType")
        if self.type == PropertyType.ARRAY and self.array_type is None:
            raise ValueError(f"property {self.id!r}: type array requires arrayType")
        if self.type == PropertyType.OBJECT and self.object_type is None:
            raise ValueError(f"property {self.id!r}: type object requires objectType")
        return self

    def format_args(self) -> Any:
        """Return the `args` that parse_value expects for this property's type."""
        if self.type == PropertyType.ENUM:
            return self.enum_type
        if self.type == PropertyType.ARRAY:
            return self.array_type
        if self.type == PropertyType.OBJECT:
            return self.object_type
        return self.format
