from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dmr.model.enum.property_type_enum import MappingType
from dmr.schema.device_model_schema import DeviceProperty


class ModelMapping(BaseModel):
    """
    Maps one user-facing attribute onto raw device properties.

    expression:
      `method(x<ID>, ..., literal, ...)`; see util.expression.
    deviation / silent_win:
      Data-clean thresholds; a numeric attribute is re-reported only when it
      moved more than `deviation` or `silentWin` seconds elapsed.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    attribute: str
    type: MappingType = MappingType.NONE
    expression: str = ""
    precision: int = 2
    deviation: float = 0.0
    silent_win: int = Field(default=0, alias="silentWin")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        if v is None or v == "":
            return MappingType.NONE
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("expression", mode="before")
    @classmethod
    def _none_expression(cls, v: Any) -> Any:
        return "" if v is None else v


class AccessTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    name: str = ""
    version: str = ""
    properties: list[DeviceProperty] = Field(default_factory=list)
    mappings: list[ModelMapping] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _to_str_version(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("properties", "mappings", mode="before")
    @classmethod
    def _none_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def find_property(self, property_id: str) -> DeviceProperty | None:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None

    def find_mapping(self, attribute: str) -> ModelMapping | None:
        for mapping in self.mappings:
            if mapping.attribute == attribute:
                return mapping
        return None
