from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from dmr.model.enum.topic_kind_enum import TopicKind
from dmr.schema.device_schema import DeviceEvent, DeviceShadow


class DeltaMessage(BaseModel):
    """Desired property values pushed to a device."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: Literal[TopicKind.DELTA] = TopicKind.DELTA
    device: str
    properties: dict[str, Any] = Field(default_factory=dict)
    req_id: str | None = None


class EventMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: Literal[TopicKind.EVENT] = TopicKind.EVENT
    device: str
    event: DeviceEvent


class ResponseMessage(BaseModel):
    """Shadow answer to a property-get request."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: Literal[TopicKind.GET_RESPONSE] = TopicKind.GET_RESPONSE
    device: str
    shadow: DeviceShadow


DeviceMessage = DeltaMessage | EventMessage | ResponseMessage
