from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BlinkData(BaseModel):
    """
    Body of a blink envelope.

    Each method fills exactly one of properties / events / params; the other
    two stay None and are left out of the wire form.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    req_id: str | None = Field(default=None, alias="reqId")
    method: str | None = None
    version: str | None = None
    timestamp: int | None = None
    properties: Any = None
    events: dict[str, Any] | None = None
    params: dict[str, Any] | None = None


class BlinkContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    blink: BlinkData = Field(default_factory=BlinkData)

    def to_wire(self) -> dict[str, Any]:
        blink = self.blink
        fields: dict[str, Any] = {
            "reqId": blink.req_id,
            "method": blink.method,
            "version": blink.version,
            "timestamp": blink.timestamp,
            "properties": blink.properties,
            "events": blink.events,
            "params": blink.params,
        }
        return {"blink": {key: value for key, value in fields.items() if value is not None}}
