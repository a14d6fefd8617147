import logging
from typing import Any

from pydantic import ValidationError

from dmr.exception import DmrError, InvalidDeltaError
from dmr.model.device_message import DeltaMessage, DeviceMessage, EventMessage, ResponseMessage
from dmr.model.enum.blink_method_enum import BLINK
from dmr.model.enum.topic_kind_enum import TopicKind
from dmr.schema.device_schema import DeviceEvent, DeviceShadow
from dmr.util.blink import load_payload
from dmr.util.mailbox import MailboxRegistry
from dmr.util.topic import parse_topic


class DeviceObserver:
    """
    Observer attached to the MQTT client.

    Runs on the client's network thread: it decodes the inbound PUBLISH,
    wraps it as a device message and offers it to the device mailbox without
    blocking. Every failure is logged and swallowed so the transport keeps
    running.
    """

    def __init__(self, mailboxes: MailboxRegistry):
        self.mailboxes = mailboxes
        self.logger = logging.getLogger(__class__.__name__)
        # explicit topic -> (device, kind) routes for non-default device topics
        self._routes: dict[str, tuple[str, str]] = {}

    def register_route(self, topic: str, device: str, kind: str) -> None:
        self._routes[topic] = (device, kind)

    def on_publish(self, topic: str, payload: bytes | bytearray | str) -> bool:
        """Return True when the message was queued for its device."""
        try:
            device, kind = self._routes.get(topic) or parse_topic(topic)
            message = self._decode(device, kind, payload)
        except (DmrError, ValidationError) as e:
            self.logger.error(f"[Observer] Drop message on topic={topic}: {e}")
            return False
        except Exception as e:
            self.logger.exception(f"[Observer] Unexpected error on topic={topic}: {e}")
            return False

        if message is None:
            self.logger.warning(f"[Observer] Drop message on unsupported topic={topic}")
            return False
        return self.mailboxes.offer(device, message)

    def on_puback(self, mid: int) -> None:
        self.logger.debug(f"[Observer] PUBACK mid={mid}")

    def on_error(self, error: Any) -> None:
        self.logger.warning(f"[Observer] Transport error: {error}")

    def _decode(self, device: str, kind: str, payload: bytes | bytearray | str) -> DeviceMessage | None:
        if kind == TopicKind.DELTA:
            properties, req_id = self._decode_delta(load_payload(payload))
            return DeltaMessage(device=device, properties=properties, req_id=req_id)
        if kind == TopicKind.EVENT:
            return EventMessage(device=device, event=DeviceEvent.model_validate(load_payload(payload)))
        if kind == TopicKind.GET_RESPONSE:
            return ResponseMessage(device=device, shadow=DeviceShadow.model_validate(load_payload(payload)))
        return None

    @staticmethod
    def _decode_delta(raw: Any) -> tuple[dict[str, Any], str | None]:
        # either a bare property map or a blink envelope carrying one
        if isinstance(raw, dict) and isinstance(raw.get(BLINK), dict):
            blink = raw[BLINK]
            properties = blink.get("properties")
            if not isinstance(properties, dict):
                raise InvalidDeltaError(f"delta properties must be a map, got {type(properties).__name__}")
            req_id = blink.get("reqId")
            return properties, req_id if isinstance(req_id, str) else None
        if isinstance(raw, dict):
            return raw, None
        raise InvalidDeltaError(f"delta payload must be a map, got {type(raw).__name__}")
