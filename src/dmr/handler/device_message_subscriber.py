import asyncio
import logging
from typing import Awaitable, Callable

from dmr.dm_context import DeviceManagementContext
from dmr.exception import CallbackAlreadyRegisteredError
from dmr.model.device_message import DeltaMessage, DeviceMessage, EventMessage, ResponseMessage
from dmr.schema.device_schema import DeviceEvent, DeviceInfo, DeviceShadow
from dmr.util.mailbox import Mailbox

DeltaCallback = Callable[[DeviceInfo, dict], Awaitable[None]]
EventCallback = Callable[[DeviceInfo, DeviceEvent], Awaitable[None]]
ResponseCallback = Callable[[DeviceInfo, DeviceShadow], Awaitable[None]]


class DeviceMessageSubscriber:
    """
    Reads the mailboxes of one driver and dispatches to async callbacks.

    Delta properties and shadow report/desire are normalized with the strict
    property rules before the callback sees them. A failing message is logged
    and skipped; the listener keeps running until its mailbox closes.
    """

    def __init__(self, dm_ctx: DeviceManagementContext, driver: str):
        self.dm_ctx = dm_ctx
        self.driver = driver
        self.logger = logging.getLogger(__class__.__name__)
        self._delta_cb: DeltaCallback | None = None
        self._event_cb: EventCallback | None = None
        self._response_cb: ResponseCallback | None = None

    def register_delta_callback(self, cb: DeltaCallback) -> None:
        if self._delta_cb is not None:
            raise CallbackAlreadyRegisteredError("delta callback already registered")
        self._delta_cb = cb

    def register_event_callback(self, cb: EventCallback) -> None:
        if self._event_cb is not None:
            raise CallbackAlreadyRegisteredError("event callback already registered")
        self._event_cb = cb

    def register_response_callback(self, cb: ResponseCallback) -> None:
        if self._response_cb is not None:
            raise CallbackAlreadyRegisteredError("response callback already registered")
        self._response_cb = cb

    async def run(self, mailboxes: dict[str, Mailbox] | None = None):
        if mailboxes is None:
            mailboxes = self.dm_ctx.start(self.driver)
        await asyncio.gather(*(self.run_device_listener(mailbox) for mailbox in mailboxes.values()))

    async def run_device_listener(self, mailbox: Mailbox):
        async for message in mailbox:
            try:
                await self.dispatch(message)
            except Exception as e:
                self.logger.error(f"[{mailbox.device}] Failed to process {message.kind} message: {e}")
        self.logger.info(f"[{mailbox.device}] Mailbox closed, listener stopped")

    async def dispatch(self, message: DeviceMessage) -> None:
        info = self.dm_ctx.get_device(self.driver, message.device)

        if isinstance(message, DeltaMessage):
            if self._delta_cb is None:
                self.logger.debug("delta callback not set, message will not be processed")
                return
            delta = self.dm_ctx.parse_property_values(self.driver, info.name, message.properties)
            await self._delta_cb(info, delta)

        elif isinstance(message, EventMessage):
            if self._event_cb is None:
                self.logger.debug("event callback not set, message will not be processed")
                return
            await self._event_cb(info, message.event)

        elif isinstance(message, ResponseMessage):
            if self._response_cb is None:
                self.logger.debug("response callback not set, message will not be processed")
                return
            shadow = message.shadow.model_copy(
                update={
                    "report": self.dm_ctx.parse_property_values(self.driver, info.name, message.shadow.report),
                    "desire": self.dm_ctx.parse_property_values(self.driver, info.name, message.shadow.desire),
                }
            )
            await self._response_cb(info, shadow)
