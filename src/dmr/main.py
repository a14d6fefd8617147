"""
Minimal driver built on the device-management runtime.

It echoes every delta back as a property report, so a device looks like it
accepted the desired values. Real protocol drivers replace `on_delta` with
writes to the physical device.
"""

import asyncio
import logging
import sys

from dmr.dm_context import DeviceManagementContext
from dmr.handler.device_message_subscriber import DeviceMessageSubscriber
from dmr.schema.device_schema import DeviceEvent, DeviceInfo, DeviceShadow
from dmr.service_context import ServiceContext, run
from dmr.util.mqtt_client import MqttClient

logger = logging.getLogger("DriverMain")

DEFAULT_DRIVER_NAME = "dmr-driver"


async def serve(ctx: ServiceContext, dm_ctx: DeviceManagementContext, mqtt: MqttClient, driver: str):
    subscriber = DeviceMessageSubscriber(dm_ctx, driver)

    async def on_delta(info: DeviceInfo, delta: dict):
        logger.info(f"[{info.name}] Delta: {delta}")
        dm_ctx.report_device_properties(driver, info.name, dm_ctx.data_clean(driver, info.name, delta))

    async def on_event(info: DeviceInfo, event: DeviceEvent):
        logger.info(f"[{info.name}] Event: type={event.type}")

    async def on_response(info: DeviceInfo, shadow: DeviceShadow):
        logger.info(f"[{info.name}] Shadow report={shadow.report} desire={shadow.desire}")

    subscriber.register_delta_callback(on_delta)
    subscriber.register_event_callback(on_event)
    subscriber.register_response_callback(on_response)

    mailboxes = dm_ctx.start(driver)
    if not await asyncio.to_thread(mqtt.wait_connected):
        logger.warning(f"MQTT not connected within {ctx.config.mqtt.timeout}s")
    listener = asyncio.create_task(subscriber.run(mailboxes))
    for info in dm_ctx.get_all_devices(driver):
        try:
            dm_ctx.online(driver, info.name)
        except Exception as e:
            logger.warning(f"[{info.name}] Failed to report online: {e}")

    try:
        await asyncio.to_thread(ctx.wait)
    finally:
        for info in dm_ctx.get_all_devices(driver):
            try:
                dm_ctx.offline(driver, info.name)
            except Exception as e:
                logger.warning(f"[{info.name}] Failed to report offline: {e}")
        dm_ctx.close()
        await listener


def handler(ctx: ServiceContext):
    driver = ctx.config.driver.name or ctx.service_name() or DEFAULT_DRIVER_NAME
    mqtt = MqttClient(ctx.config.mqtt, broker_host=ctx.broker_host())
    dm_ctx = DeviceManagementContext(ctx, mqtt)
    dm_ctx.load_driver_config(ctx.config.driver.config_dir, driver)

    ctx.install_signal_handlers()
    asyncio.run(serve(ctx, dm_ctx, mqtt, driver))


def main_cli() -> int:
    return run(handler)


if __name__ == "__main__":
    sys.exit(main_cli())
