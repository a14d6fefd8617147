from enum import StrEnum


class BlinkMethod(StrEnum):
    PROPERTY_INVOKE = "thing.property.invoke"
    PROPERTY_REPORT = "thing.property.post"
    EVENT_REPORT = "thing.event.post"
    PROPERTY_GET = "thing.property.get"
    LIFECYCLE_POST = "thing.lifecycle.post"


BLINK = "blink"
BLINK_VERSION = "1.0"
KEY_ONLINE_STATE = "online_state"
