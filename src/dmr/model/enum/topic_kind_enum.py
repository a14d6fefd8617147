from enum import StrEnum


class TopicKind(StrEnum):
    """Topic suffixes of the per-device family `$baetyl/device/<dev>/<kind>`."""

    DELTA = "delta"
    REPORT = "report"
    EVENT = "event"
    GET = "get"
    GET_RESPONSE = "getResponse"
    EVENT_REPORT = "eventReport"
    PROPERTY_GET = "propertyGet"
    LIFECYCLE_REPORT = "lifecycleReport"


# Topics the runtime subscribes to on behalf of a device
INBOUND_TOPIC_KINDS: tuple[TopicKind, ...] = (TopicKind.DELTA, TopicKind.EVENT, TopicKind.GET_RESPONSE)

DEVICE_TOPIC_PREFIX = "$baetyl/device"
