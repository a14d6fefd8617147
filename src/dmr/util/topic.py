import re

from dmr.exception import InvalidTopicError
from dmr.model.enum.topic_kind_enum import DEVICE_TOPIC_PREFIX, TopicKind

# $baetyl/device/<device>/<kind>, both segments non-empty and slash-free
_DEVICE_TOPIC_RE = re.compile(r"^\$baetyl/device/([^/]+)/([^/]+)$")

# thing/<product>/<device>/<a>/<b>
_LEGACY_TOPIC_RE = re.compile(r"^thing/([^/]+)/([^/]+)/([^/]+)/([^/]+)$")


def parse_topic(topic: str) -> tuple[str, str]:
    """Split a per-device topic into (device, kind)."""
    match = _DEVICE_TOPIC_RE.match(topic or "")
    if not match:
        raise InvalidTopicError(f"invalid device topic: {topic!r}", topic)
    return match.group(1), match.group(2)


def parse_device_topic(topic: str) -> str:
    """Return the device name of a `$baetyl/device/...` or legacy `thing/...` topic."""
    match = _DEVICE_TOPIC_RE.match(topic or "")
    if match:
        return match.group(1)
    match = _LEGACY_TOPIC_RE.match(topic or "")
    if match:
        return match.group(2)
    raise InvalidTopicError(f"invalid device topic: {topic!r}", topic)


def build_topic(device: str, kind: TopicKind | str) -> str:
    if not device or "/" in device:
        raise InvalidTopicError(f"invalid device name for topic: {device!r}")
    return f"{DEVICE_TOPIC_PREFIX}/{device}/{kind}"
