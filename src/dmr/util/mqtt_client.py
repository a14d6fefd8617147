import logging
import threading

import paho.mqtt.client as mqtt

from dmr.exception import TransportError
from dmr.handler.device_observer import DeviceObserver
from dmr.schema.service_config_schema import MqttClientConfig


class MqttClient:
    """
    Wrapper around *paho-mqtt* shared by every device of the process.

    - the network loop runs on paho's own thread (loop_start)
    - inbound messages go to a single observer
    - subscriptions are remembered and replayed on every (re)connect
    """

    def __init__(
        self,
        config: MqttClientConfig,
        broker_host: str = "127.0.0.1",
        observer: DeviceObserver | None = None,
        *,
        paho_debug: bool = False,
    ):
        self.config = config
        self.broker_host = config.address or broker_host
        self.observer = observer
        self.logger = logging.getLogger(__class__.__name__)

        paho_logger = self.logger.getChild("paho")
        paho_logger.setLevel(logging.DEBUG if paho_debug else logging.WARNING)
        if not paho_debug:
            paho_logger.propagate = False

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.clientid,
            clean_session=config.cleansession,
            protocol=mqtt.MQTTv311,
        )
        self._client.enable_logger(paho_logger)
        if config.username:
            self._client.username_pw_set(config.username, config.password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.on_publish = self._on_publish

        self._subscriptions: dict[str, int] = {}
        self._lock = threading.Lock()
        self._connected = threading.Event()

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    def set_observer(self, observer: DeviceObserver) -> None:
        self.observer = observer

    def start(self) -> None:
        """Connect in the background and start the network loop."""
        self.logger.info(f"[MQTT] Connecting to {self.broker_host}:{self.config.port}")
        try:
            self._client.connect_async(self.broker_host, self.config.port, keepalive=self.config.keepalive)
        except (OSError, ValueError) as e:
            raise TransportError(f"mqtt connect failed: {e}") from e
        self._client.loop_start()

    def wait_connected(self, timeout: float | None = None) -> bool:
        return self._connected.wait(self.config.timeout if timeout is None else timeout)

    def close(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        self.logger.info("[MQTT] Loop stopped")

    def publish(self, topic: str, payload: bytes | str, qos: int = 0, retain: bool = False) -> int:
        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        return info.mid

    def subscribe(self, topics: list[tuple[str, int]]) -> None:
        with self._lock:
            for topic, qos in topics:
                self._subscriptions[topic] = qos
        if self._client.is_connected():
            self._subscribe(topics)

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _subscribe(self, topics: list[tuple[str, int]]) -> None:
        if not topics:
            return
        result, _ = self._client.subscribe(topics)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"subscribe failed: {mqtt.error_string(result)}")
        self.logger.debug(f"[MQTT] Subscribed to {[t for t, _ in topics]}")

    # ------------------------------------------------------------------ #
    # Callbacks                                                          #
    # ------------------------------------------------------------------ #
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self.logger.error(f"[MQTT] Connect failed: {reason_code}")
            return
        self.logger.info("[MQTT] Connected")
        self._connected.set()
        with self._lock:
            topics = list(self._subscriptions.items())
        try:
            self._subscribe(topics)
        except TransportError as e:
            self.logger.error(f"[MQTT] {e}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        self.logger.warning(f"[MQTT] Disconnected: {reason_code}")
        if self.observer and reason_code != 0:
            self.observer.on_error(reason_code)

    def _on_message(self, client, userdata, msg):
        if self.observer is None:
            self.logger.debug(f"[MQTT] No observer, drop message on {msg.topic}")
            return
        self.observer.on_publish(msg.topic, msg.payload)

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        if self.observer:
            self.observer.on_puback(mid)
