import json
import logging
import paho.mqtt.client as mqtt

from .decoder import MeasurementRecord


class RecordPublisher:
    """Publishes measurement records as JSON, one topic per meter."""

    def __init__(self, broker: str, port: int = 1883, username: str = None, password: str = None,
                 topic: str = "meters", client_id: str = "obis_meter_poller"):
        self.logger = logging.getLogger("MQTT")

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id)

        if username and password:
            self.client.username_pw_set(username, password)

        self.broker = broker
        self.port = port
        self.topic = topic.rstrip("/")
        self.connected = False

        self.client.will_set(self.status_topic, "offline", retain=True)

    @property
    def status_topic(self) -> str:
        return f"{self.topic}/status"

    def record_topic(self, record: MeasurementRecord) -> str:
        return f"{self.topic}/{record.serial or 'meter'}"

    def connect(self):
        try:
            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.connect(self.broker, self.port, 60)
            self.client.loop_start()
            self.logger.info(f"Connecting to MQTT Broker {self.broker}...")
        except Exception as e:
            self.logger.error(f"Failed to connect to MQTT: {e}")

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            self.logger.info("Connected to MQTT Broker")
            self.connected = True
            self.client.publish(self.status_topic, "online", retain=True)
        else:
            self.logger.error(f"Failed to connect, return code {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        self.logger.warning(f"Disconnected from MQTT broker: {rc}")
        self.connected = False

    def publish(self, record: MeasurementRecord) -> bool:
        """Publish one record. Records arriving while offline are dropped."""
        if not self.connected:
            self.logger.debug("Not connected, dropping record")
            return False

        payload = json.dumps(record.to_dict())
        self.client.publish(self.record_topic(record), payload)
        return True

    def disconnect(self):
        if self.connected:
            self.client.publish(self.status_topic, "offline", retain=True)
        self.client.loop_stop()
        self.client.disconnect()
        self.connected = False
