import json
import logging
from typing import Any, Dict

import paho.mqtt.client as mqtt

from ..core.interfaces import IAdapter, ISink

logger = logging.getLogger("MQTTSink")


class MQTTSink(ISink, IAdapter):
    """
    Publishes each snapshot to an MQTT broker as one flat JSON payload.
    """
    def __init__(self, broker: str, port: int, topic: str, client=None):
        self.broker = broker
        self.port = port
        self.topic = topic
        self.client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)

    def connect(self):
        try:
            logger.info(f"Connecting to MQTT Broker {self.broker}:{self.port}...")
            self.client.connect(self.broker, self.port, 60)
            self.client.loop_start()
            logger.info("MQTT Connected")
        except OSError as e:
            logger.error(f"MQTT Connection Failed: {e}")

    def disconnect(self):
        self.client.loop_stop()
        self.client.disconnect()

    def write(self, data: Dict[Any, Any]) -> None:
        if not data:
            return

        payload = json.dumps({str(k): v for k, v in data.items()})
        logger.debug(f"Publishing {len(data)} tags to MQTT topic {self.topic}")
        info = self.client.publish(self.topic, payload, qos=0, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"MQTT Publish Failed: rc={info.rc}")
