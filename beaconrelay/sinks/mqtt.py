"""MQTT broker sink."""

from __future__ import annotations

import json
import logging
import ssl
from typing import Optional

import paho.mqtt.client as mqtt

from ..models import MqttSinkConfig, PublishableMeasurement, build_publication
from .base import Sink, SinkPublishError

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 60
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 300


class MqttSink(Sink):
    """Publishes measurement batches as JSON to an MQTT topic.

    The paho network loop runs in its own thread and reconnects with
    backoff on its own; batches published while disconnected are dropped.
    """

    def __init__(self, config: MqttSinkConfig) -> None:
        super().__init__(config.name, config.rate_limit)
        self._config = config
        self._client: Optional[mqtt.Client] = None

    @property
    def broker_address(self) -> str:
        scheme = "tls" if self._config.tls else "tcp"
        return f"{scheme}://{self._config.server_name}:{self._config.server_port}"

    def _create_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._config.client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        if self._config.username or self._config.password:
            client.username_pw_set(self._config.username, self._config.password)

        tls = self._config.tls
        if tls:
            client.tls_set(
                ca_certs=str(tls.ca_certs) if tls.ca_certs else None,
                cert_reqs=ssl.CERT_NONE if tls.skip_verify else ssl.CERT_REQUIRED,
            )
            if tls.skip_verify:
                client.tls_insecure_set(True)

        client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.warning("Sink %s: connection to %s refused: %s", self.name, self.broker_address, reason_code)
        else:
            logger.info("Sink %s: connected to %s", self.name, self.broker_address)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        logger.warning("Sink %s: disconnected from %s (%s), reconnecting...", self.name, self.broker_address, reason_code)

    async def start(self) -> None:
        self._client = self._create_client()
        logger.info("Sink %s: connecting to %s", self.name, self.broker_address)
        self._client.connect_async(
            self._config.server_name,
            self._config.server_port,
            keepalive=KEEPALIVE_SECONDS,
        )
        self._client.loop_start()
        await super().start()

    async def stop(self) -> None:
        await super().stop()
        if self._client:
            self._client.disconnect()
            self._client.loop_stop()
            self._client = None

    async def publish_batch(self, measurements: list[PublishableMeasurement]) -> None:
        if self._client is None:
            raise SinkPublishError("sink is not started")

        payload = json.dumps(build_publication(measurements))
        info = self._client.publish(self._config.topic, payload, qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SinkPublishError(
                f"failed to publish to {self._config.topic}: {mqtt.error_string(info.rc)}"
            )
