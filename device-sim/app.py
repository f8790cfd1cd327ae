"""
ESP32 fire-safety node simulator.

Publishes gas / temp / humidity / flame readings to IoT Hub over MQTT, the
same shape the real nodes send. Every FIRE_EVERY readings it injects a fire
event (flame pin LOW, gas and temperature spiking) so the alert path can be
exercised end to end.
"""
import base64
import hashlib
import hmac
import json
import logging
import os
import random
import ssl
import time
import urllib.parse
from datetime import datetime, timezone

import paho.mqtt.client as mqtt
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("device-sim")

IOTHUB_HOST = os.getenv("IOTHUB_HOST")  # HostName, no scheme
DEVICE_ID = os.getenv("DEVICE_ID", "ESP32_001")
DEVICE_KEY = os.getenv("DEVICE_KEY")  # base64 symmetric key
DEVICE_LOCATION = os.getenv("DEVICE_LOCATION")
API_VERSION = "2021-04-12"
USE_WEBSOCKETS = os.getenv("USE_WEBSOCKETS", "true").lower() == "true"
SEND_INTERVAL_SECONDS = int(os.getenv("SEND_INTERVAL_SECONDS", "5"))
SAS_TTL_SECONDS = int(os.getenv("SAS_TTL_SECONDS", "3600"))
FIRE_EVERY = int(os.getenv("FIRE_EVERY", "20"))  # 0 disables fire events


def build_sas_token(host: str, device_id: str, key_b64: str, ttl_seconds: int = 3600) -> str:
    """Device-scoped SAS token: HMAC-SHA256 over "<url-encoded resource>\\n<expiry>"."""
    expiry = int(time.time()) + ttl_seconds
    resource = urllib.parse.quote(f"{host}/devices/{device_id}", safe="")
    digest = hmac.new(base64.b64decode(key_b64), f"{resource}\n{expiry}".encode("utf-8"), hashlib.sha256).digest()
    sig = urllib.parse.quote(base64.b64encode(digest))
    return f"SharedAccessSignature sr={resource}&sig={sig}&se={expiry}"


def build_reading(fire: bool = False) -> dict:
    if fire:
        gas = round(random.uniform(520, 900), 1)
        temp = round(random.uniform(48, 70), 1)
        flame = 0  # flame sensor pulls LOW on detection
    else:
        gas = round(random.uniform(120, 320), 1)
        temp = round(random.uniform(24, 36), 1)
        flame = 1
    reading = {
        "time": datetime.now(timezone.utc).isoformat(),
        "gas": gas,
        "temp": temp,
        "humidity": round(random.uniform(40, 75), 1),
        "flame": flame,
    }
    if DEVICE_LOCATION:
        reading["location"] = DEVICE_LOCATION
    return reading


def publish(client: mqtt.Client, topic: str, payload: str, retries: int = 5) -> bool:
    # publish() returns MQTT_ERR_NO_CONN while paho is still reconnecting
    for attempt in range(retries):
        if client.is_connected():
            if client.publish(topic, payload=payload, qos=1).rc == mqtt.MQTT_ERR_SUCCESS:
                return True
        time.sleep(1 + attempt)
    logger.warning(f"publish failed after {retries} attempts")
    return False


def on_connect(client, userdata, flags, reason_code, properties=None):
    if reason_code == 0:
        logger.info(f"connected to {IOTHUB_HOST} as {DEVICE_ID}")
    else:
        logger.error(f"connect refused (reason_code={reason_code}); check SAS token and clock skew")


def on_disconnect(client, userdata, flags, reason_code, properties=None):
    logger.info(f"disconnected (reason_code={reason_code})")


def main():
    if not IOTHUB_HOST or not DEVICE_KEY:
        raise RuntimeError("IOTHUB_HOST and DEVICE_KEY must be set (env or .env)")

    transport = "websockets" if USE_WEBSOCKETS else "tcp"
    port = 443 if USE_WEBSOCKETS else 8883

    client = mqtt.Client(
        client_id=DEVICE_ID,
        transport=transport,
        protocol=mqtt.MQTTv311,
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
    )
    client.username_pw_set(
        username=f"{IOTHUB_HOST}/{DEVICE_ID}/?api-version={API_VERSION}",
        password=build_sas_token(IOTHUB_HOST, DEVICE_ID, DEVICE_KEY, SAS_TTL_SECONDS),
    )
    client.tls_set(tls_version=ssl.PROTOCOL_TLSv1_2)
    client.on_connect = on_connect
    client.on_disconnect = on_disconnect
    client.reconnect_delay_set(min_delay=1, max_delay=8)

    client.connect(IOTHUB_HOST, port=port, keepalive=60)
    client.loop_start()

    topic = f"devices/{DEVICE_ID}/messages/events/"
    sent = 0
    try:
        while True:
            sent += 1
            fire = FIRE_EVERY > 0 and sent % FIRE_EVERY == 0
            payload = json.dumps(build_reading(fire), separators=(",", ":"))
            ok = publish(client, topic, payload)
            status = "sent" if ok else "FAILED"
            tag = " [fire]" if fire else ""
            logger.info(f"{status}{tag} {payload}")
            time.sleep(SEND_INTERVAL_SECONDS)
    except KeyboardInterrupt:
        logger.info("stopping")
    finally:
        client.loop_stop()
        client.disconnect()


if __name__ == "__main__":
    main()
