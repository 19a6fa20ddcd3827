"""Publish synthetic LoS telemetry to the broker for local development.

    python -m los_relay.simulate --serial LOS-001 --split-ppm
"""

import argparse
import json
import os
import random
import time

import paho.mqtt.client as mqtt

from .fields import FIELD_VARIANTS, LogicalField
from .subscriber import parse_broker_url

_SPLIT_KEYS = (("PPM_INT", "PPM_DEC"), ("PPM-M-LO-Int", "PPM-M-LO-Dec"))


def build_payload(rng: random.Random, split_ppm: bool = False) -> dict:
    """One station message, with each field under a randomly chosen spelling."""

    def spelling(field: LogicalField) -> str:
        # skip the primary variant so the payload looks like station firmware output
        return rng.choice(FIELD_VARIANTS[field][1:])

    payload = {
        spelling(LogicalField.TEMPERATURE): round(rng.uniform(18.0, 42.0), 2),
        spelling(LogicalField.RX_LIGHT): rng.randint(200, 4000),
        spelling(LogicalField.R2): round(rng.uniform(0.8, 1.0), 3),
        spelling(LogicalField.HEARTBEAT): rng.randint(0, 65535),
    }
    ppm = round(rng.uniform(0.0, 80.0), 2)
    if split_ppm:
        int_key, dec_key = rng.choice(_SPLIT_KEYS)
        payload[int_key] = int(ppm)
        payload[dec_key] = int(round((ppm - int(ppm)) * 100))
    else:
        payload[spelling(LogicalField.CONCENTRATION)] = str(ppm)
    return payload


def main() -> None:
    parser = argparse.ArgumentParser(description="LoS telemetry simulator")
    parser.add_argument("--url", default=os.getenv("MQTT_URL", "mqtt://localhost:1883"))
    parser.add_argument("--serial", default=os.getenv("SIM_SERIAL", "LOS-SIM-001"))
    parser.add_argument("--topic", default=None, help="defaults to sensors/<serial>/reading")
    parser.add_argument("--interval", type=float, default=1.0)
    parser.add_argument("--split-ppm", action="store_true")
    parser.add_argument("--wrap-params", action="store_true", help="nest readings under 'params'")
    args = parser.parse_args()

    host, port, use_tls = parse_broker_url(args.url)
    topic = args.topic or f"sensors/{args.serial}/reading"

    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=f"los-sim-{args.serial}")
    if os.getenv("MQTT_USERNAME"):
        client.username_pw_set(os.getenv("MQTT_USERNAME"), os.getenv("MQTT_PASSWORD"))
    if use_tls:
        client.tls_set()
    client.connect(host, port, keepalive=60)
    client.loop_start()

    rng = random.Random()
    try:
        while True:
            payload = build_payload(rng, split_ppm=args.split_ppm)
            payload["serial_number"] = args.serial
            body = {"params": payload} if args.wrap_params else payload
            client.publish(topic, json.dumps(body), qos=0, retain=False)
            print(topic, body)
            time.sleep(args.interval)
    except KeyboardInterrupt:
        pass
    finally:
        client.loop_stop()
        client.disconnect()


if __name__ == "__main__":
    main()
