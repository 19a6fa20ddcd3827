import math
import random
from dataclasses import replace
from datetime import datetime, timezone

from los_relay.fields import FIELD_VARIANTS, LogicalField
from los_relay.normalizer import Reading, normalize
from los_relay.ppm import MergePolicy, PolicyTable
from los_relay.topics import TopicSerialMap

RECEIVED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
TOPICS = TopicSerialMap({"sensors/los-7/reading": "LOS-7", "sensors/los-8/reading": "LOS-8"})
POLICIES = PolicyTable({"LOS-7": MergePolicy.INTEGER_ONLY})


def _normalize(payload, topic="sensors/los-8/reading"):
    return normalize(payload, topic, serial_resolver=TOPICS, received_at=RECEIVED, policies=POLICIES)


def test_full_payload_normalizes_every_field():
    payload = {
        "LoS-Temp(c)": "24.5",
        "LoS-Rx Light": 1830,
        "LoS- R2": "0.97",
        "LoS-HeartBeat": 512,
        "LoS - PPM": "42",
    }
    reading = _normalize(payload)
    assert reading == Reading(
        origin_topic="sensors/los-8/reading",
        device_serial="LOS-8",
        temperature=24.5,
        rx_light=1830,
        r2=0.97,
        heartbeat=512,
        concentration=42,
        recorded_at=RECEIVED,
    )
    assert reading.has_values()


def test_single_ppm_key_string_becomes_number():
    reading = _normalize({"LoS - PPM": "42"})
    assert reading.concentration == 42
    assert isinstance(reading.concentration, float)


def test_integer_only_device_discards_decimal():
    reading = _normalize({"PPM_INT": 8, "PPM_DEC": 7}, topic="sensors/los-7/reading")
    assert reading.device_serial == "LOS-7"
    assert reading.concentration == 8


def test_other_devices_merge_integer_and_fraction():
    reading = _normalize({"PPM_INT": 8, "PPM_DEC": 7}, topic="sensors/los-8/reading")
    assert reading.concentration == 8.07


def test_unmapped_topic_uses_default_policy_and_embedded_serial():
    reading = _normalize({"PPM_INT": 8, "PPM_DEC": 7, "serial_number": "LOS-7"}, topic="other/topic")
    # the embedded serial is honoured for identity, which also selects the policy
    assert reading.device_serial == "LOS-7"
    assert reading.concentration == 8


def test_topic_mapping_overrides_embedded_serial():
    reading = _normalize({"serialNumber": "LOS-7", "PPM_INT": 8, "PPM_DEC": 7}, topic="sensors/los-8/reading")
    assert reading.device_serial == "LOS-8"
    assert reading.concentration == 8.07


def test_no_serial_anywhere():
    reading = normalize({"LoS-Temp": 20}, "x/y", received_at=RECEIVED)
    assert reading.device_serial is None


def test_missing_and_unparseable_fields_are_none():
    reading = _normalize({"LoS-Temp": "hot", "LoS-R2": None, "unrelated": 5})
    assert reading.temperature is None
    assert reading.r2 is None
    assert reading.rx_light is None
    assert reading.heartbeat is None
    assert reading.concentration is None
    assert not reading.has_values()


def test_empty_payload_still_yields_a_reading():
    reading = _normalize({})
    assert isinstance(reading, Reading)
    assert reading.values() == {field.value: None for field in LogicalField}


def test_loose_spelling_is_tolerated():
    reading = _normalize({"LoS-Temperature (C)": 19.5, "LoS-HeartBeat-Count": 3})
    assert reading.temperature == 19.5
    assert reading.heartbeat == 3


def test_embedded_epoch_timestamp_wins():
    reading = _normalize({"LoS-Temp": 20, "timestamp": 1700000000})
    assert reading.recorded_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_embedded_millisecond_timestamp():
    reading = _normalize({"LoS-Temp": 20, "ts": 1700000000123})
    assert reading.recorded_at == datetime.fromtimestamp(1700000000.123, tz=timezone.utc)


def test_non_numeric_timestamp_falls_back_to_received_at():
    reading = _normalize({"LoS-Temp": 20, "timestamp": "yesterday"})
    assert reading.recorded_at == RECEIVED


def test_wall_clock_used_without_any_timestamp():
    before = datetime.now(timezone.utc)
    reading = normalize({"LoS-Temp": 20}, "t")
    after = datetime.now(timezone.utc)
    assert before <= reading.recorded_at <= after


def test_normalizing_twice_differs_only_in_recorded_at():
    payload = {"LoS-Temp": "21", "PPM_INT": 3, "PPM_DEC": 4}
    first = normalize(payload, "sensors/los-8/reading", serial_resolver=TOPICS)
    second = normalize(payload, "sensors/los-8/reading", serial_resolver=TOPICS)
    assert replace(first, recorded_at=RECEIVED) == replace(second, recorded_at=RECEIVED)


def test_as_dict_is_json_ready():
    reading = _normalize({"LoS-PPM": 5})
    data = reading.as_dict()
    assert data["concentration"] == 5
    assert data["serial_number"] == "LOS-8"
    assert data["topic"] == "sensors/los-8/reading"
    assert data["recorded_at"] == RECEIVED.isoformat()


_FUZZ_VALUES = [
    None, "", " ", "abc", "12", "-3.5", "1e3", "nan", "inf", "-Infinity", "0x10",
    float("nan"), float("inf"), 0, -7, 12.5, 10**30, True, False, [], {}, [1, 2], {"v": 1},
]
_FUZZ_KEYS = [variant for variants in FIELD_VARIANTS.values() for variant in variants] + [
    "PPM_INT", "PPM_DEC", "PPM-M-LO-Int", "PPM-M-LO-Dec", "ppm decimal", "timestamp", "ts",
    "serial_number", "serial", "los", "t", "", "-", "params", "LoS-Temperature", "x",
]


def test_fields_are_always_finite_numbers_or_none():
    rng = random.Random(1234)
    for _ in range(2000):
        payload = {
            rng.choice(_FUZZ_KEYS): rng.choice(_FUZZ_VALUES)
            for _ in range(rng.randint(0, 8))
        }
        for policies in (POLICIES, PolicyTable(default=MergePolicy.INTEGER_ONLY)):
            reading = normalize(payload, "sensors/los-7/reading", TOPICS, RECEIVED, policies)
            for value in reading.values().values():
                assert value is None or (isinstance(value, float) and math.isfinite(value)), payload


def test_one_short_key_fills_at_most_one_field():
    reading = _normalize({"LoS": 5})
    filled = [name for name, value in reading.values().items() if value is not None]
    assert filled == ["temperature"]


def test_exact_matches_claim_keys_before_loose_matching():
    reading = _normalize({"LoS": 5, "LoS-Temp": 20})
    assert reading.temperature == 20
    assert reading.rx_light == 5
    assert reading.r2 is None
    assert reading.heartbeat is None


def test_serial_timestamp_and_ppm_keys_are_never_loose_matched():
    reading = _normalize({"ppm": 7, "ts": 1700000000, "serial": "LOS-8"}, topic="unmapped")
    assert reading.concentration == 7
    assert reading.temperature is None
    assert reading.heartbeat is None
