from __future__ import annotations

from typing import Iterable, Mapping

import paho.mqtt.client as mqtt


class TopicSerialMap:
    """Static topic -> device serial lookup.

    Entries are MQTT topic filters, so ``sensors/+/reading`` style wildcards
    work. The first matching filter in configuration order wins.
    """

    def __init__(self, entries: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        if entries is None:
            entries = ()
        elif isinstance(entries, Mapping):
            entries = entries.items()
        self._entries: list[tuple[str, str]] = [
            (topic_filter.strip(), serial.strip())
            for topic_filter, serial in entries
            if topic_filter and topic_filter.strip() and serial and serial.strip()
        ]

    def lookup(self, topic: str) -> str | None:
        for topic_filter, serial in self._entries:
            if topic_filter == topic:
                return serial
            try:
                if mqtt.topic_matches_sub(topic_filter, topic):
                    return serial
            except ValueError:
                continue
        return None

    __call__ = lookup

    def serials(self) -> list[str]:
        return list(dict.fromkeys(serial for _, serial in self._entries))

    def __len__(self) -> int:
        return len(self._entries)
