# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Telemetry items, as posted by the instrumented application on the track endpoint"""

from collections.abc import Iterator
import gzip
import json
from typing import Any
import zlib


DEVICE_ID_TAG = "ai.device.id"


class Domain:
    """Typed payload of an envelope. The raw mapping is always available in `raw`"""

    base_type = ""

    def __init__(self, raw: dict) -> None:
        self.raw = raw

    def __getitem__(self, key: str) -> Any:  # noqa: ANN401
        return self.raw[key]

    def get(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        return self.raw.get(key, default)

    @property
    def properties(self) -> dict[str, str]:
        return self.raw.get("properties") or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.raw})"


class RequestData(Domain):
    base_type = "RequestData"

    @property
    def name(self) -> str | None:
        return self.raw.get("name")

    @property
    def url(self) -> str | None:
        return self.raw.get("url")

    @property
    def response_code(self) -> str | None:
        return self.raw.get("responseCode")

    @property
    def success(self) -> bool | None:
        return self.raw.get("success")


class EventData(Domain):
    base_type = "EventData"

    @property
    def name(self) -> str | None:
        return self.raw.get("name")


class MessageData(Domain):
    base_type = "MessageData"

    @property
    def message(self) -> str | None:
        return self.raw.get("message")

    @property
    def severity_level(self) -> str | None:
        return self.raw.get("severityLevel")


class ExceptionData(Domain):
    base_type = "ExceptionData"

    @property
    def exceptions(self) -> list[dict]:
        return self.raw.get("exceptions") or []


class MetricData(Domain):
    base_type = "MetricData"

    @property
    def metrics(self) -> list[dict]:
        return self.raw.get("metrics") or []


class RemoteDependencyData(Domain):
    base_type = "RemoteDependencyData"

    @property
    def name(self) -> str | None:
        return self.raw.get("name")

    @property
    def type(self) -> str | None:
        return self.raw.get("type")

    @property
    def target(self) -> str | None:
        return self.raw.get("target")

    @property
    def success(self) -> bool | None:
        return self.raw.get("success")


class PageViewData(Domain):
    base_type = "PageViewData"

    @property
    def name(self) -> str | None:
        return self.raw.get("name")


class PerformanceCounterData(Domain):
    base_type = "PerformanceCounterData"


_DOMAIN_TYPES: dict[str, type[Domain]] = {
    klass.base_type: klass
    for klass in (
        RequestData,
        EventData,
        MessageData,
        ExceptionData,
        MetricData,
        RemoteDependencyData,
        PageViewData,
        PerformanceCounterData,
    )
}


def _expect(data: dict, key: str, expected_type: type, default: Any) -> Any:  # noqa: ANN401
    """Returns data[key], or default when the key is missing or null. Raises ValueError on a wrong type"""

    value = data.get(key)
    if value is None:
        return default

    if not isinstance(value, expected_type):
        raise ValueError(f"'{key}' must be a {expected_type.__name__}, not {type(value).__name__}")

    return value


class Data:
    def __init__(self, base_type: str, base_data: Domain) -> None:
        self.base_type = base_type
        self.base_data = base_data

    @staticmethod
    def from_json(data: dict) -> "Data":
        base_type = _expect(data, "baseType", str, "")
        klass = _DOMAIN_TYPES.get(base_type, Domain)
        return Data(base_type, klass(_expect(data, "baseData", dict, {})))


class Envelope:
    def __init__(self, data: dict) -> None:
        if not isinstance(data, dict):
            raise ValueError(f"An envelope must be an object, not {type(data).__name__}")

        self._data = data
        self.name: str | None = data.get("name")
        self.time: str | None = data.get("time")
        self.ikey: str | None = data.get("iKey")
        self.tags: dict[str, str] = _expect(data, "tags", dict, {})
        self.data = Data.from_json(_expect(data, "data", dict, {}))

    @property
    def device_id(self) -> str | None:
        device_id = self.tags.get(DEVICE_ID_TAG)
        return None if device_id is None else str(device_id)

    def to_json(self) -> dict:
        return self._data

    def __repr__(self) -> str:
        return f"Envelope(name:{self.name}, type:{self.data.base_type}, tags:{self.tags})"


def decompress(content: bytes, content_encoding: str | None) -> bytes:
    if content_encoding and content_encoding.lower() == "gzip":
        try:
            return gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as e:
            raise ValueError(f"Can't decompress gzip data: {e}") from e

    return content


def _iter_json_items(text: str) -> Iterator[Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        # newline-delimited JSON, one envelope per line
        for line in text.splitlines():
            if line.strip():
                yield json.loads(line)
        return

    if isinstance(payload, list):
        yield from payload
    else:
        yield payload


def deserialize_envelopes(content: bytes) -> list[Envelope]:
    """Decode a batch posted on the track endpoint: a JSON array, a single object, or one object per line

    Raises ValueError if the batch can't be decoded
    """

    text = content.decode("utf-8")
    return [Envelope(item) for item in _iter_json_items(text)]
