# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

from smoketest.interfaces._envelope import (
    DEVICE_ID_TAG,
    Data,
    Domain,
    Envelope,
    EventData,
    ExceptionData,
    MessageData,
    MetricData,
    PageViewData,
    PerformanceCounterData,
    RemoteDependencyData,
    RequestData,
    deserialize_envelopes,
)
from smoketest.interfaces._ingestion import (
    ENDPOINT_HEALTH_CHECK_RESPONSE,
    HEALTH_PATH,
    PING,
    PONG,
    TRACK_PATH,
    FilterChain,
    IngestionStore,
    MockIngestionServer,
    device_id_filter,
)

__all__ = [
    "DEVICE_ID_TAG",
    "ENDPOINT_HEALTH_CHECK_RESPONSE",
    "HEALTH_PATH",
    "PING",
    "PONG",
    "TRACK_PATH",
    "Data",
    "Domain",
    "Envelope",
    "EventData",
    "ExceptionData",
    "FilterChain",
    "IngestionStore",
    "MessageData",
    "MetricData",
    "MockIngestionServer",
    "PageViewData",
    "PerformanceCounterData",
    "RemoteDependencyData",
    "RequestData",
    "device_id_filter",
    "deserialize_envelopes",
]
