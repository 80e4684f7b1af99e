# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

# singletons
from smoketest._context.core import context
from smoketest._context._scenarios import scenarios
from smoketest._decorators import expect_some_telemetry, target_uri
from smoketest._logger import logger
from smoketest import interfaces
from smoketest._harness import Harness, HarnessState
from smoketest.correlation import CorrelationContext
from smoketest.errors import IngestionMismatch, SmokeTestError
from smoketest.matrix import TestCase

__all__ = [
    "CorrelationContext",
    "Harness",
    "HarnessState",
    "IngestionMismatch",
    "SmokeTestError",
    "TestCase",
    "context",
    "expect_some_telemetry",
    "interfaces",
    "logger",
    "scenarios",
    "target_uri",
]
