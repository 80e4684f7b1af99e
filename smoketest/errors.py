# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Errors raised by the smoke test framework

Fatal errors abort the current test case, after diagnostics have been captured.
TeardownError is the only best-effort category: it is logged, never propagated by teardown_all().
"""


class SmokeTestError(Exception):
    """Base class of all framework errors"""


class ConfigurationError(SmokeTestError):
    """A resource or a required property is missing or unreadable"""


class ContainerStartError(SmokeTestError):
    pass


class DeploymentError(SmokeTestError):
    pass


class HealthCheckTimeout(SmokeTestError):
    def __init__(self, label: str, url: str, elapsed: float) -> None:
        super().__init__(f"Timeout reached waiting for '{label}' to come online ({url}, after {elapsed:.1f}s)")
        self.label = label
        self.url = url
        self.elapsed = elapsed


class EmptyResponseError(SmokeTestError):
    def __init__(self, url: str, hint: str = "HealthCheck urls should return something non-empty") -> None:
        super().__init__(f"Empty response from '{url}'. {hint}")
        self.url = url


class UnsupportedMethodError(SmokeTestError):
    def __init__(self, method: str) -> None:
        super().__init__(f"http method '{method}' is not currently supported")
        self.method = method


class IngestionSelfCheckError(SmokeTestError):
    """The mocked ingestion endpoint did not answer its health check or its ping"""


class NotFoundError(SmokeTestError, LookupError):
    pass


class TeardownError(SmokeTestError):
    pass


class IngestionMismatch(AssertionError):
    """Telemetry is missing while some was expected, or present while none was expected"""
