"""Test metadata: which request a smoke test issues, and whether it expects telemetry"""

from dataclasses import dataclass

import pytest


@dataclass(frozen=True)
class TargetRequest:
    path: str
    method: str = "GET"

    @staticmethod
    def create(path: str, method: str = "GET") -> "TargetRequest":
        if not path.startswith("/"):
            path = f"/{path}"

        return TargetRequest(path=path, method=method.upper())


def target_uri(path: str, method: str = "GET"):
    """Handles @target_uri("/path"): the harness requests this path once the application is ready"""

    return pytest.mark.target_uri(TargetRequest.create(path, method))


def expect_some_telemetry(value: bool = True):  # noqa: FBT001, FBT002
    """Handles @expect_some_telemetry(False): the test fails if any telemetry is received"""

    return pytest.mark.expect_some_telemetry(value)


def get_target_request(item: pytest.Item) -> TargetRequest | None:
    marker = item.get_closest_marker("target_uri")
    return marker.args[0] if marker else None


def get_expect_some_telemetry(item: pytest.Item) -> bool:
    marker = item.get_closest_marker("expect_some_telemetry")
    return True if marker is None else bool(marker.args[0])
