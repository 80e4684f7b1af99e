# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""singleton exposing all about test context"""

from dataclasses import dataclass
import os
import re
from typing import TYPE_CHECKING

from smoketest._context.ports import HostPorts
from smoketest.tools import update_environ_with_local_env

if TYPE_CHECKING:
    from smoketest._context._scenarios import Scenario


@dataclass(frozen=True)
class Timeouts:
    """All waits of a test case, in seconds"""

    application_ready: float = 120
    app_server_ready: float = 90
    telemetry_settle: float = 10
    ingestion_settle: float = 2


def _get_docker_host_domain() -> str:
    if "DOCKER_HOST" in os.environ:
        m = re.match(r"(?:ssh:|tcp:|fd:|)//(?:[^@]+@|)([^:]+)", os.environ["DOCKER_HOST"])
        if m is not None:
            return m.group(1)

    return "localhost"


class _Context:
    """Context is an helper class that exposes the configuration of the current run.

    Values come from pytest options when they are set, then from SMOKETEST_* env vars
    (a local .env file is loaded into environ), then from defaults.
    """

    scenario: "Scenario"  # will be set by pytest_configure

    def __init__(self) -> None:
        self._overrides: dict[str, str] = {}

    def configure(self, **overrides: str | None) -> None:
        self._overrides.update({key: value for key, value in overrides.items() if value is not None})

    def _get(self, name: str, default: str) -> str:
        if name in self._overrides:
            return self._overrides[name]

        return os.environ.get(f"SMOKETEST_{name.upper()}", default)

    @property
    def os_name(self) -> str:
        return self._get("os", "linux")

    @property
    def resources_dir(self) -> str:
        return self._get("resources_dir", "resources")

    @property
    def ingestion_port(self) -> int:
        return int(self._get("ingestion_port", str(HostPorts.ingestion)))

    @property
    def base_port(self) -> int:
        return int(self._get("base_port", str(HostPorts.app_server_base)))

    @property
    def app_host(self) -> str:
        return self._get("app_host", _get_docker_host_domain())

    @property
    def timeouts(self) -> Timeouts:
        default = Timeouts()
        return Timeouts(
            application_ready=float(self._get("application_ready_timeout", str(default.application_ready))),
            app_server_ready=float(self._get("app_server_ready_timeout", str(default.app_server_ready))),
            telemetry_settle=float(self._get("telemetry_settle_time", str(default.telemetry_settle))),
            ingestion_settle=float(self._get("ingestion_settle_time", str(default.ingestion_settle))),
        )

    def serialize(self) -> dict:
        return {
            "scenario": self.scenario.name if hasattr(self, "scenario") else None,
            "os": self.os_name,
            "resources_dir": self.resources_dir,
            "ingestion_port": self.ingestion_port,
            "base_port": self.base_port,
            "app_host": self.app_host,
        }


update_environ_with_local_env()

context = _Context()
