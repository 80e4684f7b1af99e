# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Drives one test case, from the parameters check to the telemetry validation.

States are executed in this order, each one being a precondition of the next one:

    INIT -> PARAMS_VALIDATED -> PROPS_LOADED -> INGESTION_STARTED -> CONTAINER_STARTED
    -> ARTIFACT_DEPLOYED -> APP_READY -> REQUEST_ISSUED -> SETTLE_WAIT_COMPLETE -> VALIDATED

Any exception moves the harness to FAILED: diagnostics are captured from the last started
container, and the exception is propagated. TORN_DOWN always happens, whatever the previous
state. Containers are not stopped per test, the orchestrator stops all of them at the end of
the process.
"""

from collections.abc import Callable
from enum import StrEnum
from pathlib import Path
import time

import requests
from retry import retry

from smoketest._context.containers import ContainerOrchestrator
from smoketest._context.core import Timeouts
from smoketest._decorators import TargetRequest
from smoketest._logger import logger
from smoketest._properties import WAR_FILE_PROPERTY, TestProperties
from smoketest._weblog import AppClient
from smoketest.errors import ConfigurationError, IngestionMismatch, IngestionSelfCheckError
from smoketest.interfaces import (
    ENDPOINT_HEALTH_CHECK_RESPONSE,
    HEALTH_PATH,
    PING,
    PONG,
    TRACK_PATH,
    Domain,
    MockIngestionServer,
    device_id_filter,
)
from smoketest.matrix import TestCase
from smoketest.tools import e, o
from smoketest.wait_conditions import HealthPoller


DIAGNOSTIC_COMMAND = "tailLastLog.sh"


class HarnessState(StrEnum):
    INIT = "init"
    PARAMS_VALIDATED = "params_validated"
    PROPS_LOADED = "props_loaded"
    INGESTION_STARTED = "ingestion_started"
    CONTAINER_STARTED = "container_started"
    ARTIFACT_DEPLOYED = "artifact_deployed"
    APP_READY = "app_ready"
    REQUEST_ISSUED = "request_issued"
    SETTLE_WAIT_COMPLETE = "settle_wait_complete"
    VALIDATED = "validated"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


class Harness:
    def __init__(
        self,
        test_case: TestCase,
        *,
        orchestrator: ContainerOrchestrator,
        ingestion: MockIngestionServer,
        properties: TestProperties,
        resources_dir: str | Path,
        app_host: str = "localhost",
        target: TargetRequest | None = None,
        expect_some_telemetry: bool = True,
        poller: HealthPoller | None = None,
        timeouts: Timeouts | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.test_case = test_case
        self.orchestrator = orchestrator
        self.ingestion = ingestion
        self.properties = properties
        self.resources_dir = Path(resources_dir)
        self.app_host = app_host
        self.target = target
        self.expect_some_telemetry = expect_some_telemetry
        self.poller = poller or HealthPoller()
        self.timeouts = timeouts or Timeouts()
        self._sleep = sleep
        self._session = requests.Session()

        self.state = HarnessState.INIT
        self.failure: Exception | None = None
        self.diagnostics_captured = False

        self.current_image_name: str | None = None
        self.app_server_port: int | None = None
        self.war_file_name: str | None = None
        self.container_id: str | None = None
        self.app: AppClient | None = None
        self.response: str | None = None

    def __repr__(self) -> str:
        return f"Harness({self.test_case}, state={self.state})"

    def _enter(self, state: HarnessState) -> None:
        logger.debug(f"{self.test_case}: {self.state} -> {state}")
        self.state = state

    @property
    def app_context(self) -> str:
        if self.war_file_name is None:
            raise ValueError("Test properties are not loaded yet")
        return self.war_file_name.removesuffix(".war")

    @property
    def base_url(self) -> str:
        return f"http://{self.app_host}:{self.app_server_port}/{self.app_context}"

    def setup(self) -> None:
        """Runs all states up to VALIDATED"""

        logger.stdout(f"Preparing test {self.test_case}...")

        try:
            self._check_params()
            self._load_properties()
            self._start_ingestion()
            self._start_container()
            self._deploy_artifact()
            self._wait_for_application()
            self._call_target_uri()
            self._wait_for_telemetry()
            self._validate()
        except Exception as error:
            self.fail(error)
            raise

        logger.stdout(o(f"Test preparation complete for {self.test_case}"))

    def fail(self, error: Exception) -> None:
        self.failure = error
        self._enter(HarnessState.FAILED)
        logger.stdout(e(f"Test failure detected: {error}"))
        self.capture_diagnostics()

    def _check_params(self) -> None:
        fmt = "Missing required framework parameter: {} - this indicates an error in the parameter generator"
        for name in ("server", "os", "runtime"):
            if not getattr(self.test_case, name, None):
                raise ConfigurationError(fmt.format(name))

        self._enter(HarnessState.PARAMS_VALIDATED)

    def _load_properties(self) -> None:
        self.war_file_name = self.properties.get(WAR_FILE_PROPERTY)
        self.current_image_name = self.test_case.image_name
        self.app_server_port = self.orchestrator.allocate_port()
        self.app = AppClient(self.app_host, self.app_server_port, self.app_context, session=self._session)

        self._enter(HarnessState.PROPS_LOADED)

    def _start_ingestion(self) -> None:
        self.ingestion.add_filter(device_id_filter(self.orchestrator.last_container_id))
        self.ingestion.start()
        self._sleep(self.timeouts.ingestion_settle)

        try:
            self._check_ingestion_health()
        except requests.RequestException as error:
            raise IngestionSelfCheckError(f"Mocked ingestion is not reachable on {self.ingestion.url}") from error

        self._enter(HarnessState.INGESTION_STARTED)

    @retry(exceptions=requests.RequestException, tries=3, delay=1)
    def _check_ingestion_health(self) -> None:
        health = self._session.get(f"{self.ingestion.url}{HEALTH_PATH}", timeout=5).text
        if health != ENDPOINT_HEALTH_CHECK_RESPONSE:
            raise IngestionSelfCheckError(f"Unexpected health check response from mocked ingestion: {health!r}")

        pong = self._session.post(f"{self.ingestion.url}{TRACK_PATH}", data=PING, timeout=5).text
        if pong != PONG:
            raise IngestionSelfCheckError(f"Unexpected ping response from mocked ingestion: {pong!r}")

    def _start_container(self) -> None:
        assert self.current_image_name is not None and self.app_server_port is not None and self.app is not None

        self.container_id = self.orchestrator.start_container(self.current_image_name, self.app_server_port)

        logger.stdout(f"Waiting for appserver to start ({self.app.server_url})...")
        self.poller.wait_for_ready(self.app.server_url, self.timeouts.app_server_ready, "app server")
        logger.stdout("App server is ready.")

        self._enter(HarnessState.CONTAINER_STARTED)

    def _deploy_artifact(self) -> None:
        assert self.container_id is not None and self.war_file_name is not None

        logger.stdout(f"Deploying test application: {self.war_file_name}...")
        self.orchestrator.deploy_artifact(self.container_id, self.resources_dir / self.war_file_name)

        self._enter(HarnessState.ARTIFACT_DEPLOYED)

    def _wait_for_application(self) -> None:
        logger.stdout(f"Test app health check: Waiting for {self.war_file_name} to start...")
        self.poller.wait_for_ready(self.base_url, self.timeouts.application_ready, self.app_context)
        logger.stdout("Test app health check complete.")

        self._enter(HarnessState.APP_READY)

    def _call_target_uri(self) -> None:
        assert self.app is not None

        if self.target is None:
            logger.stdout("No target uri: automated testapp request disabled")
        else:
            self.response = self.app.request(self.target.method, self.target.path)

        self._enter(HarnessState.REQUEST_ISSUED)

    def _wait_for_telemetry(self) -> None:
        logger.stdout(f"Waiting {self.timeouts.telemetry_settle:g}s for telemetry...")
        self._sleep(self.timeouts.telemetry_settle)
        logger.stdout("Finished waiting for telemetry. Starting validation...")

        self._enter(HarnessState.SETTLE_WAIT_COMPLETE)

    def _validate(self) -> None:
        has_data = self.ingestion.has_data()

        if self.expect_some_telemetry and not has_data:
            raise IngestionMismatch("mocked ingestion has no data")

        if not self.expect_some_telemetry and has_data:
            raise IngestionMismatch(
                f"mocked ingestion received {self.ingestion.get_item_count()} item(s) while no telemetry was expected"
            )

        self._enter(HarnessState.VALIDATED)

    def capture_diagnostics(self) -> None:
        """Print logs of the last started container. Best-effort, never raises"""

        if self.diagnostics_captured:
            return

        self.diagnostics_captured = True

        container_id = self.orchestrator.last_container_id()
        if container_id is None:
            logger.info("No container started, no logs to fetch")
            return

        logger.stdout("\nFetching appserver logs")
        self.orchestrator.exec_diagnostic(container_id, DIAGNOSTIC_COMMAND)

        logger.stdout(f"\nFetching container logs for {container_id}")
        self.orchestrator.container_logs(container_id)

        logger.stdout("\nFinished gathering logs.")

    def teardown(self) -> None:
        logger.stdout("Cleaning up test resources...")
        try:
            self.ingestion.reset()
        finally:
            self._enter(HarnessState.TORN_DOWN)

        logger.stdout("Test resources cleaned.")

    # helpers for tests

    def get(self, path: str) -> str:
        assert self.app is not None, "Harness is not set up"
        return self.app.get(path)

    def get_telemetry_data_for_type(self, index: int, base_type: str) -> Domain:
        return self.ingestion.get_envelope_at(index, base_type)
