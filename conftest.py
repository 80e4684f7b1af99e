# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

from collections.abc import Generator
import os
from typing import Any

import pytest

from smoketest import context, logger
from smoketest._context._scenarios import Scenario, scenarios
from smoketest._decorators import get_expect_some_telemetry, get_target_request
from smoketest._harness import Harness
from smoketest.interfaces import MockIngestionServer
from smoketest.matrix import TestCase

DEFAULT_SCENARIO = "TEST_THE_TEST"

# tests without any scenario marker are smoke tests
UNMARKED_ITEMS_SCENARIO = "SMOKE"

harness_key = pytest.StashKey[Harness]()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--scenario",
        "-S",
        type=str,
        action="store",
        default=os.environ.get("SMOKETEST_SCENARIO", DEFAULT_SCENARIO),
        help="Unique identifier of scenario",
    )
    parser.addoption("--smoketest-os", type=str, action="store", default=None, help="OS of app server images")
    parser.addoption(
        "--resources-dir", type=str, action="store", default=None, help="Folder containing test resources"
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "scenario(name): scenario the test belongs to")
    config.addinivalue_line("markers", "target_uri(request): request issued once the test application is ready")
    config.addinivalue_line("markers", "expect_some_telemetry(value): whether the test expects telemetry")

    context.configure(os=config.option.smoketest_os, resources_dir=config.option.resources_dir)

    # First of all, we must get the current scenario
    try:
        current_scenario: Scenario = scenarios[config.option.scenario]
    except ValueError as e:
        pytest.exit(str(e), 1)

    context.scenario = current_scenario
    current_scenario.pytest_configure(config)


# Called at the very begening
def pytest_sessionstart(session: pytest.Session) -> None:
    # get the terminal to allow logging directly in stdout
    logger.terminal = session.config.pluginmanager.get_plugin("terminalreporter")

    # if only collect tests, do not start the scenario
    if not session.config.option.collectonly:
        context.scenario.pytest_sessionstart(session)


def pytest_generate_tests(metafunc: pytest.Metafunc) -> None:
    if "test_case" in metafunc.fixturenames:
        test_cases: list[TestCase] = context.scenario.get_test_cases()
        metafunc.parametrize("test_case", test_cases, ids=[test_case.id for test_case in test_cases])


def pytest_collection_modifyitems(session: pytest.Session, config: pytest.Config, items: list[pytest.Item]) -> None:  # noqa: ARG001
    """Unselect items that are not included in the current scenario"""

    logger.debug("pytest_collection_modifyitems")

    selected = []
    deselected = []

    for item in items:
        # if the item has explicit scenario markers, we use them
        # otherwise we use markers declared on its parents
        own_markers = [marker for marker in item.own_markers if marker.name == "scenario"]
        scenario_markers = own_markers if len(own_markers) != 0 else list(item.iter_markers("scenario"))
        if len(scenario_markers) == 0:
            declared_scenarios = [UNMARKED_ITEMS_SCENARIO]
        else:
            declared_scenarios = [marker.args[0] for marker in scenario_markers]

        if context.scenario.name in declared_scenarios:
            logger.info(f"{item.nodeid} is included in {context.scenario}")
            selected.append(item)
        else:
            logger.debug(f"{item.nodeid} is not included in {context.scenario}")
            deselected.append(item)

    items[:] = selected
    config.hook.pytest_deselected(items=deselected)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo) -> Generator[None, Any, None]:  # noqa: ARG001
    # Run all other hooks to get the report object
    outcome = yield
    rep: pytest.TestReport = outcome.get_result()

    # a failed setup already captured diagnostics
    if rep.when == "call" and rep.failed:
        harness = item.stash.get(harness_key, None)
        if harness is not None:
            harness.capture_diagnostics()


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    logger.info("Executing pytest_sessionfinish")

    if session.config.option.collectonly:
        return

    context.scenario.pytest_sessionfinish(session, exitstatus)


## Fixtures corners
@pytest.fixture(name="ingestion")
def fixture_ingestion() -> MockIngestionServer:
    return MockIngestionServer(context.ingestion_port)


@pytest.fixture(name="harness")
def fixture_harness(
    request: pytest.FixtureRequest, test_case: TestCase, ingestion: MockIngestionServer
) -> Generator[Harness, None, None]:
    scenario = scenarios.smoke
    assert scenario.orchestrator is not None, f"harness fixture is only available in {scenario}"

    harness = Harness(
        test_case,
        orchestrator=scenario.orchestrator,
        ingestion=ingestion,
        properties=scenario.properties,
        resources_dir=context.resources_dir,
        app_host=context.app_host,
        target=get_target_request(request.node),
        expect_some_telemetry=get_expect_some_telemetry(request.node),
        timeouts=context.timeouts,
    )
    request.node.stash[harness_key] = harness

    try:
        harness.setup()
        yield harness
    finally:
        harness.teardown()
