import atexit
import os
from pathlib import Path
import shutil
import signal
import sys
import threading

import pytest

from smoketest._context.containers import ContainerOrchestrator
from smoketest._context.core import context
from smoketest._logger import logger
from smoketest._properties import TestProperties
from smoketest.matrix import ParameterMatrix, TestCase


class Scenario:
    def __init__(self, name: str, doc: str) -> None:
        self.name = name
        self.doc = doc

    def __call__(self, test_object):  # noqa: ANN001 (test_object can be a class or a function)
        """Handles @scenarios.scenario_name"""

        pytest.mark.scenario(self.name)(test_object)

        return test_object

    @property
    def host_log_folder(self) -> str:
        return "logs" if self.name == "SMOKE" else f"logs_{self.name.lower()}"

    def _create_log_subfolder(self, subfolder: str, *, remove_if_exists: bool = False) -> None:
        path = os.path.join(self.host_log_folder, subfolder)

        if remove_if_exists:
            shutil.rmtree(path, ignore_errors=True)

        Path(path).mkdir(parents=True, exist_ok=True)

    def pytest_configure(self, config: pytest.Config) -> None:
        # with xdist, only the main worker can create the log folder
        if not hasattr(config, "workerinput"):
            self._create_log_subfolder("", remove_if_exists=True)

        logger.add_file_handler(f"{self.host_log_folder}/tests.log")

        self.configure(config)

    def configure(self, config: pytest.Config) -> None: ...

    def pytest_sessionstart(self, session: pytest.Session) -> None:  # noqa: ARG002
        """Called at the very begining of the process"""

        logger.section("test context")

        try:
            for warmup in self.get_warmups():
                warmup()
        except BaseException:
            self.close_targets()
            raise

    def get_warmups(self) -> list:
        return [
            lambda: logger.stdout(f"Scenario: {self.name}"),
            lambda: logger.stdout(f"Logs folder: ./{self.host_log_folder}"),
        ]

    def get_test_cases(self) -> list[TestCase]:
        return []

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        """Called at the end of the process"""

    def close_targets(self) -> None:
        """Release everything the scenario started"""

    def __str__(self) -> str:
        return f"Scenario '{self.name}'"


def _handle_sigterm(signo, frame) -> None:  # noqa: ANN001, ARG001
    # converts the signal in an exception, so atexit hooks and finally clauses run
    sys.exit(128 + signo)


class SmokeScenario(Scenario):
    """Application servers started in docker containers, with the test application deployed in it"""

    def __init__(self, name: str, doc: str) -> None:
        super().__init__(name, doc)
        self.orchestrator: ContainerOrchestrator | None = None
        self._properties: TestProperties | None = None
        self._close_lock = threading.Lock()

    def configure(self, config: pytest.Config) -> None:  # noqa: ARG002
        self.orchestrator = ContainerOrchestrator(
            os_name=context.os_name,
            base_port=context.base_port,
            host_log_folder=self.host_log_folder,
        )

        # the orchestrator is released at session finish; those hooks cover interrupted runs
        atexit.register(self.close_targets)
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, _handle_sigterm)

    def get_warmups(self) -> list:
        return [
            *super().get_warmups(),
            lambda: logger.stdout(f"OS: {context.os_name}"),
            lambda: logger.stdout(f"Resources: {context.resources_dir}"),
            lambda: logger.stdout(f"Mocked ingestion port: {context.ingestion_port}"),
        ]

    @property
    def properties(self) -> TestProperties:
        if self._properties is None:
            self._properties = TestProperties.load(context.resources_dir)

        return self._properties

    def get_test_cases(self) -> list[TestCase]:
        return ParameterMatrix(context.resources_dir, context.os_name).generate()

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:  # noqa: ARG002
        self.close_targets()

    def close_targets(self) -> None:
        with self._close_lock:
            if self.orchestrator is not None:
                self.orchestrator.teardown_all()


class TestTheTestScenario(Scenario):
    """Framework self tests, no docker needed"""

    __test__ = False  # pytest must not collect it


class _Scenarios:
    smoke = SmokeScenario("SMOKE", doc="End to end smoke tests of instrumented applications in app server containers")
    test_the_test = TestTheTestScenario("TEST_THE_TEST", doc="Self tests of the smoke test framework")

    def __getitem__(self, name: str) -> Scenario:
        for scenario in self.all():
            if scenario.name == name.upper():
                return scenario

        names = ", ".join(scenario.name for scenario in self.all())
        raise ValueError(f"Scenario `{name}` does not exist. Valid values are: {names}")

    def all(self) -> list[Scenario]:
        return [value for value in vars(type(self)).values() if isinstance(value, Scenario)]


scenarios = _Scenarios()
