"""Fakes of the docker SDK objects used by the orchestrator, and subprocess helpers"""

from collections import namedtuple
import os
from pathlib import Path
import subprocess
import sys
import threading
import time

from docker.errors import DockerException, NotFound


ExecResult = namedtuple("ExecResult", ["exit_code", "output"])


class FakeContainer:
    def __init__(self, container_id: str, client: "FakeDockerClient") -> None:
        self.id = container_id
        self.client = client
        self.archives: list[tuple[str, bytes]] = []
        self.commands: list[tuple[list[str], str | None]] = []

    def stop(self) -> None:
        time.sleep(self.client.stop_delay)

        with self.client.lock:
            self.client.stopped.append(self.id)

        if self.id in self.client.fail_on_stop:
            raise DockerException(f"can't stop {self.id}")

    def remove(self, force: bool = False) -> None:  # noqa: FBT001, FBT002
        assert force
        self.client.removed.append(self.id)

    def put_archive(self, path: str, data: bytes) -> bool:
        self.archives.append((path, data))
        return True

    def exec_run(self, cmd: list[str], workdir: str | None = None) -> ExecResult:
        self.commands.append((cmd, workdir))
        return ExecResult(self.client.exit_code, b"some output")

    def logs(self, stdout: bool = True, stderr: bool = True) -> bytes:  # noqa: FBT001, FBT002
        if stdout and not stderr:
            return "\n".join(f"line {i}" for i in range(100)).encode()
        return b"an error"


class FakeContainers:
    def __init__(self, client: "FakeDockerClient") -> None:
        self.client = client

    def run(self, image: str, detach: bool, ports: dict) -> FakeContainer:  # noqa: FBT001
        assert detach
        self.client.runs.append((image, ports))
        container_id = self.client.next_id.pop(0) if self.client.next_id else f"{len(self.client.runs):064x}"
        container = FakeContainer(container_id, self.client)
        self.client.started[container_id] = container
        return container

    def get(self, container_id: str) -> FakeContainer:
        if container_id not in self.client.started:
            raise NotFound(f"No such container: {container_id}")
        return self.client.started[container_id]


class FakeDockerClient:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.containers = FakeContainers(self)
        self.runs: list[tuple[str, dict]] = []
        self.started: dict[str, FakeContainer] = {}
        self.stopped: list[str] = []
        self.removed: list[str] = []
        self.fail_on_stop: set[str] = set()
        self.next_id: list[str] = []
        self.exit_code = 0
        self.stop_delay = 0.0


def run_python(code: str, cwd: Path) -> subprocess.CompletedProcess:
    """Runs code in a new interpreter, able to import smoketest and these fakes"""

    root = Path(__file__).parents[2]
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(root), os.environ.get("PYTHONPATH")]))}

    return subprocess.run(
        [sys.executable, "-c", code], cwd=cwd, env=env, capture_output=True, text=True, check=False, timeout=60
    )
