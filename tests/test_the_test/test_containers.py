import io
from pathlib import Path
import tarfile
import textwrap
import time

import pytest

from smoketest import scenarios
from smoketest._context.containers import ContainerHandle, ContainerOrchestrator, ContainerRegistry
from smoketest._context.ports import HostPortAllocator
from smoketest.errors import ContainerStartError, DeploymentError, TeardownError

from .utils import FakeDockerClient, run_python


def _orchestrator(tmp_path: Path, **kwargs) -> tuple[ContainerOrchestrator, FakeDockerClient]:
    client = FakeDockerClient()
    orchestrator = ContainerOrchestrator(client, host_log_folder=str(tmp_path / "logs"), **kwargs)  # type: ignore[arg-type]
    return orchestrator, client


@scenarios.test_the_test
class Test_ContainerOrchestrator:
    def test_start_container(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)

        port = orchestrator.allocate_port()
        container_id = orchestrator.start_container("tomcatA_linux_8", port)

        assert client.runs == [("tomcatA_linux_8", {"8080/tcp": 28080})]
        assert orchestrator.last_container_id() == container_id
        assert len(orchestrator.registry) == 1

    def test_empty_container_id(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        client.next_id.append("")

        with pytest.raises(ContainerStartError):
            orchestrator.start_container("tomcatA_linux_8", 28080)

        assert not orchestrator.registry

    def test_ports_are_strictly_increasing(self, tmp_path: Path):
        orchestrator, _ = _orchestrator(tmp_path, base_port=30000)

        ports = [orchestrator.allocate_port() for _ in range(5)]

        assert ports == [30000, 30001, 30002, 30003, 30004]
        assert orchestrator.ports.last == 30004

    def test_teardown_all(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        ids = [orchestrator.start_container(f"image{i}", orchestrator.allocate_port()) for i in range(4)]

        orchestrator.teardown_all()

        assert not orchestrator.registry
        assert sorted(client.stopped) == sorted(ids)
        assert sorted(client.removed) == sorted(ids)
        assert orchestrator.last_container_id() is None
        assert orchestrator.leaked_containers == []

        # second call is a no-op
        orchestrator.teardown_all()
        assert len(client.stopped) == 4

    def test_teardown_all_budget_exceeded(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path, stop_timeout_per_container=0.2)
        container_id = orchestrator.start_container("image", 28080)
        client.stop_delay = 1.5

        start = time.monotonic()
        orchestrator.teardown_all()
        elapsed = time.monotonic() - start

        assert elapsed < 1.2
        assert not orchestrator.registry
        assert [handle.container_id for handle in orchestrator.leaked_containers] == [container_id]

    def test_teardown_all_at_interpreter_exit(self, tmp_path: Path):
        code = textwrap.dedent(
            """
            import atexit

            from smoketest._context.containers import ContainerOrchestrator
            from tests.test_the_test.utils import FakeDockerClient

            client = FakeDockerClient()
            orchestrator = ContainerOrchestrator(client, host_log_folder="logs")
            for port in (28080, 28081):
                orchestrator.start_container("image", port)

            def report():
                print(f"STOPPED {len(client.stopped)} REGISTRY {len(orchestrator.registry)}")

            # atexit hooks run in reverse order
            atexit.register(report)
            atexit.register(orchestrator.teardown_all)
            """
        )

        result = run_python(code, tmp_path)

        assert result.returncode == 0, result.stderr
        assert "STOPPED 2 REGISTRY 0" in result.stdout
        assert "RuntimeError" not in result.stderr

    def test_teardown_all_empty(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)

        orchestrator.teardown_all()

        assert client.stopped == []

    def test_teardown_all_with_failures(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        ids = [orchestrator.start_container(f"image{i}", orchestrator.allocate_port()) for i in range(3)]
        client.fail_on_stop.add(ids[1])

        orchestrator.teardown_all()

        assert not orchestrator.registry
        assert sorted(client.stopped) == sorted(ids)
        assert ids[1] not in client.removed

    def test_stop_container_failure(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)
        client.fail_on_stop.add(container_id)

        with pytest.raises(TeardownError):
            orchestrator.stop_container(container_id)

    def test_deploy_artifact(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)
        artifact = tmp_path / "calc.war"
        artifact.write_bytes(b"war content")

        orchestrator.deploy_artifact(container_id, artifact)

        container = client.started[container_id]
        [(path, data)] = container.archives
        assert path == "/root/docker-stage"
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            member = tar.extractfile("calc.war")
            assert member is not None
            assert member.read() == b"war content"

        assert container.commands == [(["/bin/sh", "-c", "./deploy.sh calc.war"], "/root/docker-stage")]

    def test_deploy_artifact_on_windows(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path, os_name="windows")
        container_id = orchestrator.start_container("image", 28080)
        artifact = tmp_path / "calc.war"
        artifact.write_bytes(b"")

        orchestrator.deploy_artifact(container_id, artifact)

        assert client.started[container_id].commands == [(["cmd", "/c", "deploy.cmd calc.war"], "C:/docker-stage")]

    def test_deploy_failure(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)
        artifact = tmp_path / "calc.war"
        artifact.write_bytes(b"")
        client.exit_code = 1

        with pytest.raises(DeploymentError):
            orchestrator.deploy_artifact(container_id, artifact)

    def test_deploy_missing_artifact(self, tmp_path: Path):
        orchestrator, _ = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)

        with pytest.raises(DeploymentError):
            orchestrator.deploy_artifact(container_id, tmp_path / "missing.war")

    def test_exec_diagnostic(self, tmp_path: Path):
        orchestrator, client = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)

        assert orchestrator.exec_diagnostic(container_id, "tailLastLog.sh") == "some output"
        assert client.started[container_id].commands == [(["/bin/sh", "-c", "tailLastLog.sh"], None)]

    def test_diagnostics_never_raise(self, tmp_path: Path):
        orchestrator, _ = _orchestrator(tmp_path)

        assert orchestrator.exec_diagnostic("unknown", "tailLastLog.sh") is None
        assert orchestrator.container_logs("unknown") is None

    def test_container_logs(self, tmp_path: Path):
        orchestrator, _ = _orchestrator(tmp_path)
        container_id = orchestrator.start_container("image", 28080)

        output = orchestrator.container_logs(container_id)

        assert output is not None
        assert "line 99" in output
        log_folder = tmp_path / "logs" / "docker" / container_id[:12]
        assert (log_folder / "stdout.log").read_text().count("\n") == 99
        assert (log_folder / "stderr.log").read_text() == "an error"

    def test_unsupported_os(self, tmp_path: Path):
        with pytest.raises(ValueError):
            _orchestrator(tmp_path, os_name="solaris")


@scenarios.test_the_test
class Test_ContainerRegistry:
    def test_stack(self):
        registry = ContainerRegistry()
        assert registry.peek() is None

        registry.push(ContainerHandle("a" * 64, "image_a"))
        registry.push(ContainerHandle("b" * 64, "image_b"))

        assert registry.peek() == ContainerHandle("b" * 64, "image_b")
        assert [handle.image_name for handle in registry.pop_all()] == ["image_b", "image_a"]
        assert not registry


@scenarios.test_the_test
def test_port_allocator():
    allocator = HostPortAllocator(28080)

    assert allocator.last is None
    assert [allocator.next() for _ in range(3)] == [28080, 28081, 28082]
