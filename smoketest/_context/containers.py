# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Everything about docker containers running the application servers under test"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from functools import lru_cache
import io
from pathlib import Path
from subprocess import run
import tarfile
import threading
import time

import docker
from docker.errors import DockerException
from docker.models.containers import Container
import requests

from smoketest._context.ports import ContainerPorts, HostPortAllocator, HostPorts
from smoketest._logger import logger
from smoketest.errors import ContainerStartError, DeploymentError, TeardownError
from smoketest.tools import w


@lru_cache
def get_docker_client() -> docker.DockerClient:
    try:
        return docker.DockerClient.from_env()
    except DockerException:
        # Failed to start the default Docker client... Let's see if we have
        # better luck with docker contexts...
        try:
            ctx_name = run(["docker", "context", "show"], capture_output=True, check=True, text=True).stdout.strip()
            endpoint = run(
                ["docker", "context", "inspect", ctx_name, "-f", "{{ .Endpoints.docker.Host }}"],
                capture_output=True,
                check=True,
                text=True,
            ).stdout.strip()
            return docker.DockerClient(base_url=endpoint)
        except Exception:
            logger.exception("Fail to get docker client with context")

        raise


@dataclass(frozen=True)
class _OsSettings:
    shell: tuple[str, ...]
    stage_dir: str
    deploy_command: str


_OS_SETTINGS = {
    "linux": _OsSettings(shell=("/bin/sh", "-c"), stage_dir="/root/docker-stage", deploy_command="./deploy.sh"),
    "windows": _OsSettings(shell=("cmd", "/c"), stage_dir="C:/docker-stage", deploy_command="deploy.cmd"),
}


@dataclass(frozen=True)
class ContainerHandle:
    container_id: str
    image_name: str

    def __str__(self) -> str:
        return f"{self.image_name} ({self.container_id[:12]})"


class ContainerRegistry:
    """Stack of all containers started by this process, and not yet stopped"""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._handles: list[ContainerHandle] = []

    def push(self, handle: ContainerHandle) -> None:
        with self._lock:
            self._handles.append(handle)

    def peek(self) -> ContainerHandle | None:
        with self._lock:
            return self._handles[-1] if self._handles else None

    def pop_all(self) -> list[ContainerHandle]:
        """Empties the registry, and returns its content, most recent container first"""
        with self._lock:
            result = list(reversed(self._handles))
            self._handles.clear()
            return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __bool__(self) -> bool:
        return len(self) != 0


class ContainerOrchestrator:
    """Application server containers of the test session.

    One instance is owned by the smoke scenario for the whole process. Its registry and its
    port allocator assume that test cases are executed sequentially.
    """

    TAIL_LIMIT = 50

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        *,
        os_name: str = "linux",
        base_port: int = HostPorts.app_server_base,
        host_log_folder: str = "logs",
        stop_timeout_per_container: float = 15,
    ) -> None:
        if os_name not in _OS_SETTINGS:
            raise ValueError(f"Unsupported os {os_name}, expecting one of {', '.join(_OS_SETTINGS)}")

        self._client = client
        self.os_name = os_name
        self.host_log_folder = host_log_folder
        self.stop_timeout_per_container = stop_timeout_per_container

        self.registry = ContainerRegistry()
        self.ports = HostPortAllocator(base_port)
        self.leaked_containers: list[ContainerHandle] = []

        self._teardown_lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = get_docker_client()

        return self._client

    @property
    def _settings(self) -> _OsSettings:
        return _OS_SETTINGS[self.os_name]

    def _get_container(self, container_id: str) -> Container:
        return self.client.containers.get(container_id)

    def allocate_port(self) -> int:
        return self.ports.next()

    def last_container_id(self) -> str | None:
        handle = self.registry.peek()
        return handle.container_id if handle else None

    def start_container(self, image_name: str, host_port: int) -> str:
        logger.stdout(f"Starting container: {image_name}")

        try:
            container = self.client.containers.run(
                image=image_name,
                detach=True,
                ports={f"{ContainerPorts.app_server}/tcp": host_port},
            )
        except (DockerException, requests.RequestException) as e:
            raise ContainerStartError(f"Fail to start container {image_name}: {e}") from e

        container_id = getattr(container, "id", None)
        if not container_id:
            raise ContainerStartError(f"'containerId' was null/empty attempting to start container: {image_name}")

        self.registry.push(ContainerHandle(container_id=container_id, image_name=image_name))
        logger.stdout(f"Container started: {container_id}")

        return container_id

    def deploy_artifact(self, container_id: str, artifact_path: str | Path) -> None:
        artifact = Path(artifact_path)
        settings = self._settings

        logger.stdout(f"Deploying {artifact.name} in {container_id[:12]}...")

        try:
            data = artifact.read_bytes()
        except OSError as e:
            raise DeploymentError(f"Can't read artifact {artifact}: {e}") from e

        archive = io.BytesIO()
        with tarfile.open(fileobj=archive, mode="w") as tar:
            info = tarfile.TarInfo(name=artifact.name)
            info.size = len(data)
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))

        try:
            container = self._get_container(container_id)
            if not container.put_archive(settings.stage_dir, archive.getvalue()):
                raise DeploymentError(f"Fail to copy {artifact.name} into {settings.stage_dir}")

            command = f"{settings.deploy_command} {artifact.name}"
            result = container.exec_run([*settings.shell, command], workdir=settings.stage_dir)
        except (DockerException, requests.RequestException) as e:
            raise DeploymentError(f"Fail to deploy {artifact.name} in {container_id}: {e}") from e

        output = result.output.decode("utf-8", errors="replace") if result.output else ""
        logger.debug(f"{command} output:\n{output}")

        if result.exit_code != 0:
            raise DeploymentError(f"{command} exited with code {result.exit_code}:\n{output}")

        logger.stdout(f"{artifact.name} deployed")

    def exec_diagnostic(self, container_id: str, command: str) -> str | None:
        """Execute a command in the container, and print its output. Never raises."""

        try:
            result = self._get_container(container_id).exec_run([*self._settings.shell, command])
        except Exception:
            logger.exception(f"Error executing {command} in {container_id}")
            return None

        output = result.output.decode("utf-8", errors="replace") if result.output else ""
        if result.exit_code != 0:
            logger.error(f"{command} exited with code {result.exit_code} in {container_id}")

        logger.stdout(output)
        return output

    def container_logs(self, container_id: str) -> str | None:
        """Save container stdout/stderr in the log folder, and print the last lines. Never raises."""

        sep = "=" * 30
        log_folder = Path(self.host_log_folder) / "docker" / container_id[:12]

        try:
            container = self._get_container(container_id)
            data = (
                ("stdout", container.logs(stdout=True, stderr=False)),
                ("stderr", container.logs(stdout=False, stderr=True)),
            )

            log_folder.mkdir(parents=True, exist_ok=True)
            result = []
            for output_name, raw_output in data:
                filename = log_folder / f"{output_name}.log"
                filename.write_bytes(raw_output)

                decoded_output = raw_output.decode("utf-8", errors="replace")
                result.append(decoded_output)

                logger.stdout(f"\n{sep} {container_id[:12]} {output_name.upper()} last {self.TAIL_LIMIT} lines {sep}")
                logger.stdout(f"-> See {filename} for full logs")
                logger.stdout("\n".join(decoded_output.splitlines()[-self.TAIL_LIMIT :]))
        except Exception:
            logger.exception(f"Error fetching container logs for {container_id}")
            return None

        return "\n".join(result)

    def stop_container(self, container_id: str) -> None:
        logger.stdout(f"Stopping container: {container_id[:12]}")
        start = time.monotonic()

        try:
            container = self._get_container(container_id)
            container.stop()
            container.remove(force=True)
        except (DockerException, requests.RequestException) as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.error(f"Error stopping container (in {elapsed_ms:.0f}ms): {container_id}")
            raise TeardownError(f"Fail to stop container {container_id}: {e}") from e

        logger.stdout(f"Container stopped ({container_id[:12]}) in {(time.monotonic() - start) * 1000:.0f}ms")

    def _stop_quietly(self, handle: ContainerHandle) -> None:
        try:
            self.stop_container(handle.container_id)
        except TeardownError:
            logger.exception(f"Fail to stop {handle}")

    def _stop_sequentially(self, handles: list[ContainerHandle]) -> None:
        for handle in handles:
            try:
                self._stop_quietly(handle)
            except Exception:
                self.leaked_containers.append(handle)
                logger.exception(f"Unexpected error while stopping {handle}")

    def _stop_in_parallel(self, handles: list[ContainerHandle]) -> None:
        budget = len(handles) * self.stop_timeout_per_container

        executor = ThreadPoolExecutor(max_workers=len(handles), thread_name_prefix="stop_container")
        futures: dict[Future, ContainerHandle] = {}

        try:
            for handle in handles:
                futures[executor.submit(self._stop_quietly, handle)] = handle
        except RuntimeError:
            # at interpreter exit, concurrent.futures refuses new work before atexit hooks run
            logger.info("Can't start threads anymore, stopping remaining containers one after the other")
            submitted = set(futures.values())
            self._stop_sequentially([handle for handle in handles if handle not in submitted])

        try:
            _, not_done = wait(futures, timeout=budget)
        except KeyboardInterrupt:
            logger.error("Interrupted while stopping containers. There may still be containers running.")
            not_done = {future for future in futures if not future.done()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for future, handle in futures.items():
            if future in not_done:
                self.leaked_containers.append(handle)
                logger.stdout(w(f"Container {handle} may have leaked, run `docker rm -f {handle.container_id}`"))
            elif future.exception() is not None:
                logger.error(f"Unexpected error while stopping {handle}: {future.exception()}")

    def teardown_all(self) -> None:
        """Stop every registered container in parallel. Never raises"""

        with self._teardown_lock:
            if not self.registry:
                return

            handles = self.registry.pop_all()
            count = len(handles)

            logger.stdout(f"Destroying all containers... ({count})")
            start = time.monotonic()

            self._stop_in_parallel(handles)

            elapsed_ms = (time.monotonic() - start) * 1000
            logger.stdout(f"Stopping {count} containers took {elapsed_ms:.0f}ms")
