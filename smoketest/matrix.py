"""Build the list of test cases: one per (application server, runtime) pair"""

from dataclasses import dataclass
from pathlib import Path
import re

from smoketest._logger import logger
from smoketest.errors import ConfigurationError
from smoketest.tools import read_lines


APP_SERVERS_FILENAME = "appServers.txt"
RUNTIMES_FILENAME_TEMPLATE = "{server}.jre.txt"


def normalize_runtime_tag(tag: str) -> str:
    """runtime tags are used in docker image names"""
    return re.sub(r"[:/]", "_", tag)


@dataclass(frozen=True)
class TestCase:
    __test__ = False  # pytest must not collect it

    server: str
    os: str
    runtime: str

    @property
    def image_name(self) -> str:
        return f"{self.server}_{self.os}_{self.runtime}"

    @property
    def id(self) -> str:
        return f"{self.server}, {self.os}, {self.runtime}"

    def __str__(self) -> str:
        return self.id


class ParameterMatrix:
    def __init__(self, resources_dir: str | Path, os_name: str = "linux") -> None:
        self.resources_dir = Path(resources_dir)
        self.os_name = os_name

    def _read(self, filename: str) -> list[str]:
        path = self.resources_dir / filename
        try:
            return read_lines(str(path))
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Can't read resource {path}: {e}") from e

    def servers(self) -> list[str]:
        return self._read(APP_SERVERS_FILENAME)

    def runtimes(self, server: str) -> list[str]:
        return [normalize_runtime_tag(tag) for tag in self._read(RUNTIMES_FILENAME_TEMPLATE.format(server=server))]

    def generate(self) -> list[TestCase]:
        result = [
            TestCase(server=server, os=self.os_name, runtime=runtime)
            for server in self.servers()
            for runtime in self.runtimes(server)
        ]

        logger.debug(f"{len(result)} test case(s) generated from {self.resources_dir}")
        return result
