from enum import IntEnum
import itertools


class ContainerPorts(IntEnum):
    """Ports used inside tested containers"""

    app_server = 8080


class HostPorts(IntEnum):
    """Default ports used on the host"""

    app_server_base = 28080
    ingestion = 60606


class HostPortAllocator:
    """Gives one new host port per started container, never the same one twice in a process.

    Not thread safe: test cases are executed one after the other.
    """

    def __init__(self, base: int = HostPorts.app_server_base) -> None:
        self.base = int(base)
        self._counter = itertools.count(self.base)
        self.last: int | None = None

    def next(self) -> int:
        self.last = next(self._counter)
        return self.last
