import time
from collections.abc import Callable

import requests

from smoketest._logger import logger
from smoketest.errors import EmptyResponseError, HealthCheckTimeout

# Time to sleep between iterations. Servers under test take seconds to boot,
# it does not make sense to go much lower than that.
_ITER_SLEEP_TIME = 1

# Servers may answer with a custom error page while the application is deploying, so
# readiness is decided on the body content, not on the status code.
_NOT_READY_MARKER = "404"


class HealthPoller:
    """Polls an URL until it answers something meaningful"""

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        interval: float = _ITER_SLEEP_TIME,
        request_timeout: float = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session or requests.Session()
        self.interval = interval
        self.request_timeout = request_timeout
        self._clock = clock
        self._sleep = sleep

    def wait_for_ready(self, url: str, timeout: float, label: str) -> str:
        """Returns the first ready response body of url, or raise HealthCheckTimeout after timeout seconds"""

        start = self._clock()
        attempt = 0

        while True:
            elapsed = self._clock() - start
            if elapsed > timeout:
                raise HealthCheckTimeout(label, url, elapsed)

            self._sleep(self.interval)
            attempt += 1

            try:
                body = self.session.get(url, timeout=self.request_timeout).text
            except requests.RequestException as e:
                logger.debug(f"Try #{attempt} for {label}: {e}")
                continue

            if _NOT_READY_MARKER in body:
                logger.debug(f"Try #{attempt} for {label}: not deployed yet")
                continue

            if not body.strip():
                raise EmptyResponseError(url)

            logger.debug(f"{label} answered after {attempt} tries")
            return body


def wait_for_url(url: str, timeout: float, label: str) -> str:
    return HealthPoller().wait_for_ready(url, timeout, label)
