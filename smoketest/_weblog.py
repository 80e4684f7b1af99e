# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

import requests

from smoketest._logger import logger
from smoketest.errors import EmptyResponseError, UnsupportedMethodError


class AppClient:
    """Sends HTTP requests to the test application deployed in the current container"""

    SUPPORTED_METHODS = ("GET",)

    def __init__(self, domain: str, port: int, app_context: str, session: requests.Session | None = None) -> None:
        self.domain = domain
        self.port = port
        self.app_context = app_context
        self._session = session or requests.Session()

    @property
    def server_url(self) -> str:
        return f"http://{self.domain}:{self.port}/"

    @property
    def base_url(self) -> str:
        return f"http://{self.domain}:{self.port}/{self.app_context}"

    def get(self, path: str = "/", *, timeout: float = 30) -> str:
        return self.request("GET", path, timeout=timeout)

    def request(self, method: str, path: str, *, timeout: float = 30) -> str:
        """Returns the response body. The test applications must return a nonempty response"""

        method = method.upper()
        if method not in self.SUPPORTED_METHODS:
            raise UnsupportedMethodError(method)

        if not path.startswith("/"):
            path = f"/{path}"

        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")

        response = self._session.request(method, url, timeout=timeout)
        logger.debug(f"{method} {url} -> {response.status_code}")

        if not response.text:
            raise EmptyResponseError(url, hint="The base context in testApps should return a nonempty response.")

        return response.text

    def __repr__(self) -> str:
        return f"AppClient({self.base_url})"
