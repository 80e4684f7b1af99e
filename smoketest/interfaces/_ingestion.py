# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Mocked telemetry ingestion endpoint.

The instrumented application, running in a container, posts its telemetry on /v2/track.
Every envelope goes through a chain of filters, accepted ones are stored for the test.
"""

from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import json
import threading

from smoketest._context.ports import HostPorts
from smoketest._logger import logger
from smoketest.errors import NotFoundError
from smoketest.interfaces._envelope import Domain, Envelope, decompress, deserialize_envelopes


ENDPOINT_HEALTH_CHECK_RESPONSE = "Fake AI Endpoint Online"
PING = "PING"
PONG = "PONG!"

HEALTH_PATH = "/"
TRACK_PATH = "/v2/track"

EnvelopeFilter = Callable[[Envelope], bool]


class FilterChain:
    """Ordered list of predicates. An envelope is accepted if all of them accept it"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._filters: list[EnvelopeFilter] = []

    def add(self, predicate: EnvelopeFilter) -> None:
        with self._lock:
            self._filters.append(predicate)

    def snapshot(self) -> list[EnvelopeFilter]:
        with self._lock:
            return list(self._filters)

    def accepts(self, envelope: Envelope) -> bool:
        return all(predicate(envelope) for predicate in self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._filters)


class IngestionStore:
    """Accepted envelopes, in arrival order"""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._envelopes: list[Envelope] = []

        self._wait_for_event = threading.Event()
        self._wait_for_function: Callable[[Envelope], bool] | None = None

    def append(self, envelope: Envelope) -> None:
        with self._lock:
            self._envelopes.append(envelope)
            wait_for_function = self._wait_for_function

        if wait_for_function and wait_for_function(envelope):
            self._wait_for_event.set()

    def snapshot(self) -> list[Envelope]:
        with self._lock:
            return list(self._envelopes)

    def clear(self) -> None:
        with self._lock:
            self._envelopes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._envelopes)

    def wait_for(self, condition: Callable[[Envelope], bool], timeout: float) -> bool:
        # first, try existing data
        with self._lock:
            for envelope in self._envelopes:
                if condition(envelope):
                    logger.info(f"wait for {condition} finished in success with existing data")
                    return True

            # then set the function, and wait for append() to release the event
            self._wait_for_event.clear()
            self._wait_for_function = condition

        try:
            if self._wait_for_event.wait(timeout):
                logger.info(f"wait for {condition} finished in success")
                return True

            logger.error(f"Wait for {condition} finished in error")
            return False
        finally:
            self._wait_for_function = None


class _IngestionRequestHandler(BaseHTTPRequestHandler):
    server: "_IngestionHTTPServer"

    def log_message(self, format: str, *args) -> None:  # noqa: A002, ANN002
        logger.debug(f"[ingestion] {self.address_string()} {format % args}")

    def _reply(self, status: HTTPStatus, body: str, content_type: str = "text/plain") -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def do_GET(self) -> None:  # noqa: N802
        if self.path == HEALTH_PATH:
            self._reply(HTTPStatus.OK, ENDPOINT_HEALTH_CHECK_RESPONSE)
        else:
            self._reply(HTTPStatus.NOT_FOUND, "Not found")

    def do_POST(self) -> None:  # noqa: N802
        if self.path.split("?", 1)[0] != TRACK_PATH:
            self._reply(HTTPStatus.NOT_FOUND, "Not found")
            return

        content_length = int(self.headers.get("Content-Length", 0))
        raw_content = self.rfile.read(content_length)

        try:
            content = decompress(raw_content, self.headers.get("Content-Encoding"))
        except ValueError as e:
            logger.error(f"[ingestion] {e}")
            self._reply(HTTPStatus.BAD_REQUEST, str(e))
            return

        if content.strip() == PING.encode():
            self._reply(HTTPStatus.OK, PONG)
            return

        try:
            envelopes = deserialize_envelopes(content)
        except ValueError as e:
            logger.error(f"[ingestion] Can't deserialize telemetry batch: {e}")
            self._reply(HTTPStatus.BAD_REQUEST, f"Can't deserialize telemetry batch: {e}")
            return

        accepted = self.server.ingestion.ingest(envelopes)

        summary = {"itemsReceived": len(envelopes), "itemsAccepted": accepted, "errors": []}
        self._reply(HTTPStatus.OK, json.dumps(summary), content_type="application/json")


class _IngestionHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], ingestion: "MockIngestionServer") -> None:
        self.ingestion = ingestion
        super().__init__(server_address, _IngestionRequestHandler)


class MockIngestionServer:
    """Stands in for the telemetry backend during a test case"""

    def __init__(self, port: int = HostPorts.ingestion, host: str = "0.0.0.0") -> None:  # noqa: S104
        self.host = host
        self._requested_port = int(port)

        self.filters = FilterChain()
        self.store = IngestionStore()

        self._lock = threading.Lock()
        self._server: _IngestionHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"MockIngestionServer({self.host}:{self.port})"

    @property
    def port(self) -> int:
        """Bound port once started, requested port otherwise"""

        with self._lock:
            if self._server is not None:
                return self._server.server_address[1]

        return self._requested_port

    @property
    def url(self) -> str:
        host = "localhost" if self.host in ("0.0.0.0", "") else self.host  # noqa: S104
        return f"http://{host}:{self.port}"

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._server is not None

    def add_filter(self, predicate: EnvelopeFilter) -> None:
        self.filters.add(predicate)

    def start(self) -> None:
        with self._lock:
            if self._server is not None:
                return

            self._server = _IngestionHTTPServer((self.host, self._requested_port), self)
            self._thread = threading.Thread(
                target=self._server.serve_forever, name="mocked_ingestion", kwargs={"poll_interval": 0.1}, daemon=True
            )
            self._thread.start()

        logger.info(f"Mocked ingestion listening on {self.host}:{self.port}")

    def stop(self) -> None:
        with self._lock:
            server, thread = self._server, self._thread
            self._server, self._thread = None, None

        if server is None:
            return

        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)

        logger.info("Mocked ingestion stopped")

    def ingest(self, envelopes: list[Envelope]) -> int:
        """Run envelopes through the filter chain, store accepted ones and returns their count"""

        accepted = 0
        for envelope in envelopes:
            if self.filters.accepts(envelope):
                self.store.append(envelope)
                accepted += 1
            else:
                logger.debug(f"[ingestion] {envelope} has been filtered out")

        return accepted

    def has_data(self) -> bool:
        return len(self.store) != 0

    def get_item_count(self) -> int:
        return len(self.store)

    def get_envelopes(self) -> list[Envelope]:
        return self.store.snapshot()

    def get_items_for_type(self, base_type: str) -> list[Envelope]:
        return [envelope for envelope in self.store.snapshot() if envelope.data.base_type == base_type]

    def get_envelope_at(self, index: int, base_type: str) -> Domain:
        """Returns the payload of the index-th stored envelope of the given type"""

        items = self.get_items_for_type(base_type)
        if index < 0 or index >= len(items):
            raise NotFoundError(f"No {base_type} item at index {index}, {len(items)} item(s) of this type received")

        return items[index].data.base_data

    def wait_for(self, condition: Callable[[Envelope], bool], timeout: float) -> bool:
        return self.store.wait_for(condition, timeout)

    def reset(self) -> None:
        self.stop()
        self.store.clear()


def device_id_filter(get_current_container_id: Callable[[], str | None]) -> EnvelopeFilter:
    """Builds a filter excluding telemetry sent by containers other than the current one.

    Envelopes without device id can't be attributed, they are accepted.
    """

    def _filter(envelope: Envelope) -> bool:
        device_id = envelope.device_id
        if device_id is None:
            return True

        container_id = get_current_container_id()
        belongs_to_current_container = container_id is not None and container_id.startswith(device_id)
        if not belongs_to_current_container:
            logger.info(f"Telemetry from previous container: {device_id}")

        return belongs_to_current_container

    return _filter
